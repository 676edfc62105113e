"""Per-vendor pricing, negotiation and reservation rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Callable, Optional

from .catalog import (
    PREMIUM_VENDOR_NAME,
    STANDARD_VENDOR_NAME,
    CatalogStore,
    premium_catalog,
    standard_catalog,
)


@dataclass(frozen=True)
class VendorProfile:
    """Vendor-defined constants consumed by the quote, negotiation and cart engines."""

    name: str
    id_prefix: str = ""
    discount_threshold: Decimal = Decimal("500")
    discount_factor: Decimal = Decimal("0.90")
    initial_percentage: Optional[int] = None  # split payment terms, None = pay in full
    delivery_start_hour: int = 10
    delivery_end_hour: int = 12
    quote_validity: timedelta = timedelta(hours=2)
    max_discount: Decimal = Decimal("0.15")
    lock_duration: timedelta = timedelta(minutes=15)
    negotiation_hint: str = ""
    catalog_factory: Callable[[], CatalogStore] = field(default=standard_catalog, compare=False)

    @property
    def offers_split_terms(self) -> bool:
        return self.initial_percentage is not None and self.initial_percentage > 0

    def build_catalog(self) -> CatalogStore:
        return self.catalog_factory()


STANDARD_PROFILE = VendorProfile(name=STANDARD_VENDOR_NAME)

PREMIUM_PROFILE = VendorProfile(
    name=PREMIUM_VENDOR_NAME,
    id_prefix="premium_",
    discount_threshold=Decimal("400"),
    discount_factor=Decimal("0.85"),
    initial_percentage=30,
    delivery_start_hour=9,
    delivery_end_hour=11,
    quote_validity=timedelta(hours=3),
    max_discount=Decimal("0.08"),
    lock_duration=timedelta(minutes=20),
    negotiation_hint="Consider adjusting quantities instead.",
    catalog_factory=premium_catalog,
)

PROFILES = {
    "standard": STANDARD_PROFILE,
    "premium": PREMIUM_PROFILE,
}


def get_profile(key: str) -> VendorProfile:
    try:
        return PROFILES[key.lower()]
    except KeyError:
        raise ValueError(f"Unknown vendor profile: {key} (expected one of {', '.join(PROFILES)})") from None

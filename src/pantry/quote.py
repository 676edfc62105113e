"""
Quote creation.

A quote prices a list of requested line items against one vendor's catalog,
applies the vendor's volume discount and (for some vendors) split payment
terms, and is stored under a generated ID until it expires.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from .catalog import CatalogStore
from .errors import InvalidRequestError, QuoteExpiredError, QuoteNotFoundError, UnknownSkuError
from .money import apply_discount, json_number, split_amount, to_decimal
from .storage import InMemoryStore, Store, new_record_id
from .timestamps import Clock, parse_timestamp, to_iso, utcnow
from .vendor import VendorProfile

logger = logging.getLogger(__name__)


@dataclass
class QuoteLineItem:
    sku: str
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    def with_quantity(self, quantity: int) -> QuoteLineItem:
        """Replace the quantity; the unit price snapshot never changes."""
        return replace(self, quantity=quantity, total_price=self.unit_price * quantity)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku": self.sku,
            "name": self.name,
            "quantity": self.quantity,
            "unitPrice": json_number(self.unit_price),
            "totalPrice": json_number(self.total_price),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> QuoteLineItem:
        return cls(
            sku=str(d["sku"]),
            name=str(d.get("name", "")),
            quantity=int(d["quantity"]),
            unit_price=to_decimal(d["unitPrice"], "unitPrice"),
            total_price=to_decimal(d["totalPrice"], "totalPrice"),
        )


@dataclass
class DeliveryWindow:
    start: datetime
    end: datetime

    @classmethod
    def next_day(cls, hint: datetime, start_hour: int, end_hour: int) -> DeliveryWindow:
        """The vendor's delivery hours on the day after ``hint`` (UTC)."""
        day = (hint.astimezone(timezone.utc) + timedelta(days=1)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return cls(start=day.replace(hour=start_hour), end=day.replace(hour=end_hour))

    def to_dict(self) -> dict[str, str]:
        return {"start": to_iso(self.start), "end": to_iso(self.end)}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> DeliveryWindow:
        return cls(
            start=parse_timestamp(d["start"], "deliveryWindow.start"),
            end=parse_timestamp(d["end"], "deliveryWindow.end"),
        )


@dataclass
class PaymentTerms:
    """Split of a total into an upfront and an on-delivery portion."""

    initial_payment: Decimal
    delivery_payment: Decimal
    initial_percentage: int

    @classmethod
    def split(cls, total: Decimal, initial_percentage: int) -> PaymentTerms:
        initial, delivery = split_amount(total, initial_percentage)
        return cls(initial_payment=initial, delivery_payment=delivery, initial_percentage=initial_percentage)

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialPayment": json_number(self.initial_payment),
            "deliveryPayment": json_number(self.delivery_payment),
            "initialPercentage": self.initial_percentage,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> PaymentTerms:
        return cls(
            initial_payment=to_decimal(d["initialPayment"], "initialPayment"),
            delivery_payment=to_decimal(d["deliveryPayment"], "deliveryPayment"),
            initial_percentage=int(d["initialPercentage"]),
        )


@dataclass
class Quote:
    """A priced offer. ``total`` is authoritative for payment, even when discounted."""

    quote_id: str
    line_items: list[QuoteLineItem]
    total: Decimal
    delivery_window: DeliveryWindow
    expires: datetime
    vendor: str
    payment_terms: Optional[PaymentTerms] = None
    headcount: Optional[int] = None

    @property
    def line_total(self) -> Decimal:
        return sum((li.total_price for li in self.line_items), Decimal("0"))

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "quoteId": self.quote_id,
            "total": json_number(self.total),
            "lineItems": [li.to_dict() for li in self.line_items],
            "deliveryWindow": self.delivery_window.to_dict(),
            "expires": to_iso(self.expires),
            "vendor": self.vendor,
        }
        if self.payment_terms is not None:
            d["paymentTerms"] = self.payment_terms.to_dict()
        if self.headcount is not None:
            d["headcount"] = self.headcount
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Quote:
        terms = d.get("paymentTerms")
        headcount = d.get("headcount")
        return cls(
            quote_id=str(d["quoteId"]),
            line_items=[QuoteLineItem.from_dict(li) for li in d.get("lineItems", [])],
            total=to_decimal(d["total"], "total"),
            delivery_window=DeliveryWindow.from_dict(d["deliveryWindow"]),
            expires=parse_timestamp(d["expires"], "expires"),
            vendor=str(d.get("vendor", "")),
            payment_terms=PaymentTerms.from_dict(terms) if terms else None,
            headcount=int(headcount) if headcount is not None else None,
        )


@dataclass
class QuoteItemRequest:
    sku: str
    quantity: int

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> QuoteItemRequest:
        if not isinstance(d, Mapping) or not d.get("sku"):
            raise InvalidRequestError("Each item requires a sku")
        quantity = d.get("quantity", 1)
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidRequestError(f"Invalid quantity for {d.get('sku')}: {quantity!r}")
        return cls(sku=str(d["sku"]), quantity=quantity)

    def to_dict(self) -> dict[str, Any]:
        return {"sku": self.sku, "quantity": self.quantity}


@dataclass
class QuoteRequest:
    items: list[QuoteItemRequest] = field(default_factory=list)
    delivery_date: Optional[str] = None
    headcount: Optional[int] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> QuoteRequest:
        items = d.get("items")
        if not isinstance(items, list) or not items:
            raise InvalidRequestError("items must be a non-empty list")
        headcount = d.get("headcount")
        if headcount is not None and (isinstance(headcount, bool) or not isinstance(headcount, int)):
            raise InvalidRequestError("headcount must be an integer")
        delivery_date = d.get("deliveryDate")
        return cls(
            items=[QuoteItemRequest.from_dict(item) for item in items],
            delivery_date=str(delivery_date) if delivery_date else None,
            headcount=headcount,
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"items": [item.to_dict() for item in self.items]}
        if self.delivery_date:
            d["deliveryDate"] = self.delivery_date
        if self.headcount is not None:
            d["headcount"] = self.headcount
        return d


class QuoteEngine:
    """Prices requests against one vendor's catalog and keeps the issued quotes."""

    def __init__(
        self,
        profile: VendorProfile,
        catalog: Optional[CatalogStore] = None,
        store: Optional[Store[Quote]] = None,
        clock: Clock = utcnow,
    ):
        self.profile = profile
        self.catalog = catalog if catalog is not None else profile.build_catalog()
        self.store: Store[Quote] = store if store is not None else InMemoryStore()
        self.clock = clock

    def create_quote(
        self,
        items: Sequence[QuoteItemRequest],
        delivery_date: Optional[str] = None,
        headcount: Optional[int] = None,
    ) -> Quote:
        if not items:
            raise InvalidRequestError("items must be a non-empty list")

        line_items: list[QuoteLineItem] = []
        for requested in items:
            catalog_item = self.catalog.get(requested.sku)
            if catalog_item is None:
                raise UnknownSkuError(requested.sku)
            quantity = max(requested.quantity, catalog_item.effective_min_quantity)
            line_items.append(QuoteLineItem(
                sku=catalog_item.sku,
                name=catalog_item.name,
                quantity=quantity,
                unit_price=catalog_item.price,
                total_price=catalog_item.price * quantity,
            ))

        subtotal = sum((li.total_price for li in line_items), Decimal("0"))
        total = subtotal
        if subtotal > self.profile.discount_threshold:
            total = apply_discount(subtotal, self.profile.discount_factor)

        now = self.clock()
        hint = parse_timestamp(delivery_date, "deliveryDate") if delivery_date else now
        quote = Quote(
            quote_id=new_record_id("quote", self.profile.id_prefix),
            line_items=line_items,
            total=total,
            delivery_window=DeliveryWindow.next_day(
                hint, self.profile.delivery_start_hour, self.profile.delivery_end_hour
            ),
            expires=now + self.profile.quote_validity,
            vendor=self.profile.name,
            payment_terms=(
                PaymentTerms.split(total, self.profile.initial_percentage)
                if self.profile.offers_split_terms else None
            ),
            headcount=headcount,
        )
        self.store.put(quote.quote_id, quote)
        logger.info(
            "Quote %s issued by %s: %s line(s), subtotal %s, total %s",
            quote.quote_id, self.profile.name, len(line_items), subtotal, total,
        )
        return quote

    def get_quote(self, quote_id: str) -> Quote:
        quote = self.store.get(quote_id)
        if quote is None:
            raise QuoteNotFoundError(quote_id)
        return quote

    def require_current(self, quote_id: str) -> Quote:
        """Fetch a quote that may still be acted on (negotiated or locked)."""
        quote = self.get_quote(quote_id)
        if quote.is_expired(self.clock()):
            raise QuoteExpiredError(f"Quote {quote_id} expired at {to_iso(quote.expires)}")
        return quote

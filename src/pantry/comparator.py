"""
Multi-vendor catalog and quote comparison.

Vendors are queried concurrently. A vendor that fails contributes nothing and
is reported in ``failures``; only "no vendor produced a usable quote" is fatal.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Awaitable, Mapping, Optional, Sequence, TypeVar

from .catalog import CatalogItem, CatalogQuery
from .errors import NoQuotesAvailableError
from .money import json_number
from .quote import Quote, QuoteRequest
from .vendor_client import VendorClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ZERO = Decimal("0")


@dataclass
class CatalogSweep:
    items_by_vendor: dict[str, list[CatalogItem]] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def all_items(self) -> list[CatalogItem]:
        return [item for items in self.items_by_vendor.values() for item in items]

    @property
    def total_items(self) -> int:
        return sum(len(items) for items in self.items_by_vendor.values())


@dataclass
class VendorQuote:
    """A quote together with the name of the vendor client that issued it."""

    vendor: str
    quote: Quote

    @property
    def total(self) -> Decimal:
        return self.quote.total


@dataclass
class QuoteComparison:
    best_overall: VendorQuote
    best_budget: VendorQuote
    all_quotes: list[VendorQuote]
    savings: Decimal
    percentage_saved: Decimal
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def recommended_vendor(self) -> str:
        return self.best_overall.vendor

    def to_dict(self) -> dict[str, Any]:
        return {
            "quotesReceived": len(self.all_quotes),
            "bestVendor": self.best_budget.vendor,
            "recommendedVendor": self.recommended_vendor,
            "bestTotal": json_number(self.best_budget.total),
            "savings": json_number(self.savings),
            "percentageSaved": float(self.percentage_saved),
            "failures": dict(self.failures),
        }


def summarize_quotes(quotes: Sequence[VendorQuote], failures: Optional[Mapping[str, str]] = None) -> QuoteComparison:
    """Pick the cheapest valid quote and report savings against the most expensive."""
    failures = dict(failures or {})
    valid = [q for q in quotes if q.total > _ZERO]
    if not valid:
        raise NoQuotesAvailableError("No valid quotes received from any vendor")

    best = min(valid, key=lambda q: q.total)
    highest = max(q.total for q in valid)
    savings = highest - best.total
    if savings > _ZERO:
        percentage = (savings / highest * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    else:
        percentage = _ZERO
    return QuoteComparison(
        best_overall=best,
        best_budget=best,
        all_quotes=valid,
        savings=savings,
        percentage_saved=percentage,
        failures=failures,
    )


class VendorComparator:
    def __init__(self, vendors: Sequence[VendorClient]):
        self.vendors = {v.name: v for v in vendors}

    def client(self, vendor: str) -> VendorClient:
        try:
            return self.vendors[vendor]
        except KeyError:
            raise ValueError(f"Unknown vendor: {vendor}") from None

    async def query_catalogs(self, query: Optional[CatalogQuery] = None) -> CatalogSweep:
        names = list(self.vendors)
        results = await _gather_settled([self.vendors[n].query_catalog(query) for n in names])
        sweep = CatalogSweep()
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.warning("Catalog query to %s failed: %s", name, result)
                sweep.items_by_vendor[name] = []
                sweep.failures[name] = str(result)
            else:
                sweep.items_by_vendor[name] = result
        return sweep

    async def compare_quotes(self, requests: Mapping[str, QuoteRequest]) -> QuoteComparison:
        """Request one quote per vendor in parallel and pick the cheapest."""
        names = [n for n in requests if n in self.vendors]
        failures = {n: "Unknown vendor" for n in requests if n not in self.vendors}
        results = await _gather_settled([self.vendors[n].create_quote(requests[n]) for n in names])

        quotes: list[VendorQuote] = []
        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.warning("Quote request to %s failed: %s", name, result)
                failures[name] = str(result)
            else:
                quotes.append(VendorQuote(vendor=name, quote=result))

        comparison = summarize_quotes(quotes, failures)
        logger.info(
            "Compared %s quote(s); best %s at %s, savings %s",
            len(comparison.all_quotes), comparison.best_budget.vendor,
            comparison.best_budget.total, comparison.savings,
        )
        return comparison


async def _gather_settled(calls: Sequence[Awaitable[T]]) -> list[T | Exception]:
    """Await all calls; failures come back as exception values, cancellation still propagates."""
    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
    return list(results)

"""Counter-offer handling against stored quotes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping, Optional

from .errors import InvalidRequestError
from .money import floor_amount, json_number, to_decimal
from .quote import PaymentTerms, Quote, QuoteEngine

logger = logging.getLogger(__name__)


@dataclass
class ItemAdjustment:
    sku: str
    new_quantity: int

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> ItemAdjustment:
        quantity = d.get("newQuantity") if isinstance(d, Mapping) else None
        if not isinstance(d, Mapping) or not d.get("sku"):
            raise InvalidRequestError("Each adjusted item requires a sku")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
            raise InvalidRequestError(f"Invalid newQuantity for {d.get('sku')}: {quantity!r}")
        return cls(sku=str(d["sku"]), new_quantity=quantity)

    def to_dict(self) -> dict[str, Any]:
        return {"sku": self.sku, "newQuantity": self.new_quantity}


@dataclass
class CounterOffer:
    target_total: Optional[Decimal] = None
    adjusted_items: list[ItemAdjustment] = field(default_factory=list)
    notes: str = ""

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> CounterOffer:
        if not isinstance(d, Mapping):
            raise InvalidRequestError("counterOffer must be an object")
        target = d.get("targetTotal")
        adjusted = d.get("adjustedItems") or []
        if not isinstance(adjusted, list):
            raise InvalidRequestError("adjustedItems must be a list")
        return cls(
            # A zero or missing target means "keep the current price".
            target_total=to_decimal(target, "targetTotal") if target else None,
            adjusted_items=[ItemAdjustment.from_dict(a) for a in adjusted],
            notes=str(d.get("notes") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"notes": self.notes}
        if self.target_total is not None:
            d["targetTotal"] = json_number(self.target_total)
        if self.adjusted_items:
            d["adjustedItems"] = [a.to_dict() for a in self.adjusted_items]
        return d


@dataclass
class NegotiationResult:
    accepted: bool
    message: str
    requested_discount: Decimal
    max_discount: Decimal
    revised_quote: Optional[Quote] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "accepted": self.accepted,
            "message": self.message,
            "requestedDiscount": float(self.requested_discount),
            "maxDiscount": float(self.max_discount),
        }
        if self.revised_quote is not None:
            d["revisedQuote"] = self.revised_quote.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> NegotiationResult:
        revised = d.get("revisedQuote")
        return cls(
            accepted=bool(d.get("accepted")),
            message=str(d.get("message", "")),
            requested_discount=to_decimal(d.get("requestedDiscount", 0), "requestedDiscount"),
            max_discount=to_decimal(d.get("maxDiscount", 0), "maxDiscount"),
            revised_quote=Quote.from_dict(revised) if revised else None,
        )


def _percent(value: Decimal) -> int:
    return int((value * 100).to_integral_value())


class NegotiationEngine:
    """Accepts counter-offers within the vendor's discount tolerance."""

    def __init__(self, quotes: QuoteEngine):
        self.quotes = quotes
        self.profile = quotes.profile

    def negotiate(self, quote_id: str, offer: CounterOffer) -> NegotiationResult:
        quote = self.quotes.require_current(quote_id)
        max_discount = self.profile.max_discount

        current_total = quote.total
        requested_total = offer.target_total if offer.target_total is not None else current_total
        if current_total > 0:
            discount = (current_total - requested_total) / current_total
        else:
            discount = Decimal("0")

        if discount > max_discount:
            message = (
                f"Cannot accept discount of {_percent(discount)}%. "
                f"Maximum discount is {_percent(max_discount)}%."
            )
            if self.profile.negotiation_hint:
                message = f"{message} {self.profile.negotiation_hint}"
            logger.info("Counter-offer on %s rejected: %s", quote_id, message)
            return NegotiationResult(
                accepted=False,
                message=message,
                requested_discount=discount,
                max_discount=max_discount,
            )

        revised = self._revise(quote, requested_total, offer)
        self.quotes.store.put(quote_id, revised)

        message = "Counter-offer accepted with revisions"
        if revised.payment_terms is not None:
            upfront = revised.payment_terms.initial_percentage
            message = f"{message}. Payment terms: {upfront}% upfront, {100 - upfront}% on delivery"
        logger.info("Counter-offer on %s accepted: total %s -> %s", quote_id, current_total, revised.total)
        return NegotiationResult(
            accepted=True,
            message=message,
            requested_discount=discount,
            max_discount=max_discount,
            revised_quote=revised,
        )

    def _revise(self, quote: Quote, requested_total: Decimal, offer: CounterOffer) -> Quote:
        quote.total = floor_amount(requested_total)
        if offer.adjusted_items:
            by_sku = {a.sku: self._clamp_quantity(a) for a in offer.adjusted_items}
            quote.line_items = [
                li.with_quantity(by_sku[li.sku]) if li.sku in by_sku else li
                for li in quote.line_items
            ]
            # Line-item sum supersedes the target once quantities change.
            quote.total = quote.line_total
        if quote.payment_terms is not None:
            quote.payment_terms = PaymentTerms.split(quote.total, quote.payment_terms.initial_percentage)
        return quote

    def _clamp_quantity(self, adjustment: ItemAdjustment) -> int:
        item = self.quotes.catalog.get(adjustment.sku)
        if item is None or adjustment.new_quantity >= item.effective_min_quantity:
            return adjustment.new_quantity
        logger.info(
            "Raising %s adjustment from %d to minimum order quantity %d",
            adjustment.sku, adjustment.new_quantity, item.effective_min_quantity,
        )
        return item.effective_min_quantity

"""
Cart reservations.

A cart is a time-locked snapshot of a quote. Later changes to the quote do not
touch carts already locked from it; the lock itself expires lazily, the first
time the cart is looked at for payment after ``locked_until``.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import CartExpiredError, CartNotFoundError, InvalidRequestError
from .money import json_number, to_decimal
from .quote import DeliveryWindow, PaymentTerms, QuoteEngine, QuoteLineItem
from .storage import InMemoryStore, Store, new_record_id
from .timestamps import parse_timestamp, to_iso

logger = logging.getLogger(__name__)


class CartStatus(str, Enum):
    LOCKED = "locked"
    EXPIRED = "expired"
    RELEASED = "released"


@dataclass
class Cart:
    cart_id: str
    quote_id: str
    total: Decimal
    line_items: list[QuoteLineItem]
    delivery_window: DeliveryWindow
    locked_until: datetime
    vendor: str
    status: str = CartStatus.LOCKED.value
    payment_terms: Optional[PaymentTerms] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "cartId": self.cart_id,
            "quoteId": self.quote_id,
            "total": json_number(self.total),
            "lineItems": [li.to_dict() for li in self.line_items],
            "deliveryWindow": self.delivery_window.to_dict(),
            "lockedUntil": to_iso(self.locked_until),
            "status": self.status,
            "vendor": self.vendor,
        }
        if self.payment_terms is not None:
            d["paymentTerms"] = self.payment_terms.to_dict()
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Cart:
        terms = d.get("paymentTerms")
        return cls(
            cart_id=str(d["cartId"]),
            quote_id=str(d.get("quoteId", "")),
            total=to_decimal(d["total"], "total"),
            line_items=[QuoteLineItem.from_dict(li) for li in d.get("lineItems", [])],
            delivery_window=DeliveryWindow.from_dict(d["deliveryWindow"]),
            locked_until=parse_timestamp(d["lockedUntil"], "lockedUntil"),
            vendor=str(d.get("vendor", "")),
            status=str(d.get("status", CartStatus.LOCKED.value)),
            payment_terms=PaymentTerms.from_dict(terms) if terms else None,
        )


class CartLocker:
    """Turns current quotes into locked carts for one vendor."""

    def __init__(self, quotes: QuoteEngine, store: Optional[Store[Cart]] = None):
        self.quotes = quotes
        self.profile = quotes.profile
        self.store: Store[Cart] = store if store is not None else InMemoryStore()

    def lock_cart(self, quote_id: str) -> Cart:
        if not quote_id:
            raise InvalidRequestError("quoteId is required")
        quote = self.quotes.require_current(quote_id)
        cart = Cart(
            cart_id=new_record_id("cart", self.profile.id_prefix),
            quote_id=quote.quote_id,
            total=quote.total,
            line_items=copy.deepcopy(quote.line_items),
            delivery_window=copy.deepcopy(quote.delivery_window),
            locked_until=self.quotes.clock() + self.profile.lock_duration,
            vendor=quote.vendor,
            payment_terms=copy.deepcopy(quote.payment_terms),
        )
        self.store.put(cart.cart_id, cart)
        logger.info("Cart %s locked from quote %s until %s", cart.cart_id, quote_id, to_iso(cart.locked_until))
        return cart

    def get_cart(self, cart_id: str) -> Cart:
        """Return the cart, moving an elapsed lock to ``expired`` on the way."""
        cart = self.store.get(cart_id)
        if cart is None:
            raise CartNotFoundError(cart_id)
        if cart.status == CartStatus.LOCKED.value and self.quotes.clock() > cart.locked_until:
            expired = replace(cart, status=CartStatus.EXPIRED.value)
            if self.store.compare_and_swap(cart_id, cart, expired):
                logger.info("Cart %s lock expired at %s", cart_id, to_iso(cart.locked_until))
            return self.store.get(cart_id) or expired
        return cart

    def require_payable(self, cart_id: str) -> Cart:
        cart = self.get_cart(cart_id)
        if cart.status == CartStatus.EXPIRED.value:
            raise CartExpiredError(f"Cart {cart_id} lock expired at {to_iso(cart.locked_until)}")
        if cart.status != CartStatus.LOCKED.value:
            raise CartExpiredError(f"Cart {cart_id} is {cart.status}")
        return cart

    def release(self, cart_id: str) -> Cart:
        cart = self.get_cart(cart_id)
        if cart.status != CartStatus.LOCKED.value:
            return cart
        released = replace(cart, status=CartStatus.RELEASED.value)
        if not self.store.compare_and_swap(cart_id, cart, released):
            return self.get_cart(cart_id)
        logger.info("Cart %s released", cart_id)
        return released

"""Tests for cart locking, snapshots and lazy expiry."""

from datetime import timedelta
from decimal import Decimal

import pytest

from pantry.cart import Cart, CartLocker, CartStatus
from pantry.errors import CartExpiredError, CartNotFoundError, InvalidRequestError, QuoteExpiredError
from pantry.negotiation import CounterOffer, NegotiationEngine
from pantry.quote import QuoteEngine, QuoteItemRequest
from pantry.vendor import PREMIUM_PROFILE, STANDARD_PROFILE


@pytest.fixture
def quotes(clock):
    return QuoteEngine(STANDARD_PROFILE, clock=clock)


@pytest.fixture
def locker(quotes):
    return CartLocker(quotes)


@pytest.fixture
def quote(quotes):
    return quotes.create_quote([QuoteItemRequest("snack-fruit-001", 2)])


class TestLockCart:
    def test_lock_copies_quote(self, locker, quote, clock):
        cart = locker.lock_cart(quote.quote_id)

        assert cart.cart_id.startswith("cart_")
        assert cart.quote_id == quote.quote_id
        assert cart.total == quote.total
        assert cart.line_items == quote.line_items
        assert cart.status == CartStatus.LOCKED.value
        assert cart.locked_until == clock.now + timedelta(minutes=15)

    def test_premium_lock_duration_and_terms(self, clock):
        quotes = QuoteEngine(PREMIUM_PROFILE, clock=clock)
        quote = quotes.create_quote([QuoteItemRequest("premium-coffee-001", 1)])

        cart = CartLocker(quotes).lock_cart(quote.quote_id)

        assert cart.cart_id.startswith("premium_cart_")
        assert cart.locked_until == clock.now + timedelta(minutes=20)
        assert cart.payment_terms == quote.payment_terms

    def test_cart_is_snapshot(self, locker, quotes, quote):
        cart = locker.lock_cart(quote.quote_id)
        NegotiationEngine(quotes).negotiate(quote.quote_id, CounterOffer(target_total=Decimal("150")))

        assert quotes.get_quote(quote.quote_id).total == Decimal("150")
        assert locker.get_cart(cart.cart_id).total == Decimal("160")

    def test_mutating_returned_cart_does_not_touch_store(self, locker, quote):
        cart = locker.lock_cart(quote.quote_id)
        cart.total = Decimal("1")
        assert locker.get_cart(cart.cart_id).total == Decimal("160")

    def test_missing_quote_id(self, locker):
        with pytest.raises(InvalidRequestError):
            locker.lock_cart("")

    def test_expired_quote_cannot_be_locked(self, locker, quote, clock):
        clock.advance(hours=2, minutes=1)
        with pytest.raises(QuoteExpiredError):
            locker.lock_cart(quote.quote_id)


class TestCartExpiry:
    def test_lock_expires_lazily(self, locker, quote, clock):
        cart = locker.lock_cart(quote.quote_id)

        clock.advance(minutes=15)
        assert locker.get_cart(cart.cart_id).status == CartStatus.LOCKED.value

        clock.advance(seconds=1)
        assert locker.get_cart(cart.cart_id).status == CartStatus.EXPIRED.value

    def test_require_payable(self, locker, quote, clock):
        cart = locker.lock_cart(quote.quote_id)
        assert locker.require_payable(cart.cart_id).cart_id == cart.cart_id

        clock.advance(minutes=16)
        with pytest.raises(CartExpiredError):
            locker.require_payable(cart.cart_id)

    def test_release(self, locker, quote):
        cart = locker.lock_cart(quote.quote_id)
        assert locker.release(cart.cart_id).status == CartStatus.RELEASED.value
        with pytest.raises(CartExpiredError):
            locker.require_payable(cart.cart_id)

    def test_release_after_expiry_is_noop(self, locker, quote, clock):
        cart = locker.lock_cart(quote.quote_id)
        clock.advance(minutes=30)
        assert locker.release(cart.cart_id).status == CartStatus.EXPIRED.value

    def test_unknown_cart(self, locker):
        with pytest.raises(CartNotFoundError):
            locker.get_cart("cart_missing")


def test_cart_dict_round_trip(locker, quote):
    cart = locker.lock_cart(quote.quote_id)
    d = cart.to_dict()
    assert d["lockedUntil"].endswith("Z")
    assert d["status"] == "locked"
    assert Cart.from_dict(d) == cart

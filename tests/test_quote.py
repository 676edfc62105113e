"""Tests for quote pricing, discounts, split terms and expiry."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pantry.catalog import CatalogItem, CatalogStore
from pantry.errors import QuoteExpiredError, QuoteNotFoundError, UnknownSkuError
from pantry.quote import QuoteEngine, QuoteItemRequest, QuoteRequest
from pantry.errors import InvalidRequestError
from pantry.vendor import PREMIUM_PROFILE, STANDARD_PROFILE


def _items(*pairs):
    return [QuoteItemRequest(sku=sku, quantity=qty) for sku, qty in pairs]


@pytest.fixture
def engine(clock):
    return QuoteEngine(STANDARD_PROFILE, clock=clock)


@pytest.fixture
def premium(clock):
    return QuoteEngine(PREMIUM_PROFILE, clock=clock)


class TestQuoteCreation:
    def test_quantity_clamped_to_minimum(self, clock):
        catalog = CatalogStore([CatalogItem("X", "Thing", Decimal("10"), "snacks", min_quantity=20)])
        engine = QuoteEngine(STANDARD_PROFILE, catalog=catalog, clock=clock)

        quote = engine.create_quote(_items(("X", 5)))

        assert quote.line_items[0].quantity == 20
        assert quote.line_items[0].total_price == Decimal("200")
        assert quote.total == Decimal("200")

    def test_quantity_above_minimum_kept(self, engine):
        quote = engine.create_quote(_items(("snack-fruit-001", 3)))
        assert quote.line_items[0].quantity == 3
        assert quote.total == Decimal("240")

    def test_total_is_line_sum_below_threshold(self, engine):
        quote = engine.create_quote(_items(("snack-fruit-001", 1), ("beverage-coffee-001", 2)))
        assert quote.total == quote.line_total == Decimal("160")

    def test_discount_applied_above_threshold(self, clock):
        catalog = CatalogStore([CatalogItem("X", "Thing", Decimal("10"), "snacks", min_quantity=1)])
        engine = QuoteEngine(STANDARD_PROFILE, catalog=catalog, clock=clock)

        quote = engine.create_quote(_items(("X", 60)))

        assert quote.line_total == Decimal("600")
        assert quote.total == Decimal("540")

    def test_discount_floors_to_cents(self, clock):
        catalog = CatalogStore([CatalogItem("X", "Thing", Decimal("500.01"), "snacks")])
        engine = QuoteEngine(STANDARD_PROFILE, catalog=catalog, clock=clock)

        quote = engine.create_quote(_items(("X", 1)))

        # 500.01 * 0.9 = 450.009
        assert quote.total == Decimal("450.00")
        assert quote.total < quote.line_total

    def test_threshold_is_exclusive(self, clock):
        catalog = CatalogStore([CatalogItem("X", "Thing", Decimal("500"), "snacks")])
        engine = QuoteEngine(STANDARD_PROFILE, catalog=catalog, clock=clock)
        assert engine.create_quote(_items(("X", 1))).total == Decimal("500")

    def test_unknown_sku_rejected(self, engine):
        with pytest.raises(UnknownSkuError, match="nope"):
            engine.create_quote(_items(("snack-fruit-001", 1), ("nope", 1)))

    def test_empty_request_rejected(self, engine):
        with pytest.raises(InvalidRequestError):
            engine.create_quote([])

    def test_standard_has_no_split_terms(self, engine):
        assert engine.create_quote(_items(("snack-fruit-001", 1))).payment_terms is None

    def test_quote_stored_under_its_id(self, engine):
        quote = engine.create_quote(_items(("snack-fruit-001", 1)))
        assert quote.quote_id.startswith("quote_")
        assert engine.get_quote(quote.quote_id) == quote

    def test_unknown_quote_id(self, engine):
        with pytest.raises(QuoteNotFoundError):
            engine.get_quote("quote_missing")


class TestPremiumQuotes:
    def test_premium_discount_and_split_terms(self, premium):
        # 2 x 280 = 560 > 400 -> floor(560 * 0.85) = 476
        quote = premium.create_quote(_items(("premium-gourmet-001", 2)))

        assert quote.quote_id.startswith("premium_quote_")
        assert quote.total == Decimal("476")
        terms = quote.payment_terms
        assert terms.initial_percentage == 30
        assert terms.initial_payment == Decimal("142.80")
        assert terms.initial_payment + terms.delivery_payment == quote.total

    def test_split_initial_is_floored(self, premium):
        quote = premium.create_quote(_items(("premium-coffee-001", 1)))
        # 85 * 0.30 = 25.5
        assert quote.payment_terms.initial_payment == Decimal("25.50")
        assert quote.payment_terms.delivery_payment == Decimal("59.50")


class TestDeliveryAndExpiry:
    def test_delivery_window_is_next_day_vendor_hours(self, engine, premium, clock):
        standard = engine.create_quote(_items(("snack-fruit-001", 1)))
        assert standard.delivery_window.start == datetime(2025, 3, 15, 10, tzinfo=timezone.utc)
        assert standard.delivery_window.end == datetime(2025, 3, 15, 12, tzinfo=timezone.utc)

        early = premium.create_quote(_items(("premium-coffee-001", 1)))
        assert early.delivery_window.start.hour == 9
        assert early.delivery_window.end.hour == 11

    def test_delivery_window_follows_requested_date(self, engine):
        quote = engine.create_quote(_items(("snack-fruit-001", 1)), delivery_date="2025-04-01")
        assert quote.delivery_window.start == datetime(2025, 4, 2, 10, tzinfo=timezone.utc)

    def test_bad_delivery_date_rejected(self, engine):
        with pytest.raises(InvalidRequestError):
            engine.create_quote(_items(("snack-fruit-001", 1)), delivery_date="next tuesday")

    def test_expiry_uses_vendor_validity(self, engine, premium, clock):
        assert engine.create_quote(_items(("snack-fruit-001", 1))).expires == clock.now + timedelta(hours=2)
        assert premium.create_quote(_items(("premium-coffee-001", 1))).expires == clock.now + timedelta(hours=3)

    def test_expired_quote_cannot_be_acted_on(self, engine, clock):
        quote = engine.create_quote(_items(("snack-fruit-001", 1)))
        clock.advance(hours=2, seconds=1)
        assert engine.get_quote(quote.quote_id) is not None
        with pytest.raises(QuoteExpiredError):
            engine.require_current(quote.quote_id)


class TestQuoteWireFormat:
    def test_request_from_dict(self):
        req = QuoteRequest.from_dict({
            "items": [{"sku": "a", "quantity": 2}],
            "deliveryDate": "2025-03-15",
            "headcount": 5,
        })
        assert req.items == [QuoteItemRequest("a", 2)]
        assert req.headcount == 5

    @pytest.mark.parametrize("body", [
        {},
        {"items": []},
        {"items": [{"quantity": 1}]},
        {"items": [{"sku": "a", "quantity": -1}]},
        {"items": [{"sku": "a", "quantity": "2"}]},
    ])
    def test_request_validation(self, body):
        with pytest.raises(InvalidRequestError):
            QuoteRequest.from_dict(body)

    def test_quote_dict_shape(self, premium):
        d = premium.create_quote(_items(("premium-coffee-001", 1)), headcount=5).to_dict()
        assert d["deliveryWindow"]["start"].endswith("Z")
        assert d["lineItems"][0]["unitPrice"] == 85
        assert d["paymentTerms"] == {"initialPayment": 25.5, "deliveryPayment": 59.5, "initialPercentage": 30}
        assert d["headcount"] == 5

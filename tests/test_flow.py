"""End-to-end ordering flow tests against in-process vendor and settlement apps."""

from decimal import Decimal

import httpx
import pytest

from pantry.audit import AuditTrail
from pantry.cart import CartStatus
from pantry.catalog import CatalogItem
from pantry.comparator import VendorComparator
from pantry.flow import OrderFlow, select_item
from pantry.mandate import MandateIssuer, MandateStatus
from pantry.notifications import NotificationType, WebhookNotifier
from pantry.payment_client import PaymentClient
from pantry.preferences import StaticPreferenceSource, TeamMember
from pantry.server import create_settlement_app, create_vendor_app
from pantry.settlement import PaymentSettlement, SettlementOutcome
from pantry.vendor import PREMIUM_PROFILE, STANDARD_PROFILE
from pantry.vendor_client import VendorClient

from conftest import FakeClock, ScriptedBackend


@pytest.fixture
def audit(tmp_path):
    return AuditTrail(path=tmp_path / "audit.jsonl", key_path=tmp_path / "audit.key", hmac_key="test-key")


@pytest.fixture
def make_flow(settlement, clock, audit):
    def make(profiles=(STANDARD_PROFILE, PREMIUM_PROFILE), members=None, settlement_service=None, extra=()):
        vendors = [
            VendorClient(
                p.name, f"http://{p.id_prefix.strip('_') or 'standard'}.test",
                transport=httpx.ASGITransport(app=create_vendor_app(p, clock=clock)),
            )
            for p in profiles
        ]
        payments = PaymentClient(
            "http://settlement.test",
            transport=httpx.ASGITransport(app=create_settlement_app(settlement_service or settlement)),
            clock=clock,
            poll_interval=0.01,
            payment_timeout=5,
        )
        return OrderFlow(
            VendorComparator([*vendors, *extra]),
            payments,
            preferences=StaticPreferenceSource(members),
            notifier=WebhookNotifier(),
            audit=audit,
            clock=clock,
        )
    return make


def _events(audit, flow_id):
    return [e.event for e in audit.read_entries(flow_id=flow_id)]


class TestOrderFlow:
    @pytest.mark.asyncio
    async def test_default_team_buys_cheapest_coffee(self, make_flow, audit, settlement):
        flow = make_flow()

        result = await flow.run()

        assert result.success is True, result.error
        assert result.selected_vendor == "SnackCo Catering"
        assert result.total == Decimal("40")
        assert result.delivery_mandate_id is None
        assert result.comparison.savings == Decimal("45")
        assert result.steps[-1] == "Sending payment confirmation"
        assert "Full payment of $40 completed" in result.steps
        assert not any(step.startswith("Negotiating") for step in result.steps)

        payment = settlement.get_payment_status(result.payment_id)
        assert payment.status == "completed"
        assert payment.amount == 4000

        assert [n.type for n in flow.notifier.sent] == [
            NotificationType.SNACK_OPTIONS,
            NotificationType.APPROVAL_REQUEST,
            NotificationType.PAYMENT_CONFIRMATION,
        ]
        events = _events(audit, result.flow_id)
        assert events[0] == "flow_start"
        assert "multi_vendor_quotes" in events
        assert "payment_processed" in events
        assert events[-1] == "flow_complete"

        d = result.to_dict()
        assert d["selectedVendor"] == "SnackCo Catering"
        assert d["vendorComparison"] == {"quotesReceived": 2, "savings": 45, "percentageSaved": 52.94}
        await settlement.aclose()

    @pytest.mark.asyncio
    async def test_split_terms_pay_initial_and_mandate_delivery(self, make_flow, settlement):
        flow = make_flow(profiles=(PREMIUM_PROFILE,))

        result = await flow.run()

        assert result.success is True, result.error
        assert result.total == Decimal("85")
        assert result.initial_payment == Decimal("25.50")
        assert result.delivery_payment == Decimal("59.50")
        assert settlement.get_payment_status(result.payment_id).amount == 2550
        delivery = settlement.mandates.store.get(result.delivery_mandate_id)
        assert delivery.status == MandateStatus.ACTIVE.value
        assert delivery.amount == 5950
        await settlement.aclose()

    @pytest.mark.asyncio
    async def test_accepted_negotiation_lowers_total(self, make_flow, settlement):
        # Spring rolls: 20 x 120 = 2400, discounted to 2160 > 0.9 * 2200
        flow = make_flow(
            profiles=(STANDARD_PROFILE,),
            members=[TeamMember("Dana", ("vegetarian",), Decimal("2200"))],
        )

        result = await flow.run()

        assert result.success is True, result.error
        assert "Negotiating price with SnackCo Catering" in result.steps
        assert "Negotiation successful - new total: $1870" in result.steps
        assert result.total == Decimal("1870")
        assert settlement.get_payment_status(result.payment_id).amount == 187000
        await settlement.aclose()

    @pytest.mark.asyncio
    async def test_rejected_negotiation_keeps_original_quote(self, make_flow, audit, settlement):
        flow = make_flow(
            profiles=(STANDARD_PROFILE, PREMIUM_PROFILE),
            members=[TeamMember("Sam", ("vegetarian",), Decimal("200"))],
        )

        result = await flow.run()

        assert result.success is True, result.error
        assert result.selected_vendor == "Premium Foods Co."
        assert "Negotiation failed - proceeding with original quote" in result.steps
        assert result.total == Decimal("1275")
        assert result.initial_payment == Decimal("382.50")
        assert "negotiation_failed" in _events(audit, result.flow_id)
        await settlement.aclose()

    @pytest.mark.asyncio
    async def test_offline_vendor_does_not_stop_flow(self, make_flow, audit, settlement):
        def down(request):
            raise httpx.ConnectError("connection refused", request=request)

        offline = VendorClient("Offline Deli", "http://offline.test", transport=httpx.MockTransport(down))
        result = await make_flow(extra=(offline,)).run()

        assert result.success is True, result.error
        assert "Offline Deli" not in {q.vendor for q in result.comparison.all_quotes}
        assert "warning" in _events(audit, result.flow_id)
        await settlement.aclose()


class TestOrderFlowFailures:
    @pytest.mark.asyncio
    async def test_no_quotes_reports_error(self, make_flow, audit, settlement):
        flow = make_flow(profiles=(), members=[TeamMember("Solo", (), Decimal("10"))])

        result = await flow.run()

        assert result.success is False
        assert result.error == "No valid quotes received from any vendor"
        assert result.steps[-1] == "Error: No valid quotes received from any vendor"
        assert flow.notifier.sent[-1].type == NotificationType.ERROR
        assert _events(audit, result.flow_id)[-1] == "flow_error"
        assert result.to_dict() == {
            "success": False,
            "flowId": result.flow_id,
            "steps": result.steps,
            "error": "No valid quotes received from any vendor",
        }

    @pytest.mark.asyncio
    async def test_failed_payment_reports_error_and_releases_cart(self, make_flow, clock):
        failing = PaymentSettlement(
            MandateIssuer(clock=clock),
            backend=ScriptedBackend(SettlementOutcome(success=False)),
        )
        flow = make_flow(settlement_service=failing)
        result = await flow.run()

        assert result.success is False
        assert result.error == "Payment failed: Insufficient funds or payment processing error"
        assert result.cart_id is not None
        cart = await flow.comparator.client(result.selected_vendor).release_cart(result.cart_id)
        assert cart.status == CartStatus.RELEASED.value
        await failing.aclose()

    @pytest.mark.asyncio
    async def test_cart_lock_lapsing_before_delivery_mandate_fails(self, clock, audit):
        vendor_clock = FakeClock(clock.now)

        class SlowBackend:
            async def submit(self, payment):
                # Premium carts stay locked for 20 minutes
                vendor_clock.advance(minutes=21)
                return SettlementOutcome(success=True)

        settlement = PaymentSettlement(MandateIssuer(clock=clock), backend=SlowBackend())
        vendor = VendorClient(
            PREMIUM_PROFILE.name, "http://premium.test",
            transport=httpx.ASGITransport(app=create_vendor_app(PREMIUM_PROFILE, clock=vendor_clock)),
        )
        payments = PaymentClient(
            "http://settlement.test",
            transport=httpx.ASGITransport(app=create_settlement_app(settlement)),
            clock=clock,
            poll_interval=0.01,
            payment_timeout=5,
        )
        flow = OrderFlow(VendorComparator([vendor]), payments, notifier=WebhookNotifier(), audit=audit, clock=clock)

        result = await flow.run()

        assert result.success is False
        assert "lock expired" in result.error
        assert result.delivery_mandate_id is None
        # Only the initial portion was mandated
        assert len(settlement.mandates.store) == 1
        assert _events(audit, result.flow_id)[-1] == "flow_error"
        await settlement.aclose()

    @pytest.mark.asyncio
    async def test_required_webhook_failure_is_still_a_result(self, make_flow):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        flow = make_flow()
        flow.notifier = WebhookNotifier(
            "https://hooks.internal.test/snacks",
            require_delivery=True,
            transport=httpx.MockTransport(refuse),
        )

        result = await flow.run()

        assert result.success is False
        assert "snack_options" in result.error


class TestSelectItem:
    def _item(self, sku, price, category):
        return CatalogItem(sku, sku, Decimal(price), category)

    def test_prefers_beverages(self):
        items = [self._item("a", "10", "snacks"), self._item("b", "20", "beverages")]
        assert select_item(items, Decimal("100")).sku == "b"

    def test_falls_back_to_first_affordable(self):
        items = [self._item("a", "90", "snacks"), self._item("b", "30", "fresh")]
        assert select_item(items, Decimal("100")).sku == "b"

    def test_nothing_affordable(self):
        assert select_item([self._item("a", "81", "snacks")], Decimal("100")) is None

"""
End-to-end team snack ordering.

Flow:
1. Read team preferences and total the budget
2. Query every vendor's catalog concurrently
3. Ask each vendor for a quote on its best-suited item and compare
4. Negotiate with the cheapest vendor when its quote is close to the budget
5. Lock a cart, then pay in full or in split portions
6. Notify and audit each step

Any failure ends the flow with ``success=False`` and the steps completed so
far; it never escapes as an exception.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import ROUND_FLOOR, Decimal
from functools import partial
from typing import Any, Optional

from .audit import AuditTrail
from .catalog import CatalogItem, CatalogQuery
from .comparator import QuoteComparison, VendorComparator, VendorQuote
from .errors import NotificationError, PantryError
from .money import json_number
from .negotiation import CounterOffer
from .notifications import WebhookNotifier
from .payment_client import PaymentClient
from .preferences import PreferenceSource, StaticPreferenceSource, TeamAnalysis
from .quote import QuoteItemRequest, QuoteRequest
from .timestamps import Clock, utcnow
from .vendor_client import VendorClient

logger = logging.getLogger(__name__)

SNACK_CATEGORIES = [
    "hot-snacks", "fresh", "snacks", "beverages", "gourmet",
    "healthy", "sushi", "salads", "pastries", "wraps",
]
CATALOG_BUDGET_SHARE = Decimal("0.8")
NEGOTIATION_TRIGGER = Decimal("0.9")
NEGOTIATION_TARGET = Decimal("0.85")
PREFERRED_CATEGORY = "beverages"


@dataclass
class OrderFlowResult:
    success: bool
    steps: list[str] = field(default_factory=list)
    flow_id: str = ""
    cart_id: Optional[str] = None
    payment_id: Optional[str] = None
    delivery_mandate_id: Optional[str] = None
    total: Optional[Decimal] = None
    initial_payment: Decimal = Decimal("0")
    delivery_payment: Decimal = Decimal("0")
    selected_vendor: Optional[str] = None
    comparison: Optional[QuoteComparison] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success, "flowId": self.flow_id, "steps": list(self.steps)}
        if not self.success:
            d["error"] = self.error
            return d
        d.update({
            "cartId": self.cart_id,
            "paymentId": self.payment_id,
            "deliveryMandateId": self.delivery_mandate_id,
            "total": json_number(self.total) if self.total is not None else None,
            "initialPayment": json_number(self.initial_payment),
            "deliveryPayment": json_number(self.delivery_payment),
            "selectedVendor": self.selected_vendor,
        })
        if self.comparison is not None:
            d["vendorComparison"] = {
                "quotesReceived": len(self.comparison.all_quotes),
                "savings": json_number(self.comparison.savings),
                "percentageSaved": float(self.comparison.percentage_saved),
            }
        return d


def select_item(items: list[CatalogItem], total_budget: Decimal) -> Optional[CatalogItem]:
    """Pick one affordable item from a vendor's catalog, preferring beverages."""
    affordable = [i for i in items if i.price <= total_budget * CATALOG_BUDGET_SHARE]
    if not affordable:
        return None
    for item in affordable:
        if item.category == PREFERRED_CATEGORY:
            return item
    return affordable[0]


class OrderFlow:
    def __init__(
        self,
        comparator: VendorComparator,
        payments: PaymentClient,
        preferences: Optional[PreferenceSource] = None,
        notifier: Optional[WebhookNotifier] = None,
        audit: Optional[AuditTrail] = None,
        clock: Clock = utcnow,
    ):
        self.comparator = comparator
        self.payments = payments
        self.preferences = preferences or StaticPreferenceSource()
        self.notifier = notifier or WebhookNotifier()
        self.audit = audit
        self.clock = clock

    async def _audit(self, event: str, *args: Any) -> None:
        """Run ``AuditTrail.<event>`` in a worker thread."""
        if self.audit is not None:
            await asyncio.to_thread(getattr(self.audit, event), *args)

    async def _audit_step(self, flow_id: str, step: str, data: Optional[dict[str, Any]] = None) -> None:
        await self._audit("log_step", flow_id, step, data)

    async def run(self) -> OrderFlowResult:
        flow_id = f"flow_{int(time.time() * 1000)}"
        result = OrderFlowResult(success=False, flow_id=flow_id)
        steps = result.steps
        await self._audit("log_flow_start", flow_id, "snack_ordering")

        try:
            steps.append("Reading team preferences")
            members = self.preferences.team_members()
            team = TeamAnalysis.of(members)
            await self._audit_step(flow_id, "team_preferences_collected", {"count": team.headcount})
            steps.append(f"Analyzed team: {team.headcount} members, budget ${team.total_budget}")

            steps.append("Querying catalogs from all vendors")
            sweep = await self.comparator.query_catalogs(CatalogQuery(
                categories=list(SNACK_CATEGORIES),
                dietary=list(team.dietary_requirements),
                max_budget=(team.total_budget * CATALOG_BUDGET_SHARE).to_integral_value(rounding=ROUND_FLOOR),
            ))
            await self._audit_step(flow_id, "multi_vendor_catalog_queried", {
                "vendorCount": len(sweep.items_by_vendor),
                "totalItems": sweep.total_items,
                "failures": sweep.failures,
            })
            for vendor, error in sweep.failures.items():
                await self._audit("log_warning", flow_id, f"Catalog query to {vendor} failed", {"error": error})

            steps.append("Sending multi-vendor options for team approval")
            await self.notifier.send_snack_options([item.to_dict() for item in sweep.all_items])

            steps.append("Requesting quotes from all vendors")
            comparison = await self.comparator.compare_quotes(self._quote_requests(sweep.items_by_vendor, team))
            result.comparison = comparison
            await self._audit_step(flow_id, "multi_vendor_quotes", comparison.to_dict())
            best = comparison.best_overall
            steps.append(f"Comparing {len(comparison.all_quotes)} quotes - best: {best.vendor} (${best.total})")

            steps.append("Requesting approval for selected vendor")
            await self.notifier.request_approval(best.quote.to_dict(), best.vendor)

            final = await self._maybe_negotiate(flow_id, best, team, steps)

            steps.append(f"Locking cart with {final.vendor}")
            vendor_client = self.comparator.client(final.vendor)
            cart = await vendor_client.lock_cart(final.quote.quote_id)
            check_cart = partial(vendor_client.cart_status, cart.cart_id)
            await self._audit_step(flow_id, "cart_locked", {
                "cartId": cart.cart_id,
                "vendor": cart.vendor,
                "paymentTerms": cart.payment_terms.to_dict() if cart.payment_terms else None,
            })
            result.cart_id = cart.cart_id
            result.total = cart.total
            result.selected_vendor = cart.vendor or final.vendor

            metadata = {"flowId": flow_id, "teamSize": team.headcount, "vendor": result.selected_vendor}
            terms = cart.payment_terms
            if terms is not None and terms.initial_payment > 0:
                steps.append(
                    f"Processing split payment: ${terms.initial_payment} initial + "
                    f"${terms.delivery_payment} on delivery"
                )
                split = await self.payments.process_split_payments(
                    cart.cart_id, terms, metadata=metadata, check_cart=check_cart,
                )
                payment = split.initial_payment
                result.delivery_mandate_id = split.delivery_mandate.mandate_id
                result.initial_payment = terms.initial_payment
                result.delivery_payment = terms.delivery_payment
                await self._audit_step(flow_id, "split_payment_processed", {
                    "initialPaymentId": payment.payment_id,
                    "deliveryMandateId": result.delivery_mandate_id,
                    "initialAmount": terms.initial_payment,
                    "deliveryAmount": terms.delivery_payment,
                })
                steps.append(
                    f"Initial payment of ${terms.initial_payment} completed - "
                    f"delivery payment of ${terms.delivery_payment} scheduled"
                )
            else:
                steps.append("Processing full payment")
                try:
                    payment = await self.payments.pay_in_full(
                        cart.cart_id, cart.total, metadata=metadata, check_cart=check_cart,
                    )
                except PantryError:
                    await self._release_cart(vendor_client, cart.cart_id)
                    raise
                await self._audit_step(flow_id, "payment_processed", {"paymentId": payment.payment_id})
                steps.append(f"Full payment of ${cart.total} completed")
            result.payment_id = payment.payment_id

            steps.append("Sending payment confirmation")
            await self.notifier.confirm_payment({
                **payment.to_dict(),
                "vendor": result.selected_vendor,
                "total": cart.total,
                "paymentType": "split" if result.delivery_mandate_id else "full",
                "initialPayment": result.initial_payment,
                "deliveryPayment": result.delivery_payment,
            })

            result.success = True
            await self._audit("log_flow_complete", flow_id, {
                "cartId": result.cart_id,
                "paymentId": result.payment_id,
                "deliveryMandateId": result.delivery_mandate_id,
                "vendor": result.selected_vendor,
                "total": result.total,
                "savings": comparison.savings,
            })
            logger.info("Order flow %s completed with %s", flow_id, result.selected_vendor)
            return result

        except Exception as e:
            if isinstance(e, PantryError):
                logger.warning("Order flow %s failed: %s", flow_id, e)
            else:
                logger.exception("Order flow %s failed unexpectedly", flow_id)
            message = str(e) or type(e).__name__
            steps.append(f"Error: {message}")
            result.success = False
            result.error = message
            await self._audit("log_flow_error", flow_id, message)
            try:
                await self.notifier.send_error(message, {"flowId": flow_id, "step": len(steps)})
            except NotificationError as notify_error:
                logger.warning("Could not deliver error notification for %s: %s", flow_id, notify_error)
            return result

    async def _release_cart(self, vendor_client: VendorClient, cart_id: str) -> None:
        try:
            await vendor_client.release_cart(cart_id)
        except PantryError as e:
            logger.warning("Could not release cart %s: %s", cart_id, e)

    def _quote_requests(
        self,
        items_by_vendor: dict[str, list[CatalogItem]],
        team: TeamAnalysis,
    ) -> dict[str, QuoteRequest]:
        delivery_date = (self.clock() + timedelta(days=1)).date().isoformat()
        requests: dict[str, QuoteRequest] = {}
        for vendor, items in items_by_vendor.items():
            item = select_item(items, team.total_budget)
            if item is None:
                logger.info("No affordable item from %s; skipping its quote", vendor)
                continue
            requests[vendor] = QuoteRequest(
                items=[QuoteItemRequest(sku=item.sku, quantity=item.effective_min_quantity)],
                delivery_date=delivery_date,
                headcount=team.headcount,
            )
        return requests

    async def _maybe_negotiate(
        self,
        flow_id: str,
        best: VendorQuote,
        team: TeamAnalysis,
        steps: list[str],
    ) -> VendorQuote:
        if best.total <= team.total_budget * NEGOTIATION_TRIGGER:
            return best

        steps.append(f"Negotiating price with {best.vendor}")
        target = (team.total_budget * NEGOTIATION_TARGET).to_integral_value(rounding=ROUND_FLOOR)
        outcome = await self.comparator.client(best.vendor).negotiate(
            best.quote.quote_id,
            CounterOffer(target_total=target, notes="Budget adjustment needed for team order"),
        )
        if outcome.accepted and outcome.revised_quote is not None:
            await self._audit_step(flow_id, "negotiation_successful", outcome.to_dict())
            steps.append(f"Negotiation successful - new total: ${outcome.revised_quote.total}")
            return VendorQuote(vendor=best.vendor, quote=outcome.revised_quote)

        await self._audit_step(flow_id, "negotiation_failed", outcome.to_dict())
        steps.append("Negotiation failed - proceeding with original quote")
        return best

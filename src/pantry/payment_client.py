"""
Caller side of the mandate protocol.

Create a mandate for a cart, sign its challenge, submit the payment, then poll
until the settlement service resolves it or the wait times out.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from .errors import PaymentFailedError, PaymentTimeoutError
from .mandate import DEFAULT_CURRENCY, Mandate, MandateRequest
from .money import json_number, to_minor_units
from .quote import PaymentTerms
from .settlement import Payment, PaymentStatus
from .signing import MandateSigner
from .timestamps import Clock, utcnow
from .transport import ServiceClient

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_PAYMENT_TIMEOUT = 30.0
DEFAULT_MANDATE_TTL = timedelta(minutes=10)
DEFAULT_DELIVERY_MANDATE_TTL = timedelta(days=2)

CartCheck = Callable[[], Awaitable[Any]]


@dataclass
class SplitPaymentResult:
    """Initial portion paid and settled; delivery portion mandated but unpaid."""

    initial_payment: Payment
    initial_mandate: Mandate
    delivery_mandate: Mandate
    terms: PaymentTerms

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialPayment": self.initial_payment.to_dict(),
            "initialMandateId": self.initial_mandate.mandate_id,
            "deliveryMandateId": self.delivery_mandate.mandate_id,
            "paymentTerms": self.terms.to_dict(),
        }


class PaymentClient(ServiceClient):
    """Talks to the settlement service on behalf of one payer."""

    def __init__(
        self,
        base_url: str,
        signer: Optional[MandateSigner] = None,
        payer_ref: str = "TEAM-OPS-001",
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        payment_timeout: float = DEFAULT_PAYMENT_TIMEOUT,
        mandate_ttl: timedelta = DEFAULT_MANDATE_TTL,
        clock: Clock = utcnow,
        **kwargs,
    ):
        super().__init__(base_url, **kwargs)
        self.signer = signer or MandateSigner.generate()
        self.payer_ref = payer_ref
        self.poll_interval = poll_interval
        self.payment_timeout = payment_timeout
        self.mandate_ttl = mandate_ttl
        self.clock = clock

    async def create_mandate(self, request: MandateRequest) -> Mandate:
        body = await self._request("POST", "/ap2/mandate.create", json=request.to_dict())
        return Mandate.from_dict(body)

    def mandate_request(
        self,
        cart_id: str,
        amount: Decimal,
        ttl: Optional[timedelta] = None,
        currency: str = DEFAULT_CURRENCY,
        metadata: Optional[dict[str, Any]] = None,
    ) -> MandateRequest:
        """Build a request for ``amount`` currency units, sent as minor units."""
        return MandateRequest(
            cart_id=cart_id,
            payer_ref=self.payer_ref,
            amount=to_minor_units(amount),
            ttl=self.clock() + (ttl or self.mandate_ttl),
            currency=currency,
            metadata=dict(metadata or {}),
        )

    async def pay(self, mandate: Mandate) -> Payment:
        """Sign the mandate's challenge and submit it."""
        body = await self._request(
            "POST",
            "/ap2/pay",
            json={
                "mandateId": mandate.mandate_id,
                "signature": self.signer.sign_challenge(mandate.challenge_data),
                "publicKey": self.signer.public_key_b64,
            },
        )
        payment = Payment.from_dict({"mandateId": mandate.mandate_id, "currency": mandate.currency, **body})
        logger.info("Submitted payment %s for mandate %s", payment.payment_id, mandate.mandate_id)
        return payment

    async def get_payment_status(self, payment_id: str) -> Payment:
        body = await self._request("GET", "/ap2/payment.status", params={"paymentId": payment_id})
        return Payment.from_dict(body)

    async def wait_for_settlement(
        self,
        payment_id: str,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> Payment:
        """Poll until the payment completes.

        Raises PaymentFailedError if it resolves to failed or cancelled, and
        PaymentTimeoutError if it is still unresolved after ``timeout`` seconds.
        """
        interval = self.poll_interval if interval is None else interval
        timeout = self.payment_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(self._poll(payment_id, interval), timeout)
        except asyncio.TimeoutError:
            raise PaymentTimeoutError(
                f"Payment {payment_id} was not confirmed within {timeout:g}s"
            ) from None

    async def _poll(self, payment_id: str, interval: float) -> Payment:
        while True:
            payment = await self.get_payment_status(payment_id)
            if payment.status == PaymentStatus.COMPLETED.value:
                return payment
            if payment.status in (PaymentStatus.FAILED.value, PaymentStatus.CANCELLED.value):
                raise PaymentFailedError(payment_id, payment.failure_reason or payment.status)
            logger.debug("Payment %s is %s; checking again in %ss", payment_id, payment.status, interval)
            await asyncio.sleep(interval)

    async def pay_in_full(
        self,
        cart_id: str,
        amount: Decimal,
        metadata: Optional[dict[str, Any]] = None,
        check_cart: Optional[CartCheck] = None,
    ) -> Payment:
        if check_cart is not None:
            await check_cart()
        mandate = await self.create_mandate(self.mandate_request(cart_id, amount, metadata=metadata))
        payment = await self.pay(mandate)
        return await self.wait_for_settlement(payment.payment_id)

    async def process_split_payments(
        self,
        cart_id: str,
        terms: PaymentTerms,
        metadata: Optional[dict[str, Any]] = None,
        delivery_ttl: timedelta = DEFAULT_DELIVERY_MANDATE_TTL,
        check_cart: Optional[CartCheck] = None,
    ) -> SplitPaymentResult:
        """Pay the initial portion now and mandate the delivery portion for later.

        ``check_cart`` runs before each mandate is created and should raise if
        the cart lock has lapsed; settling the initial portion can take up to
        ``payment_timeout``.
        """
        base = dict(metadata or {})
        if check_cart is not None:
            await check_cart()
        initial_mandate = await self.create_mandate(self.mandate_request(
            cart_id,
            terms.initial_payment,
            metadata={**base, "portion": "initial", "initialPercentage": terms.initial_percentage},
        ))
        submitted = await self.pay(initial_mandate)
        settled = await self.wait_for_settlement(submitted.payment_id)

        if check_cart is not None:
            await check_cart()
        delivery_mandate = await self.create_mandate(self.mandate_request(
            cart_id,
            terms.delivery_payment,
            ttl=delivery_ttl,
            metadata={
                **base,
                "portion": "delivery",
                "initialPaymentId": settled.payment_id,
                "deliveryAmount": json_number(terms.delivery_payment),
            },
        ))
        logger.info(
            "Split payment for cart %s: initial %s settled as %s, delivery mandate %s issued",
            cart_id, terms.initial_payment, settled.payment_id, delivery_mandate.mandate_id,
        )
        return SplitPaymentResult(
            initial_payment=settled,
            initial_mandate=initial_mandate,
            delivery_mandate=delivery_mandate,
            terms=terms,
        )

"""
Payment settlement against signed mandates.

Flow:
1. Verify the request carries mandate ID, signature and public key
2. Check the mandate is active and within its TTL
3. Verify the Ed25519 signature over the mandate's challenge bytes
4. Consume the mandate and record a ``processing`` payment
5. Resolve the payment asynchronously through a SettlementBackend
"""

from __future__ import annotations

import asyncio
import logging
import random
import secrets
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Protocol

from .errors import (
    InvalidMandateStateError,
    InvalidRequestError,
    InvalidSignatureError,
    MandateExpiredError,
    MandateNotFoundError,
    PaymentNotFoundError,
)
from .mandate import Mandate, MandateIssuer, MandateStatus
from .signing import verify_signature
from .storage import InMemoryStore, Store, new_record_id
from .timestamps import Clock, parse_optional_timestamp, parse_timestamp, to_iso, to_millis, utcnow

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Insufficient funds or payment processing error"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED)


@dataclass
class Payment:
    """A payment made against one mandate. ``amount`` is in minor units."""

    payment_id: str
    mandate_id: str
    status: str
    amount: int
    currency: str
    created: datetime
    updated: datetime
    transaction_ref: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return PaymentStatus(self.status).is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "paymentId": self.payment_id,
            "status": self.status,
            "amount": self.amount,
            "currency": self.currency,
            "mandateId": self.mandate_id,
            "created": to_iso(self.created),
            "updated": to_iso(self.updated),
            "transactionRef": self.transaction_ref,
            "failureReason": self.failure_reason,
        }

    def to_receipt(self) -> dict[str, Any]:
        """Response body of the pay operation."""
        return {
            "paymentId": self.payment_id,
            "status": self.status,
            "amount": self.amount,
            "transactionRef": self.transaction_ref,
            "processed": to_iso(self.updated),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Payment:
        created = parse_timestamp(d.get("created") or d["processed"], "created")
        return cls(
            payment_id=str(d["paymentId"]),
            mandate_id=str(d.get("mandateId", "")),
            status=str(d["status"]),
            amount=int(d["amount"]),
            currency=str(d.get("currency", "USD")),
            created=created,
            updated=parse_optional_timestamp(d.get("updated") or d.get("processed"), "updated") or created,
            transaction_ref=d.get("transactionRef"),
            failure_reason=d.get("failureReason"),
        )


@dataclass
class PaymentRequest:
    mandate_id: str
    signature: str
    public_key: str

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> PaymentRequest:
        mandate_id = d.get("mandateId")
        signature = d.get("signature")
        public_key = d.get("publicKey")
        if not mandate_id or not signature or not public_key:
            raise InvalidRequestError("mandateId, signature, and publicKey are required")
        return cls(mandate_id=str(mandate_id), signature=str(signature), public_key=str(public_key))

    def to_dict(self) -> dict[str, str]:
        return {"mandateId": self.mandate_id, "signature": self.signature, "publicKey": self.public_key}


@dataclass
class SettlementOutcome:
    success: bool
    failure_reason: Optional[str] = None


class SettlementBackend(Protocol):
    """A payment rail. ``submit`` resolves once the rail has decided."""

    async def submit(self, payment: Payment) -> SettlementOutcome: ...


class SimulatedSettlementBackend:
    """Stand-in rail: waits ``delay`` seconds, then succeeds with ``success_rate``."""

    def __init__(
        self,
        delay: float = 2.0,
        success_rate: float = 0.9,
        rng: Optional[Callable[[], float]] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.delay = delay
        self.success_rate = success_rate
        self._rng = rng or random.random

    async def submit(self, payment: Payment) -> SettlementOutcome:
        if self.delay > 0:
            await asyncio.sleep(self.delay)
        if self._rng() < self.success_rate:
            return SettlementOutcome(success=True)
        return SettlementOutcome(success=False, failure_reason=DEFAULT_FAILURE_REASON)


class PaymentSettlement:
    """Accepts signed mandates and tracks the resulting payments."""

    def __init__(
        self,
        mandates: MandateIssuer,
        backend: Optional[SettlementBackend] = None,
        payments: Optional[Store[Payment]] = None,
        clock: Optional[Clock] = None,
    ):
        self.mandates = mandates
        self.backend: SettlementBackend = backend if backend is not None else SimulatedSettlementBackend()
        self.payments: Store[Payment] = payments if payments is not None else InMemoryStore()
        self.clock = clock or mandates.clock
        self._tasks: set[asyncio.Task] = set()

    async def process_payment(self, request: PaymentRequest) -> Payment:
        mandate = self.mandates.store.get(request.mandate_id)
        if mandate is None:
            raise MandateNotFoundError(request.mandate_id)

        if mandate.status != MandateStatus.ACTIVE.value:
            raise InvalidMandateStateError(f"Mandate status is {mandate.status}, expected active")

        if mandate.is_expired(self.clock()):
            self.mandates.expire(mandate.mandate_id)
            raise MandateExpiredError("The mandate has expired and cannot be used for payment")

        if not verify_signature(mandate.challenge_bytes, request.signature, request.public_key):
            logger.warning("Rejected payment for mandate %s: signature does not verify", mandate.mandate_id)
            raise InvalidSignatureError("The provided signature is not valid for this mandate")

        if not self.mandates.mark_used(mandate):
            current = self.mandates.store.get(mandate.mandate_id)
            status = current.status if current is not None else "unknown"
            raise InvalidMandateStateError(f"Mandate status is {status}, expected active")

        payment = self._new_payment(mandate)
        self.payments.put(payment.payment_id, payment)
        logger.info(
            "Payment %s processing for mandate %s (%s %s)",
            payment.payment_id, mandate.mandate_id, payment.amount, payment.currency,
        )

        task = asyncio.get_running_loop().create_task(self._settle(payment))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return payment

    def get_payment_status(self, payment_id: str) -> Payment:
        payment = self.payments.get(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment

    def _new_payment(self, mandate: Mandate) -> Payment:
        now = self.clock()
        return Payment(
            payment_id=new_record_id("payment"),
            mandate_id=mandate.mandate_id,
            status=PaymentStatus.PROCESSING.value,
            amount=mandate.amount,
            currency=mandate.currency,
            created=now,
            updated=now,
            transaction_ref=f"txn_{to_millis(now)}_{secrets.token_hex(3)}",
        )

    async def _settle(self, payment: Payment) -> None:
        try:
            outcome = await self.backend.submit(payment)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Settlement backend failed for payment %s", payment.payment_id)
            outcome = SettlementOutcome(success=False, failure_reason="Settlement backend error")
        self._resolve(payment.payment_id, outcome)

    def _resolve(self, payment_id: str, outcome: SettlementOutcome) -> None:
        current = self.payments.get(payment_id)
        if current is None or current.status != PaymentStatus.PROCESSING.value:
            return
        if outcome.success:
            resolved = replace(current, status=PaymentStatus.COMPLETED.value, updated=self.clock())
        else:
            resolved = replace(
                current,
                status=PaymentStatus.FAILED.value,
                failure_reason=outcome.failure_reason or DEFAULT_FAILURE_REASON,
                updated=self.clock(),
            )
        if self.payments.compare_and_swap(payment_id, current, resolved):
            logger.info("Payment %s %s", payment_id, resolved.status)

    async def drain(self) -> None:
        """Wait for every in-flight settlement to resolve."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()
        self.mandates.close()

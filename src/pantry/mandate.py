"""
Payment mandates.

A mandate authorizes one payment of a fixed amount against one cart. It
carries a challenge (canonical JSON of its own identity and terms) that the
payer must sign. Status only ever moves forward:

    active -> used       (consumed by exactly one payment)
    active -> expired    (TTL passed; scheduled timer or lazy check on read)
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import InvalidRequestError, MandateNotFoundError
from .storage import InMemoryStore, Store, new_record_id
from .timestamps import Clock, parse_timestamp, to_iso, to_millis, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"


class MandateStatus(str, Enum):
    ACTIVE = "active"
    USED = "used"
    EXPIRED = "expired"


def canonical_json_bytes(value: Any) -> bytes:
    """Serialize JSON using deterministic ordering and no insignificant whitespace."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")


@dataclass
class Mandate:
    """A single-use payment authorization. ``amount`` is in minor units (cents)."""

    mandate_id: str
    cart_id: str
    payer_ref: str
    amount: int
    currency: str
    ttl: datetime
    challenge_data: str
    created: datetime
    status: str = MandateStatus.ACTIVE.value
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def challenge_bytes(self) -> bytes:
        """The exact bytes a payer signs."""
        return base64.b64decode(self.challenge_data)

    def is_expired(self, now: datetime) -> bool:
        return now > self.ttl

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "mandateId": self.mandate_id,
            "cartId": self.cart_id,
            "payerRef": self.payer_ref,
            "amount": self.amount,
            "currency": self.currency,
            "ttl": to_iso(self.ttl),
            "challengeData": self.challenge_data,
            "created": to_iso(self.created),
            "status": self.status,
        }
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Mandate:
        return cls(
            mandate_id=str(d["mandateId"]),
            cart_id=str(d["cartId"]),
            payer_ref=str(d["payerRef"]),
            amount=int(d["amount"]),
            currency=str(d.get("currency", DEFAULT_CURRENCY)),
            ttl=parse_timestamp(d["ttl"], "ttl"),
            challenge_data=str(d["challengeData"]),
            created=parse_timestamp(d["created"], "created"),
            status=str(d.get("status", MandateStatus.ACTIVE.value)),
            metadata=dict(d.get("metadata") or {}),
        )


@dataclass
class MandateRequest:
    cart_id: str
    payer_ref: str
    amount: int
    ttl: datetime
    currency: str = DEFAULT_CURRENCY
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> MandateRequest:
        cart_id = d.get("cartId")
        payer_ref = d.get("payerRef")
        amount = d.get("amount")
        ttl = d.get("ttl")
        if not cart_id or not payer_ref or not amount or not ttl:
            raise InvalidRequestError("cartId, payerRef, amount, and ttl are required")
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidRequestError("amount must be a positive integer in minor units")
        metadata = d.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise InvalidRequestError("metadata must be an object")
        return cls(
            cart_id=str(cart_id),
            payer_ref=str(payer_ref),
            amount=amount,
            ttl=parse_timestamp(ttl, "ttl"),
            currency=str(d.get("currency") or DEFAULT_CURRENCY),
            metadata=dict(metadata),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "cartId": self.cart_id,
            "payerRef": self.payer_ref,
            "amount": self.amount,
            "currency": self.currency,
            "ttl": to_iso(self.ttl),
        }
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d


def build_challenge(
    mandate_id: str,
    cart_id: str,
    payer_ref: str,
    amount: int,
    currency: str,
    ttl: datetime,
    issued_at: datetime,
) -> bytes:
    return canonical_json_bytes({
        "mandateId": mandate_id,
        "cartId": cart_id,
        "payerRef": payer_ref,
        "amount": amount,
        "currency": currency,
        "ttl": to_iso(ttl),
        "issuedAtMillis": to_millis(issued_at),
    })


class MandateIssuer:
    """Issues mandates and owns their expiry transitions."""

    def __init__(self, store: Optional[Store[Mandate]] = None, clock: Clock = utcnow):
        self.store: Store[Mandate] = store if store is not None else InMemoryStore()
        self.clock = clock
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def create_mandate(self, request: MandateRequest) -> Mandate:
        now = self.clock()
        mandate_id = new_record_id("mandate")
        challenge = build_challenge(
            mandate_id,
            request.cart_id,
            request.payer_ref,
            request.amount,
            request.currency,
            request.ttl,
            now,
        )
        mandate = Mandate(
            mandate_id=mandate_id,
            cart_id=request.cart_id,
            payer_ref=request.payer_ref,
            amount=request.amount,
            currency=request.currency,
            ttl=request.ttl,
            challenge_data=base64.b64encode(challenge).decode("ascii"),
            created=now,
            metadata=dict(request.metadata),
        )
        self.store.put(mandate_id, mandate)
        self._schedule_expiration(mandate_id, (request.ttl - now).total_seconds())
        logger.info(
            "Mandate %s issued for cart %s: %s %s (ttl %s)",
            mandate_id, request.cart_id, request.amount, request.currency, to_iso(request.ttl),
        )
        return mandate

    def get_mandate(self, mandate_id: str) -> Mandate:
        mandate = self.store.get(mandate_id)
        if mandate is None:
            raise MandateNotFoundError(mandate_id)
        if mandate.status == MandateStatus.ACTIVE.value and mandate.is_expired(self.clock()):
            self.expire(mandate_id)
            return self.store.get(mandate_id) or mandate
        return mandate

    def expire(self, mandate_id: str) -> bool:
        """Move an active mandate to expired. A used mandate is left alone."""
        mandate = self.store.get(mandate_id)
        if mandate is None or mandate.status != MandateStatus.ACTIVE.value:
            return False
        expired = replace(mandate, status=MandateStatus.EXPIRED.value)
        if not self.store.compare_and_swap(mandate_id, mandate, expired):
            return False
        logger.info("Mandate %s expired", mandate_id)
        return True

    def mark_used(self, mandate: Mandate) -> bool:
        """Consume an active mandate; False if it changed since it was read."""
        if mandate.status != MandateStatus.ACTIVE.value:
            return False
        used = replace(mandate, status=MandateStatus.USED.value)
        if not self.store.compare_and_swap(mandate.mandate_id, mandate, used):
            return False
        self._cancel_timer(mandate.mandate_id)
        return True

    def _schedule_expiration(self, mandate_id: str, delay: float) -> None:
        if delay <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller); expiry is still enforced on read.
            return
        self._timers[mandate_id] = loop.call_later(delay, self._on_timer, mandate_id)

    def _on_timer(self, mandate_id: str) -> None:
        self._timers.pop(mandate_id, None)
        self.expire(mandate_id)

    def _cancel_timer(self, mandate_id: str) -> None:
        handle = self._timers.pop(mandate_id, None)
        if handle is not None:
            handle.cancel()

    def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

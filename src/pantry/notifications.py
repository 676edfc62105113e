"""Webhook notifications sent while an order moves through its flow."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import httpx

from . import __version__
from .audit import json_default
from .errors import NotificationError
from .timestamps import to_iso, utcnow

logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TIMEOUT = 5.0


class NotificationType(str, Enum):
    SNACK_OPTIONS = "snack_options"
    APPROVAL_REQUEST = "approval_request"
    PAYMENT_CONFIRMATION = "payment_confirmation"
    ERROR = "error"


@dataclass
class Notification:
    type: NotificationType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: to_iso(utcnow()))

    def to_dict(self) -> dict[str, Any]:
        return json.loads(json.dumps(
            {"type": self.type.value, "timestamp": self.timestamp, "data": self.data},
            default=json_default,
        ))


class WebhookNotifier:
    """POSTs notifications to a webhook, or logs them when no real URL is set."""

    def __init__(
        self,
        url: Optional[str] = None,
        require_delivery: bool = False,
        timeout: float = DEFAULT_WEBHOOK_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or ""
        self.require_delivery = require_delivery
        self.mock_mode = not self.url or "example" in self.url
        self._timeout = timeout
        self._transport = transport
        self.sent: list[Notification] = []

    async def send(self, notification: Notification) -> bool:
        """Deliver one notification. Returns False if delivery failed and was optional."""
        self.sent.append(notification)
        payload = notification.to_dict()
        if self.mock_mode:
            logger.info("Notification (not delivered, no webhook configured): %s", json.dumps(payload))
            return True

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    json=payload,
                    headers={"User-Agent": f"pantry/{__version__}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            if self.require_delivery:
                raise NotificationError(f"Failed to deliver {notification.type.value} notification: {e}") from e
            logger.warning("Failed to deliver %s notification: %s", notification.type.value, e)
            return False

        logger.info("Webhook sent: %s", notification.type.value)
        return True

    async def send_snack_options(self, options: list[Any]) -> bool:
        return await self.send(Notification(NotificationType.SNACK_OPTIONS, {
            "message": "Snack options available for team approval",
            "options": options,
            "action_required": "Please review and approve preferred snacks",
        }))

    async def request_approval(self, quote: Any, vendor: str) -> bool:
        total = quote.get("total") if isinstance(quote, dict) else getattr(quote, "total", None)
        return await self.send(Notification(NotificationType.APPROVAL_REQUEST, {
            "message": "Quote ready for approval",
            "vendor": vendor,
            "quote": quote,
            "total": total,
            "action_required": "Please approve this snack order",
        }))

    async def confirm_payment(self, payment: dict[str, Any]) -> bool:
        return await self.send(Notification(NotificationType.PAYMENT_CONFIRMATION, {
            "message": "Snack order payment processed",
            "payment": payment,
            "status": payment.get("status"),
        }))

    async def send_error(self, error: str, context: Optional[dict[str, Any]] = None) -> bool:
        return await self.send(Notification(NotificationType.ERROR, {
            "message": "Error in snack ordering process",
            "error": error,
            "context": context or {},
        }))

"""Tests for webhook notifications."""

import json
from decimal import Decimal

import httpx
import pytest

from pantry.errors import NotificationError
from pantry.notifications import Notification, NotificationType, WebhookNotifier


class TestMockMode:
    @pytest.mark.asyncio
    async def test_no_url_only_records(self):
        notifier = WebhookNotifier()
        assert notifier.mock_mode
        assert await notifier.send_error("boom", {"flowId": "flow_1"}) is True
        assert notifier.sent[0].data["error"] == "boom"

    def test_example_url_is_mock(self):
        assert WebhookNotifier("https://hooks.example.com/x").mock_mode


class TestDelivery:
    @pytest.mark.asyncio
    async def test_posts_json_payload(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        notifier = WebhookNotifier("https://hooks.internal.test/snacks", transport=httpx.MockTransport(handler))
        ok = await notifier.request_approval({"quoteId": "quote_1", "total": Decimal("40")}, "SnackCo Catering")

        assert ok is True
        assert received[0]["type"] == "approval_request"
        assert received[0]["data"]["total"] == 40
        assert received[0]["data"]["vendor"] == "SnackCo Catering"
        assert received[0]["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_optional_delivery_failure_returns_false(self):
        notifier = WebhookNotifier(
            "https://hooks.internal.test/snacks",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        assert await notifier.confirm_payment({"status": "completed"}) is False

    @pytest.mark.asyncio
    async def test_required_delivery_failure_raises(self):
        notifier = WebhookNotifier(
            "https://hooks.internal.test/snacks",
            require_delivery=True,
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        with pytest.raises(NotificationError, match="payment_confirmation"):
            await notifier.confirm_payment({"status": "completed"})


def test_notification_dict_serializes_decimals():
    d = Notification(NotificationType.SNACK_OPTIONS, {"price": Decimal("12.50")}).to_dict()
    assert d["type"] == "snack_options"
    assert d["data"] == {"price": 12.5}

"""Shared fixtures: a controllable clock and fast in-process services."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from pantry.mandate import MandateIssuer
from pantry.settlement import PaymentSettlement, SettlementOutcome


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class ScriptedBackend:
    """Settlement backend that resolves immediately with preset outcomes."""

    def __init__(self, *outcomes: SettlementOutcome):
        self.outcomes = list(outcomes) or [SettlementOutcome(success=True)]
        self.submitted = []

    async def submit(self, payment):
        self.submitted.append(payment)
        if len(self.outcomes) > 1:
            return self.outcomes.pop(0)
        return self.outcomes[0]


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def backend():
    return ScriptedBackend()


@pytest.fixture
def settlement(backend, clock):
    return PaymentSettlement(MandateIssuer(clock=clock), backend=backend)


def asgi_client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture
def asgi():
    return asgi_client

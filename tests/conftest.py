"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest

from hookline.config import Settings
from hookline.engine import WebhookEngine
from hookline.models import Envelope, WebhookConfig
from hookline.webhooks import DeliveryStore, RetryScheduler, WebhookRegistry

# Add tests directory to path so helpers can be imported from test modules
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=UTC)


class FrozenClock:
    """Manually advanced clock.

    Pass the instance wherever a ``clock`` callable is accepted and move
    time forward with :meth:`advance`.
    """

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class Endpoint:
    """Scripted subscriber endpoint for httpx.MockTransport.

    Each request consumes the next scripted reply; the last reply repeats
    once the script is exhausted. A reply is either a status code or an
    exception class to raise (e.g. ``httpx.ConnectError``).
    """

    def __init__(self, *replies: int | type[Exception], body: str = "OK") -> None:
        self.replies: list[int | type[Exception]] = list(replies) or [200]
        self.body = body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.replies) - 1)
        reply = self.replies[index]
        if isinstance(reply, type) and issubclass(reply, Exception):
            raise reply("scripted failure", request=request)
        return httpx.Response(reply, text=self.body)

    @property
    def calls(self) -> int:
        return len(self.requests)


class Router:
    """Routes requests to an Endpoint by host name."""

    def __init__(self, endpoints: dict[str, Endpoint]) -> None:
        self.endpoints = endpoints

    def __call__(self, request: httpx.Request) -> httpx.Response:
        return self.endpoints[request.url.host](request)


def make_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def webhook_data(
    url: str = "https://hooks.example.com/orders",
    events: Iterable[str] = ("order.created",),
    **overrides: Any,
) -> dict[str, Any]:
    """Registration payload with sensible defaults."""
    return {
        "url": url,
        "secret": "whsec_test_secret",
        "events": list(events),
        **overrides,
    }


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at START."""
    return FrozenClock()


@pytest.fixture
def test_settings() -> Settings:
    """Default settings, ignoring any .env file."""
    return Settings(_env_file=None, env="test")


@pytest.fixture
def registry() -> WebhookRegistry:
    return WebhookRegistry()


@pytest.fixture
def store() -> DeliveryStore:
    return DeliveryStore(retention=timedelta(hours=24))


@pytest.fixture
def scheduler(store: DeliveryStore, registry: WebhookRegistry, clock: FrozenClock) -> RetryScheduler:
    return RetryScheduler(store, registry, clock=clock)


@pytest.fixture
def sample_webhook() -> WebhookConfig:
    """A registered-looking webhook configuration."""
    return WebhookConfig(
        id="whk_test123",
        url="https://hooks.example.com/orders",
        secret="whsec_test_secret",
        events=["order.created", "order.cancelled"],
        max_attempts=5,
    )


@pytest.fixture
def sample_envelope() -> Envelope:
    """An order.created envelope with a fixed timestamp and request id."""
    return Envelope.build(
        "order.created",
        {"order_id": "ord_123", "total": "49.90", "items": 2},
        {"request_id": "req_fixed", "user_id": "usr_9"},
        timestamp=START,
    )


@pytest.fixture
def make_engine(
    test_settings: Settings, clock: FrozenClock
) -> Callable[[Callable[[httpx.Request], httpx.Response]], WebhookEngine]:
    """Factory building an engine wired to a mock transport and the frozen clock."""

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> WebhookEngine:
        return WebhookEngine(test_settings, client=make_client(handler), clock=clock)

    return factory

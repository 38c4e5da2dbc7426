"""End-to-end tests for WebhookEngine.

Subscriber endpoints are scripted through httpx.MockTransport and time is
driven by a frozen clock, so retry schedules can be walked deterministically.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import timedelta

import httpx
import pytest

from conftest import START, Endpoint, FrozenClock, Router, webhook_data
from hookline import WebhookEngine, WebhookEvents
from hookline.exceptions import NotFoundError, ValidationError
from hookline.webhooks import compute_signature, verify

EngineFactory = Callable[[Callable[[httpx.Request], httpx.Response]], WebhookEngine]


async def run_retries_until_settled(
    engine: WebhookEngine, clock: FrozenClock, max_scans: int = 20
) -> int:
    """Advance the clock to each due time and scan until nothing is queued."""
    scans = 0
    while len(engine.scheduler) and scans < max_scans:
        due = engine.scheduler.next_due_at()
        assert due is not None
        clock.now = due
        await engine.process_retries()
        scans += 1
    return scans


class TestDeliveryScenarios:
    """Delivery outcomes for the main endpoint behaviours."""

    @pytest.mark.asyncio
    async def test_always_unavailable_exhausts_attempts(
        self, make_engine: EngineFactory, clock: FrozenClock
    ) -> None:
        """An endpoint that always returns 503 ends failed after max_attempts."""
        endpoint = Endpoint(503)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())

        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})
        assert engine.get_delivery(delivery_id).status == "retrying"  # type: ignore[union-attr]

        await run_retries_until_settled(engine, clock)

        delivery = engine.get_delivery(delivery_id)
        assert delivery is not None
        assert delivery.status == "failed"
        assert delivery.attempt_count == 5
        assert endpoint.calls == 5
        assert delivery.completed_at == clock.now
        assert delivery.next_retry_at is None
        assert len(engine.scheduler) == 0

    @pytest.mark.asyncio
    async def test_retry_spacing_follows_backoff(
        self, make_engine: EngineFactory, clock: FrozenClock
    ) -> None:
        """Retries are spaced 30s, 60s, 5m and 15m apart."""
        engine = make_engine(Endpoint(503))
        engine.register("whk_a", webhook_data())

        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})
        await run_retries_until_settled(engine, clock)

        delivery = engine.get_delivery(delivery_id)
        assert delivery is not None
        times = [a.timestamp for a in delivery.attempts]
        gaps = [(b - a).total_seconds() for a, b in zip(times, times[1:], strict=False)]
        assert gaps == [30, 60, 300, 900]

    @pytest.mark.asyncio
    async def test_retry_not_attempted_early(
        self, make_engine: EngineFactory, clock: FrozenClock
    ) -> None:
        """A scan before the due time makes no attempt."""
        endpoint = Endpoint(503)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())
        await engine.send("order.created", {"order_id": "ord_1"})

        clock.advance(seconds=29)
        assert await engine.process_retries() == 0
        assert endpoint.calls == 1

        clock.advance(seconds=1)
        assert await engine.process_retries() == 1
        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_client_error_fails_immediately(self, make_engine: EngineFactory) -> None:
        """A 400 on the first attempt fails the delivery with one attempt."""
        engine = make_engine(Endpoint(400))
        engine.register("whk_a", webhook_data())

        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})

        delivery = engine.get_delivery(delivery_id)
        assert delivery is not None
        assert delivery.status == "failed"
        assert delivery.attempt_count == 1
        assert len(engine.scheduler) == 0

    @pytest.mark.asyncio
    async def test_recovers_after_server_error(
        self, make_engine: EngineFactory, clock: FrozenClock
    ) -> None:
        """500 then 200 succeeds on the second attempt."""
        engine = make_engine(Endpoint(500, 200))
        engine.register("whk_a", webhook_data())

        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})
        first = engine.get_delivery(delivery_id)
        assert first is not None
        assert first.next_retry_at == START + timedelta(seconds=30)
        assert first.completed_at is None

        await run_retries_until_settled(engine, clock)

        delivery = engine.get_delivery(delivery_id)
        assert delivery is not None
        assert delivery.status == "success"
        assert delivery.attempt_count == 2
        assert delivery.completed_at == START + timedelta(seconds=30)
        assert delivery.next_retry_at is None

    @pytest.mark.asyncio
    async def test_no_subscribers(self, make_engine: EngineFactory) -> None:
        """Sending an event nobody subscribes to creates nothing."""
        endpoint = Endpoint(200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data(events=["payment.failed"]))

        assert await engine.send("order.created", {"order_id": "ord_1"}) == []
        assert engine.get_stats().total_deliveries == 0
        assert endpoint.calls == 0

    @pytest.mark.asyncio
    async def test_custom_max_attempts(self, make_engine: EngineFactory, clock: FrozenClock) -> None:
        """A webhook's own attempt budget overrides the default."""
        endpoint = Endpoint(503)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data(max_attempts=2))

        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})
        await run_retries_until_settled(engine, clock)

        assert engine.get_delivery(delivery_id).attempt_count == 2  # type: ignore[union-attr]
        assert endpoint.calls == 2

    @pytest.mark.asyncio
    async def test_deactivated_webhook_stops_retrying(
        self, make_engine: EngineFactory, clock: FrozenClock
    ) -> None:
        """Deactivating a webhook drops its queued retries."""
        endpoint = Endpoint(503)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())
        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})

        engine.update_webhook("whk_a", active=False)
        clock.advance(hours=2)
        assert await engine.process_retries() == 0

        assert endpoint.calls == 1
        assert engine.get_delivery(delivery_id).status == "retrying"  # type: ignore[union-attr]
        assert engine.get_stats().pending_retries == 0


class TestWebhookManagement:
    """Tests for registration through the engine."""

    def test_create_webhook_generates_id(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(200))
        webhook = engine.create_webhook(
            "https://hooks.example.com/orders",
            "s3cret",
            [WebhookEvents.ORDER_CREATED],
            description="ERP",
        )
        assert webhook.id.startswith("whk_")
        assert engine.get_webhook(webhook.id) is not None

    def test_register_validation_error(self, make_engine: EngineFactory) -> None:
        """Invalid registrations raise synchronously."""
        engine = make_engine(Endpoint(200))
        with pytest.raises(ValidationError):
            engine.register("whk_a", webhook_data(url="nope"))

    def test_list_webhooks_hides_secrets(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(200))
        engine.register("whk_a", webhook_data())
        engine.register("whk_b", webhook_data(active=False))

        listing = engine.list_webhooks()
        assert [w.id for w in listing] == ["whk_a", "whk_b"]
        assert all("whsec_test_secret" not in w.model_dump_json() for w in listing)

    @pytest.mark.asyncio
    async def test_unregister_keeps_history(self, make_engine: EngineFactory) -> None:
        """Deliveries outlive their webhook."""
        engine = make_engine(Endpoint(200))
        engine.register("whk_a", webhook_data())
        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})

        assert engine.unregister("whk_a") is True
        assert engine.get_delivery(delivery_id) is not None
        assert engine.get_history("whk_a").total == 1
        assert engine.get_stats().total_webhooks == 0


class TestTestWebhook:
    """Tests for test deliveries."""

    @pytest.mark.asyncio
    async def test_sends_test_payload(self, make_engine: EngineFactory) -> None:
        endpoint = Endpoint(200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data(events=["order.created"]))

        delivery = await engine.test_webhook("whk_a", user_id="usr_ops")

        assert delivery.status == "success"
        assert delivery.event == "webhook.test"
        body = json.loads(endpoint.requests[0].content)
        assert body["data"]["test"] is True
        assert body["data"]["webhook_id"] == "whk_a"
        assert body["metadata"]["source"] == "webhook_test"
        assert body["metadata"]["userId"] == "usr_ops"

    @pytest.mark.asyncio
    async def test_only_target_receives(self, make_engine: EngineFactory) -> None:
        """Other subscribers of the same event get nothing."""
        a, b = Endpoint(200), Endpoint(200)
        engine = make_engine(Router({"a.example.com": a, "b.example.com": b}))
        for name in ("a", "b"):
            engine.register(
                f"whk_{name}",
                webhook_data(url=f"https://{name}.example.com/h", events=["webhook.test"]),
            )

        await engine.test_webhook("whk_a")

        assert (a.calls, b.calls) == (1, 0)

    @pytest.mark.asyncio
    async def test_unknown_webhook(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(200))
        with pytest.raises(NotFoundError):
            await engine.test_webhook("whk_missing")

    @pytest.mark.asyncio
    async def test_inactive_webhook(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(200))
        engine.register("whk_a", webhook_data(active=False))
        with pytest.raises(ValidationError) as exc_info:
            await engine.test_webhook("whk_a")
        assert exc_info.value.field == "active"


class TestRedeliver:
    """Tests for operator redelivery."""

    @pytest.mark.asyncio
    async def test_redelivers_failed_delivery(self, make_engine: EngineFactory) -> None:
        """A failed delivery is sent again as a new, linked delivery."""
        endpoint = Endpoint(400, 200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())
        (original_id,) = await engine.send("order.created", {"order_id": "ord_1"})

        clone = await engine.redeliver(original_id)

        original = engine.get_delivery(original_id)
        assert original is not None
        assert original.status == "failed"
        assert clone.id != original_id
        assert clone.redelivery_of == original_id
        assert clone.status == "success"
        assert clone.payload == original.payload
        assert clone.signature == original.signature
        first, second = endpoint.requests
        assert first.content == second.content
        assert second.headers["X-Webhook-Delivery"] == clone.id

    @pytest.mark.asyncio
    async def test_redelivery_signed_with_rotated_secret(
        self, make_engine: EngineFactory
    ) -> None:
        """After a secret rotation the redelivery verifies against the new secret."""
        endpoint = Endpoint(400, 200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())
        (original_id,) = await engine.send("order.created", {"order_id": "ord_1"})
        engine.update_webhook("whk_a", secret="rotated_secret")

        clone = await engine.redeliver(original_id)

        assert clone.status == "success"
        first, second = endpoint.requests
        assert first.content == second.content
        signature = second.headers["X-Webhook-Signature"]
        assert verify(second.content, signature, "rotated_secret")
        assert not verify(second.content, signature, "whsec_test_secret")
        assert clone.signature == signature

    @pytest.mark.asyncio
    async def test_only_failed_deliveries(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(200))
        engine.register("whk_a", webhook_data())
        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})

        with pytest.raises(ValidationError) as exc_info:
            await engine.redeliver(delivery_id)
        assert exc_info.value.field == "status"

    @pytest.mark.asyncio
    async def test_unknown_delivery(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(200))
        with pytest.raises(NotFoundError):
            await engine.redeliver("dlv_missing")

    @pytest.mark.asyncio
    async def test_removed_webhook(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(410))
        engine.register("whk_a", webhook_data())
        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})
        engine.unregister("whk_a")

        with pytest.raises(NotFoundError):
            await engine.redeliver(delivery_id)


class TestQueries:
    """Tests for statistics and history queries."""

    @pytest.mark.asyncio
    async def test_stats(self, make_engine: EngineFactory) -> None:
        router = Router(
            {
                "ok.example.com": Endpoint(200),
                "bad.example.com": Endpoint(404),
                "slow.example.com": Endpoint(503),
            }
        )
        engine = make_engine(router)
        for name in ("ok", "bad", "slow"):
            engine.register(f"whk_{name}", webhook_data(url=f"https://{name}.example.com/h"))
        engine.register("whk_off", webhook_data(active=False))

        await engine.send("order.created", {"order_id": "ord_1"})

        stats = engine.get_stats()
        assert stats.total_webhooks == 4
        assert stats.active_webhooks == 3
        assert stats.total_deliveries == 3
        assert stats.successful_deliveries == 1
        assert stats.failed_deliveries == 1
        assert stats.retrying_deliveries == 1
        assert stats.pending_retries == 1
        assert stats.total_attempts == 3
        assert stats.status_counts == {"pending": 0, "retrying": 1, "success": 1, "failed": 1}

    @pytest.mark.asyncio
    async def test_history_and_recent(self, make_engine: EngineFactory, clock: FrozenClock) -> None:
        engine = make_engine(Endpoint(200))
        engine.register("whk_a", webhook_data(events=["order.created", "order.cancelled"]))

        await engine.send("order.created", {"order_id": "ord_1"})
        clock.advance(seconds=1)
        (latest,) = await engine.send("order.cancelled", {"order_id": "ord_1"})

        history = engine.get_history("whk_a", limit=10)
        assert history.total == 2
        assert history.deliveries[0].id == latest
        assert engine.get_history("whk_a", event="order.created").total == 1
        assert engine.get_recent(limit=1).deliveries[0].id == latest

    @pytest.mark.asyncio
    async def test_cleanup(self, make_engine: EngineFactory, clock: FrozenClock) -> None:
        """Finished deliveries are evicted after the retention window."""
        engine = make_engine(Endpoint(200))
        engine.register("whk_a", webhook_data())
        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"})

        clock.advance(hours=23)
        assert engine.cleanup() == 0
        clock.advance(hours=2)
        assert engine.cleanup() == 1
        assert engine.get_delivery(delivery_id) is None

    def test_available_events(self) -> None:
        catalog = WebhookEngine.available_events()
        assert {e["event"] for e in catalog["order"]} == {
            "order.created",
            "order.updated",
            "order.completed",
            "order.cancelled",
        }
        assert "payment" in catalog
        assert "inventory" in catalog

    def test_verify(self) -> None:
        body = b'{"event":"order.created"}'
        assert WebhookEngine.verify(body, compute_signature(body, "k"), "k")
        assert not WebhookEngine.verify(body, compute_signature(body, "k"), "other")


class TestCommerceEvents:
    """Tests for commerce event helpers."""

    @pytest.mark.asyncio
    async def test_send_commerce_event_tags_metadata(self, make_engine: EngineFactory) -> None:
        endpoint = Endpoint(200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data(events=[WebhookEvents.PAYMENT_SUCCEEDED]))

        ids = await engine.send_commerce_event(
            WebhookEvents.PAYMENT_SUCCEEDED,
            {"amount": "49.90"},
            user_id="usr_1",
            order_id="ord_42",
        )

        assert len(ids) == 1
        body = json.loads(endpoint.requests[0].content)
        assert body["event"] == "payment.succeeded"
        assert body["metadata"]["source"] == "hookline-commerce"
        assert body["metadata"]["order_id"] == "ord_42"
        assert body["metadata"]["userId"] == "usr_1"
        assert verify(
            endpoint.requests[0].content,
            endpoint.requests[0].headers["X-Webhook-Signature"],
            "whsec_test_secret",
        )

    @pytest.mark.asyncio
    async def test_numeric_user_id(self, make_engine: EngineFactory) -> None:
        """An integer user id is delivered as a string userId."""
        endpoint = Endpoint(200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())

        ids = await engine.send("order.created", {"order_id": "ord_1"}, {"user_id": 42})

        assert len(ids) == 1
        assert engine.get_delivery(ids[0]).status == "success"  # type: ignore[union-attr]
        body = json.loads(endpoint.requests[0].content)
        assert body["metadata"]["userId"] == "42"

    @pytest.mark.asyncio
    async def test_malformed_metadata_rejected(self, make_engine: EngineFactory) -> None:
        """Metadata that can't form an envelope raises ValidationError and creates nothing."""
        endpoint = Endpoint(200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())

        with pytest.raises(ValidationError) as exc_info:
            await engine.send("order.created", {"order_id": "ord_1"}, {"user_id": ["usr_1"]})

        assert exc_info.value.field.startswith("metadata.")
        assert endpoint.calls == 0
        assert engine.get_stats().total_deliveries == 0


class TestLifecycle:
    """Tests for starting and stopping background jobs."""

    @pytest.mark.asyncio
    async def test_context_manager_runs_worker(self, make_engine: EngineFactory) -> None:
        engine = make_engine(Endpoint(200))
        async with engine:
            assert engine.worker.is_running
        assert not engine.worker.is_running

    @pytest.mark.asyncio
    async def test_stop_drains_background_sends(self, make_engine: EngineFactory) -> None:
        """stop waits for fan-outs started with wait=False."""
        engine = make_engine(Endpoint(200))
        engine.register("whk_a", webhook_data())
        await engine.start()

        (delivery_id,) = await engine.send("order.created", {"order_id": "ord_1"}, wait=False)
        await engine.stop()

        assert engine.get_delivery(delivery_id).status == "success"  # type: ignore[union-attr]

    @pytest.mark.asyncio
    async def test_retry_task_runs_on_demand(
        self, make_engine: EngineFactory, clock: FrozenClock
    ) -> None:
        """The retry scan is registered as a worker task."""
        endpoint = Endpoint(503, 200)
        engine = make_engine(endpoint)
        engine.register("whk_a", webhook_data())
        await engine.send("order.created", {"order_id": "ord_1"})

        clock.advance(seconds=30)
        assert await engine.worker.run_once("webhook_retry_scan") == "retried=1"
        assert endpoint.calls == 2

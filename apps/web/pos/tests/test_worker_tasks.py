"""Tests for draining the webhook job queue."""

import json
from datetime import timedelta

from django.utils import timezone

import pytest
from passline_schemas import EventKind, OrderLifecycle

from apps.web.pos.adapters.mock import MockPOSAdapter, make_mock_order
from apps.web.pos.exceptions import POSRateLimitError
from apps.web.pos.models import WebhookEventStatus, WebhookJob, WebhookJobStatus
from apps.web.pos.services import gateway
from apps.web.pos.tasks import drain_webhook_jobs, event_for_job
from apps.web.restaurant.models import KitchenTicket, OrderSnapshot


def _deliver(**fields) -> None:
    payload = {
        "event_type": "order.updated",
        "event_id": "evt-1",
        "order_id": "o-1",
        "location_id": "mock-location",
    }
    payload.update(fields)
    result = gateway.handle("mock", json.dumps(payload).encode(), {})
    assert result.status == "processed"


class _RateLimitedAdapter(MockPOSAdapter):
    async def fetch_order(self, session, location_id, order_id):
        raise POSRateLimitError("slow down", provider="mock", retry_after=42)


@pytest.fixture
def adapter() -> MockPOSAdapter:
    return MockPOSAdapter(orders=[make_mock_order("o-1")])


@pytest.mark.django_db
class TestDrainWebhookJobs:
    """End-to-end: gateway -> queue -> worker -> ingestion."""

    def test_processes_queued_job(self, adapter, mock_location):
        _deliver()

        counts = drain_webhook_jobs(adapter_factory=lambda p: adapter)

        assert counts == {"claimed": 1, "done": 1, "failed": 0}
        job = WebhookJob.objects.get()
        assert job.status == WebhookJobStatus.DONE
        assert job.event.status == WebhookEventStatus.PROCESSED
        assert KitchenTicket.objects.filter(order__external_order_id="o-1").exists()

    def test_payment_event_creates_snapshot(self, adapter, mock_location):
        adapter.set_lifecycle("o-1", OrderLifecycle.PAID)
        _deliver(
            event_type="payment.updated",
            event_id="pay-evt-1",
            status="COMPLETED",
            payment_id="pay-1",
            amount="450",
        )

        drain_webhook_jobs(adapter_factory=lambda p: adapter)

        snapshot = OrderSnapshot.objects.get()
        assert snapshot.snapshot["payment_id"] == "pay-1"

    def test_nothing_due(self, adapter, mock_location):
        assert drain_webhook_jobs(adapter_factory=lambda p: adapter) == {
            "claimed": 0,
            "done": 0,
            "failed": 0,
        }

    def test_missing_order_is_retried(self, mock_location):
        _deliver(order_id="o-404")

        counts = drain_webhook_jobs(adapter_factory=lambda p: MockPOSAdapter())

        assert counts == {"claimed": 1, "done": 0, "failed": 1}
        job = WebhookJob.objects.get()
        assert job.status == WebhookJobStatus.QUEUED
        assert job.attempts == 1
        assert job.last_error.startswith("OrderNotFoundError:")
        assert job.next_attempt_at > timezone.now()

    def test_rate_limit_uses_retry_after(self, mock_location):
        _deliver()
        before = timezone.now()

        drain_webhook_jobs(adapter_factory=lambda p: _RateLimitedAdapter())

        job = WebhookJob.objects.get()
        assert job.next_attempt_at >= before + timedelta(seconds=42)

    def test_backoff_sequence_is_clamped(self, settings, mock_location):
        settings.WEBHOOK_JOB_MAX_ATTEMPTS = 10
        _deliver(order_id="o-404")

        for attempt, seconds in enumerate([5, 30, 120, 600, 3600, 3600], start=1):
            WebhookJob.objects.update(next_attempt_at=timezone.now())
            before = timezone.now()
            counts = drain_webhook_jobs(adapter_factory=lambda p: MockPOSAdapter())
            after = timezone.now()

            assert counts == {"claimed": 1, "done": 0, "failed": 1}
            job = WebhookJob.objects.get()
            assert job.attempts == attempt
            assert job.status == WebhookJobStatus.QUEUED
            delay = timedelta(seconds=seconds)
            assert before + delay <= job.next_attempt_at <= after + delay

    def test_unexpected_error_is_retried(self, mock_location):
        _deliver()

        def broken_factory(provider):
            raise RuntimeError("adapter misconfigured")

        counts = drain_webhook_jobs(adapter_factory=broken_factory)

        assert counts["failed"] == 1
        assert WebhookJob.objects.get().last_error == "RuntimeError: adapter misconfigured"

    def test_retry_succeeds_once_due(self, adapter, mock_location):
        _deliver(order_id="o-2")
        drain_webhook_jobs(adapter_factory=lambda p: adapter)
        adapter.add_order(make_mock_order("o-2"))
        WebhookJob.objects.update(next_attempt_at=timezone.now())

        counts = drain_webhook_jobs(adapter_factory=lambda p: adapter)

        assert counts["done"] == 1
        assert WebhookJob.objects.get().status == WebhookJobStatus.DONE

    def test_stale_lease_recovered(self, adapter, mock_location):
        _deliver()
        WebhookJob.objects.update(
            status=WebhookJobStatus.PROCESSING,
            locked_by="dead-worker",
            locked_at=timezone.now() - timedelta(minutes=30),
        )

        counts = drain_webhook_jobs(adapter_factory=lambda p: adapter)

        assert counts["done"] == 1

    def test_provider_filter(self, adapter, mock_location):
        _deliver()

        assert drain_webhook_jobs(provider="square", adapter_factory=lambda p: adapter)[
            "claimed"
        ] == 0
        assert drain_webhook_jobs(provider="mock", adapter_factory=lambda p: adapter)[
            "claimed"
        ] == 1


@pytest.mark.django_db
class TestEventForJob:
    """Rebuilding the normalized event from storage."""

    def test_round_trip(self, mock_location):
        _deliver(event_type="payment.updated", status="COMPLETED", amount="450")
        job = WebhookJob.objects.select_related("event").get()

        event = event_for_job(job)

        assert event.event_kind == EventKind.PAYMENT
        assert event.external_order_id == "o-1"
        assert event.location_id == "mock-location"
        assert event.status_hint == "COMPLETED"
        assert event.amount_cents == 450
        assert event.payload["event_id"] == "evt-1"

"""POS webhook models - raw event log and the lease-based job queue."""

import uuid

from django.db import models
from django.utils import timezone

from apps.web.restaurant.models import POSProvider


class WebhookEventStatus(models.TextChoices):
    """Webhook event processing status."""

    RECEIVED = "received", "Received"
    IGNORED = "ignored", "Ignored"  # e.g., unknown location
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class WebhookEvent(models.Model):
    """
    Raw webhook event, stored once per (provider, external_event_id).

    The payload is immutable; only status, reason and processed_at change.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Provider info
    provider = models.CharField(
        max_length=20,
        choices=POSProvider.choices,
    )
    external_event_id = models.CharField(
        max_length=255,
        help_text="Event ID from the POS system (for deduplication)",
    )
    event_type = models.CharField(
        max_length=100,
        help_text="Event type from the POS system",
    )

    # Payload
    payload = models.JSONField(
        help_text="Raw webhook payload",
    )
    normalized = models.JSONField(
        default=dict,
        blank=True,
        help_text="Routing fields extracted from the payload (order, location, kind)",
    )

    # Processing status
    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.RECEIVED,
    )
    reason = models.CharField(
        max_length=255,
        blank=True,
        help_text="Why the event was ignored or failed",
    )
    received_at = models.DateTimeField(auto_now_add=True)
    processed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-received_at"]
        indexes = [
            models.Index(fields=["provider", "status"]),
            models.Index(fields=["provider", "event_type"]),
            models.Index(fields=["received_at"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["provider", "external_event_id"],
                name="unique_webhook_event",
            )
        ]

    def __str__(self) -> str:
        return f"{self.provider}:{self.event_type} ({self.status})"


class WebhookJobStatus(models.TextChoices):
    """Job queue status."""

    QUEUED = "queued", "Queued"
    PROCESSING = "processing", "Processing"
    DONE = "done", "Done"
    FAILED = "failed", "Failed"  # retries exhausted


class WebhookJob(models.Model):
    """
    Unit of work for the ingestion worker.

    Mutated only by the queue operations in apps.web.pos.services.job_queue.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event = models.OneToOneField(
        WebhookEvent,
        on_delete=models.CASCADE,
        related_name="job",
    )
    provider = models.CharField(
        max_length=20,
        choices=POSProvider.choices,
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookJobStatus.choices,
        default=WebhookJobStatus.QUEUED,
    )
    attempts = models.PositiveIntegerField(default=0)

    # Lease
    locked_by = models.CharField(max_length=100, blank=True)
    locked_at = models.DateTimeField(null=True, blank=True)

    next_attempt_at = models.DateTimeField(default=timezone.now)
    last_error = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["next_attempt_at"]
        indexes = [
            models.Index(fields=["status", "next_attempt_at"]),
            models.Index(fields=["provider", "status", "next_attempt_at"]),
            models.Index(fields=["status", "locked_at"]),
        ]

    def __str__(self) -> str:
        return f"Job {self.pk} ({self.provider}, {self.status}, attempts={self.attempts})"

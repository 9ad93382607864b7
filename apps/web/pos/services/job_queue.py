"""
Webhook job queue - lease-based retry queue on the WebhookJob table.

Workers claim due jobs with SELECT ... FOR UPDATE SKIP LOCKED so two
workers never hold the same job. A claim is a lease: if the worker dies,
reset_stale() returns the job to the queue after the lease TTL.

Job lifecycle:
    queued -> processing -> done
                         -> queued (retry, with backoff)
                         -> failed (attempts exhausted)
"""

import logging
import time
from collections.abc import Iterable
from datetime import datetime, timedelta
from uuid import UUID

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.web.pos.models import (
    WebhookEvent,
    WebhookEventStatus,
    WebhookJob,
    WebhookJobStatus,
)

logger = logging.getLogger(__name__)

# Retry schedule in seconds, indexed by attempt (1-based), clamped to the last
BACKOFF_SECONDS = [5, 30, 120, 600, 3600]

CLAIM_LIMIT = 20
DEFAULT_MAX_ATTEMPTS = 8
STALE_LEASE_TTL = timedelta(minutes=5)

MAX_ERROR_LENGTH = 2000


def backoff_for(attempts: int) -> int:
    """Seconds to wait before the next try after `attempts` failures."""
    index = min(max(attempts, 1), len(BACKOFF_SECONDS)) - 1
    return BACKOFF_SECONDS[index]


def configured_max_attempts() -> int:
    return int(getattr(settings, "WEBHOOK_JOB_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS))


def new_worker_id() -> str:
    return f"worker-{int(time.time() * 1000)}"


def enqueue(event: WebhookEvent) -> WebhookJob:
    """Create the job for an event; one job per event."""
    job, created = WebhookJob.objects.get_or_create(
        event=event,
        defaults={"provider": event.provider},
    )
    if created:
        logger.debug("Enqueued job %s for event %s", job.pk, event.pk)
    return job


def _due_job_ids(provider: str | None, limit: int, now: datetime) -> list[UUID]:
    due = WebhookJob.objects.select_for_update(skip_locked=True).filter(
        status=WebhookJobStatus.QUEUED,
        next_attempt_at__lte=now,
    )
    if provider:
        due = due.filter(provider=provider)
    return list(due.order_by("next_attempt_at").values_list("id", flat=True)[:limit])


def _leased_job(job_id: UUID | str, worker_id: str | None) -> WebhookJob | None:
    """Lock the job row; with worker_id, only while that worker holds the lease."""
    jobs = WebhookJob.objects.select_for_update().filter(id=job_id)
    if worker_id is not None:
        jobs = jobs.filter(status=WebhookJobStatus.PROCESSING, locked_by=worker_id)
    job = jobs.first()
    if job is None and worker_id is not None:
        logger.warning("Worker %s no longer holds the lease on job %s", worker_id, job_id)
    return job


def claim(
    provider: str | None = None,
    limit: int = CLAIM_LIMIT,
    worker_id: str | None = None,
) -> list[WebhookJob]:
    """
    Lease up to `limit` due jobs.

    Args:
        provider: Only claim jobs for this provider; None claims across providers.
        limit: Maximum number of jobs.
        worker_id: Lease owner recorded on the job.

    Returns:
        The claimed jobs, oldest due first, with their events loaded.
    """
    if limit <= 0:
        return []
    worker_id = worker_id or new_worker_id()
    now = timezone.now()

    with transaction.atomic():
        ids = _due_job_ids(provider, limit, now)
        if not ids:
            return []

        # Rows another claimer took since the select are no longer queued
        WebhookJob.objects.filter(id__in=ids, status=WebhookJobStatus.QUEUED).update(
            status=WebhookJobStatus.PROCESSING,
            locked_by=worker_id,
            locked_at=now,
            updated_at=now,
        )

    jobs = list(
        WebhookJob.objects.select_related("event")
        .filter(
            id__in=ids,
            status=WebhookJobStatus.PROCESSING,
            locked_by=worker_id,
            locked_at=now,
        )
        .order_by("next_attempt_at")
    )
    logger.info("Worker %s claimed %d job(s)", worker_id, len(jobs))
    return jobs


def complete(job_id: UUID | str, worker_id: str | None = None) -> bool:
    """
    Mark a job done and its event processed.

    With worker_id the job is only completed while that worker holds the
    lease. Returns False when the lease was lost.
    """
    now = timezone.now()
    with transaction.atomic():
        job = _leased_job(job_id, worker_id)
        if job is None:
            return False
        job.status = WebhookJobStatus.DONE
        job.locked_by = ""
        job.locked_at = None
        job.last_error = ""
        job.save(
            update_fields=["status", "locked_by", "locked_at", "last_error", "updated_at"]
        )
        WebhookEvent.objects.filter(id=job.event_id).update(
            status=WebhookEventStatus.PROCESSED,
            reason="",
            processed_at=now,
        )
    return True


def fail(
    job_id: UUID | str,
    error: str,
    backoff_seconds: int | None = None,
    *,
    max_attempts: int | None = None,
    worker_id: str | None = None,
) -> WebhookJob | None:
    """
    Record a failed attempt.

    Increments attempts and releases the lease. The job is requeued with
    backoff, or marked failed for good once attempts reach max_attempts.
    With worker_id nothing changes unless that worker holds the lease.

    Returns:
        The updated job, or None when the lease was lost.
    """
    ceiling = max_attempts if max_attempts is not None else configured_max_attempts()
    now = timezone.now()

    with transaction.atomic():
        job = _leased_job(job_id, worker_id)
        if job is None:
            return None
        job.attempts += 1
        job.last_error = (error or "")[:MAX_ERROR_LENGTH]
        job.locked_by = ""
        job.locked_at = None

        if job.attempts >= ceiling:
            job.status = WebhookJobStatus.FAILED
            logger.error(
                "Job %s failed permanently after %d attempts: %s",
                job.pk,
                job.attempts,
                job.last_error,
            )
        else:
            delay = backoff_seconds if backoff_seconds is not None else backoff_for(job.attempts)
            job.status = WebhookJobStatus.QUEUED
            job.next_attempt_at = now + timedelta(seconds=delay)
            logger.warning(
                "Job %s failed (attempt %d/%d), retry in %ds: %s",
                job.pk,
                job.attempts,
                ceiling,
                delay,
                job.last_error,
            )

        job.save(
            update_fields=[
                "attempts",
                "last_error",
                "locked_by",
                "locked_at",
                "status",
                "next_attempt_at",
                "updated_at",
            ]
        )
        WebhookEvent.objects.filter(id=job.event_id).update(
            status=WebhookEventStatus.FAILED,
            reason=job.last_error[:255],
        )

    return job


def reset_stale(ttl: timedelta = STALE_LEASE_TTL) -> int:
    """Requeue processing jobs whose lease is older than ttl. Returns count."""
    cutoff = timezone.now() - ttl
    count = WebhookJob.objects.filter(
        status=WebhookJobStatus.PROCESSING,
        locked_at__lt=cutoff,
    ).update(
        status=WebhookJobStatus.QUEUED,
        locked_by="",
        locked_at=None,
        updated_at=timezone.now(),
    )
    if count:
        logger.warning("Reset %d stale job lease(s) older than %s", count, ttl)
    return count


def requeue(job_ids: Iterable[UUID | str]) -> int:
    """Operator action: make jobs due now, keeping their attempt count."""
    now = timezone.now()
    return WebhookJob.objects.filter(id__in=list(job_ids)).exclude(
        status=WebhookJobStatus.PROCESSING,
    ).update(
        status=WebhookJobStatus.QUEUED,
        next_attempt_at=now,
        locked_by="",
        locked_at=None,
        updated_at=now,
    )

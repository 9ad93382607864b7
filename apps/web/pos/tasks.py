"""
POS background tasks - drain the webhook job queue.

Triggered by the /jobs/process-webhooks/ cron endpoint or the
process_webhook_jobs management command. Safe to run from several
processes at once: claims never overlap.
"""

import logging
import time
from typing import Any

from passline_schemas import EventKind, IngestSignal, NormalizedEvent

from apps.web.pos.exceptions import POSError
from apps.web.pos.models import WebhookJob
from apps.web.pos.services import job_queue
from apps.web.pos.services.ingestion import AdapterFactory, ingest
from apps.web.restaurant.data_client import DataClient, DjangoDataClient

logger = logging.getLogger(__name__)


def event_for_job(job: WebhookJob) -> NormalizedEvent:
    """Rebuild the normalized event stored with the job's webhook."""
    record = job.event
    return NormalizedEvent(
        **{
            "provider": record.provider,
            "external_event_id": record.external_event_id,
            "event_type": record.event_type,
            **(record.normalized or {}),
        },
        payload=record.payload,
    )


def process_job(
    job: WebhookJob,
    *,
    data_client: DataClient | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> dict[str, Any]:
    """
    Ingest the order behind one claimed job.

    Raises whatever ingestion raises; the caller records the failure.
    """
    event = event_for_job(job)
    if event.event_kind not in (EventKind.ORDER, EventKind.PAYMENT):
        return {"skipped": True}

    result = ingest(
        event.provider.value,
        event.external_order_id or "",
        event.location_id or "",
        signal=IngestSignal.from_event(event),
        data_client=data_client,
        adapter_factory=adapter_factory,
    )
    return result.model_dump()


def drain_webhook_jobs(
    provider: str | None = None,
    limit: int = job_queue.CLAIM_LIMIT,
    worker_id: str | None = None,
    *,
    data_client: DataClient | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> dict[str, int]:
    """
    Reset stale leases, claim due jobs and process them.

    Args:
        provider: Only drain this provider's jobs.
        limit: Maximum jobs to claim.
        worker_id: Lease owner; defaults to worker-<unix ms>.

    Returns:
        Dict with claimed, done and failed counts.
    """
    start_time = time.monotonic()
    worker_id = worker_id or job_queue.new_worker_id()
    data_client = data_client or DjangoDataClient()

    job_queue.reset_stale()
    jobs = job_queue.claim(provider=provider, limit=limit, worker_id=worker_id)

    done = 0
    failed = 0
    for job in jobs:
        try:
            process_job(job, data_client=data_client, adapter_factory=adapter_factory)
        except POSError as e:
            failed += 1
            job_queue.fail(
                job.pk,
                e.describe(),
                backoff_seconds=e.backoff_seconds,
                worker_id=worker_id,
            )
        except Exception as e:
            # Unexpected error - still retried with backoff
            logger.exception("Unexpected error processing job %s: %s", job.pk, e)
            failed += 1
            job_queue.fail(job.pk, f"{type(e).__name__}: {e}", worker_id=worker_id)
        else:
            if job_queue.complete(job.pk, worker_id=worker_id):
                done += 1

    duration_ms = int((time.monotonic() - start_time) * 1000)
    if jobs:
        logger.info(
            "Worker %s drained %d job(s): %d done, %d failed in %dms",
            worker_id,
            len(jobs),
            done,
            failed,
            duration_ms,
        )
    return {"claimed": len(jobs), "done": done, "failed": failed}

"""
Webhook gateway - the synchronous half of POS webhook handling.

handle() does only local work: verify, parse, normalize, dedupe, persist,
enqueue. Fetching the order from the provider happens later in the queue
worker, so providers get a fast 200 and retries are ours to schedule.
"""

import json
import logging
from collections.abc import Mapping

from django.conf import settings
from django.db import IntegrityError, transaction

from passline_schemas import EventKind, GatewayResult, NormalizedEvent, POSProvider

from apps.web.pos import verification
from apps.web.pos.exceptions import POSWebhookError
from apps.web.pos.models import WebhookEvent, WebhookEventStatus
from apps.web.pos.services import job_queue
from apps.web.pos.services.normalizers import normalize
from apps.web.restaurant.data_client import DataClient, DjangoDataClient

logger = logging.getLogger(__name__)

ROUTABLE_KINDS = frozenset({EventKind.ORDER, EventKind.PAYMENT})


def handle(
    provider: str,
    raw_body: bytes,
    headers: Mapping[str, str],
    *,
    request_url: str | None = None,
    client_ip: str = "",
    channel: str = "",
    data_client: DataClient | None = None,
    tracker: verification.ValidationFailureTracker | None = None,
) -> GatewayResult:
    """
    Handle one webhook delivery.

    Args:
        provider: POS provider value from the URL.
        raw_body: Exact request body bytes (signatures cover these).
        headers: Request headers.
        request_url: Absolute URL the provider posted to (Square signing).
        client_ip: Caller IP, used to key signature-failure tracking.
        channel: Sub-channel of a provider ("hco" for Clover Hosted Checkout).
        data_client: Storage boundary for location lookups.
        tracker: Signature failure tracker; defaults to the shared one.

    Returns:
        GatewayResult; status "invalid" means the delivery was rejected.
    """
    try:
        provider_enum = POSProvider(provider)
    except ValueError:
        return GatewayResult(ok=False, status="invalid", reason="unknown_provider")

    data_client = data_client or DjangoDataClient()
    tracker = tracker or verification.failure_tracker

    # 1. Signature
    secret = verification.get_webhook_secret(provider, channel)
    header_value = verification.get_signature_header(provider, headers)
    if secret and not header_value:
        logger.warning("Missing %s webhook signature header from %s", provider, client_ip)
        return GatewayResult(
            ok=False,
            status="invalid",
            reason="missing_signature",
            signature_valid=False,
            provider=provider_enum,
        )

    notification_url = getattr(settings, "SQUARE_WEBHOOK_URL", "") or request_url or ""
    signature_valid = verification.verify(
        provider,
        raw_body,
        header_value,
        secret,
        notification_url=notification_url,
    )
    if not signature_valid:
        tracker.record_failure(f"{provider}:{client_ip or 'unknown'}")
        logger.warning("Invalid %s webhook signature from %s", provider, client_ip)
        return GatewayResult(
            ok=False,
            status="invalid",
            reason="invalid_signature",
            signature_valid=False,
            provider=provider_enum,
        )

    # 2. Parse
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return GatewayResult(
            ok=False,
            status="invalid",
            reason="invalid_json",
            signature_valid=True,
            provider=provider_enum,
        )

    # 3. Normalize
    try:
        events = normalize(provider, payload, channel)
    except POSWebhookError as e:
        logger.warning("Unparseable %s webhook: %s", provider, e.message)
        return GatewayResult(
            ok=False,
            status="invalid",
            reason="invalid_payload",
            signature_valid=True,
            provider=provider_enum,
        )

    # 4-6. Dedupe, route, enqueue
    outcomes = [_accept_event(event, data_client) for event in events]
    enqueued = outcomes.count("processed")

    if enqueued:
        status, reason = "processed", None
    elif not outcomes:
        status, reason = "ignored", "no_events"
    elif all(outcome == "duplicate" for outcome in outcomes):
        status, reason = "ignored", "duplicate"
    else:
        status = "ignored"
        reason = next(o for o in outcomes if o != "duplicate")

    logger.info(
        "%s webhook: %d event(s), %d enqueued (%s)",
        provider,
        len(events),
        enqueued,
        reason or status,
    )
    return GatewayResult(
        ok=True,
        status=status,
        reason=reason,
        signature_valid=True,
        provider=provider_enum,
        events_enqueued=enqueued,
    )


def _accept_event(event: NormalizedEvent, data_client: DataClient) -> str:
    """
    Persist one normalized event and enqueue it if routable.

    The event row, its routing decision and the job commit together; if
    any step raises, the event is not stored and a redelivery is accepted.

    Returns:
        "processed" when a job was enqueued, otherwise the ignore reason.
    """
    provider = event.provider.value
    with transaction.atomic():
        try:
            with transaction.atomic():
                record, created = WebhookEvent.objects.get_or_create(
                    provider=provider,
                    external_event_id=event.external_event_id,
                    defaults={
                        "event_type": event.event_type[:100],
                        "payload": event.payload,
                        "normalized": event.model_dump(mode="json", exclude={"payload"}),
                    },
                )
        except IntegrityError:
            # Concurrent delivery of the same event inserted it first
            created = False

        if not created:
            logger.info("Duplicate %s event %s", provider, event.external_event_id)
            return "duplicate"

        if event.event_kind not in ROUTABLE_KINDS:
            return _ignore(record, "unsupported_event")
        if not event.external_order_id or not event.location_id:
            return _ignore(record, "missing_order_or_location")

        if data_client.get_location(provider, event.location_id) is None:
            return _ignore(record, "unknown_location")

        job_queue.enqueue(record)
    return "processed"


def _ignore(record: WebhookEvent, reason: str) -> str:
    record.status = WebhookEventStatus.IGNORED
    record.reason = reason
    record.save(update_fields=["status", "reason"])
    logger.info(
        "Ignored %s event %s (%s): %s",
        record.provider,
        record.external_event_id,
        record.event_type,
        reason,
    )
    return reason

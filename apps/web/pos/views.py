"""
HTTP surface for POS ingestion.

Public:
    POST /webhooks/<provider>/        provider webhooks
    POST /webhooks/clover/hco/        Clover Hosted Checkout callbacks

Secret-protected triggers:
    GET|POST /jobs/process-webhooks/  drain the job queue (CRON_SECRET)
    GET|POST /cron/reconcile/         sweep all locations (CRON_SECRET)
    GET|POST /ops/reconcile/          one vendor, rate limited (OPS_API_SECRET)
"""

import json
import logging
from typing import Any

from django.conf import settings
from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods, require_POST

from passline_schemas import POSProvider

from apps.web.core.decorators import parse_csv, rate_limited, shared_secret_required
from apps.web.core.middleware import get_client_ip
from apps.web.pos.services import gateway, job_queue
from apps.web.pos.services.reconciliation import (
    LocationNotFoundError,
    reconcile,
    reconcile_all,
)
from apps.web.pos.tasks import drain_webhook_jobs
from apps.web.restaurant.data_client import DjangoDataClient

logger = logging.getLogger(__name__)

MIN_MINUTES_BACK = 1
MAX_MINUTES_BACK = 7 * 24 * 60
OPS_DEFAULT_MINUTES_BACK = 60
OPS_RATE_LIMIT = 5

_INVALID_STATUS_CODES = {
    "invalid_signature": 401,
    "unknown_provider": 404,
}


def _request_params(request: HttpRequest) -> dict[str, Any]:
    """Query string merged with a JSON object body (body wins)."""
    params: dict[str, Any] = {key: request.GET.get(key) for key in request.GET}
    if request.method == "POST" and request.body:
        try:
            body = json.loads(request.body)
        except (ValueError, UnicodeDecodeError):
            body = None
        if isinstance(body, dict):
            params.update(body)
    return params


def _parse_minutes_back(value: Any, default: int) -> int | None:
    """Minutes-back in [1, 10080]; None if present but invalid."""
    if value in (None, ""):
        return default
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        return None
    if not MIN_MINUTES_BACK <= minutes <= MAX_MINUTES_BACK:
        return None
    return minutes


def _bad_request(message: str) -> JsonResponse:
    return JsonResponse({"ok": False, "error": message}, status=400)


# =============================================================================
# Webhooks
# =============================================================================


def _webhook_response(
    request: HttpRequest, provider: str, channel: str = ""
) -> JsonResponse:
    result = gateway.handle(
        provider,
        request.body,
        request.headers,
        request_url=request.build_absolute_uri(),
        client_ip=getattr(request, "client_ip", None) or get_client_ip(request),
        channel=channel,
    )
    if result.status == "invalid":
        status = _INVALID_STATUS_CODES.get(result.reason or "", 400)
    else:
        status = 200
    return JsonResponse(result.to_response(), status=status)


@csrf_exempt
@require_POST
def pos_webhook(request: HttpRequest, provider: str) -> JsonResponse:
    """
    Receive a POS webhook.

    POST /webhooks/<provider>/

    Returns 200 for processed or ignored deliveries so providers do not
    retry them; 400/401 for rejected deliveries.
    """
    if provider not in {p.value for p in POSProvider}:
        return JsonResponse(
            {"ok": False, "status": "invalid", "reason": "unknown_provider"},
            status=404,
        )
    return _webhook_response(request, provider)


@csrf_exempt
@require_POST
def clover_hco_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive a Clover Hosted Checkout callback.

    POST /webhooks/clover/hco/
    """
    return _webhook_response(request, POSProvider.CLOVER.value, channel="hco")


# =============================================================================
# Triggers
# =============================================================================


@csrf_exempt
@require_http_methods(["GET", "POST"])
@shared_secret_required("CRON_SECRET")
def process_webhook_jobs(request: HttpRequest) -> JsonResponse:
    """
    Drain due webhook jobs.

    GET|POST /jobs/process-webhooks/?provider=square&limit=20
    """
    params = _request_params(request)
    provider = params.get("provider") or None
    if provider and provider not in {p.value for p in POSProvider}:
        return _bad_request(f"Unknown provider: {provider}")

    try:
        limit = int(params.get("limit") or job_queue.CLAIM_LIMIT)
    except (TypeError, ValueError):
        return _bad_request("limit must be an integer")
    limit = max(1, min(limit, 100))

    counts = drain_webhook_jobs(provider=provider, limit=limit)
    return JsonResponse({"ok": True, **counts})


@csrf_exempt
@require_http_methods(["GET", "POST"])
@shared_secret_required("CRON_SECRET")
def cron_reconcile(request: HttpRequest) -> JsonResponse:
    """
    Reconcile recent orders for every configured location.

    GET|POST /cron/reconcile/?minutesBack=10&locationIds=L1,L2
    """
    params = _request_params(request)
    minutes_back = _parse_minutes_back(
        params.get("minutesBack"),
        int(getattr(settings, "POLL_MINUTES_BACK", 10)),
    )
    if minutes_back is None:
        return _bad_request(
            f"minutesBack must be between {MIN_MINUTES_BACK} and {MAX_MINUTES_BACK}"
        )

    location_ids = parse_csv(params.get("locationIds")) or None
    outcome = reconcile_all(minutes_back, location_ids)
    return JsonResponse({"ok": True, **outcome})


@csrf_exempt
@require_http_methods(["GET", "POST"])
@rate_limited(OPS_RATE_LIMIT, window_seconds=60)
@shared_secret_required("OPS_API_SECRET", "CRON_SECRET")
def ops_reconcile(request: HttpRequest) -> JsonResponse:
    """
    On-demand reconciliation for one vendor.

    GET|POST /ops/reconcile/?vendorSlug=acme&locationId=L1&minutesBack=60
    """
    params = _request_params(request)
    vendor_slug = params.get("vendorSlug")
    if not vendor_slug:
        return _bad_request("vendorSlug is required")

    minutes_back = _parse_minutes_back(params.get("minutesBack"), OPS_DEFAULT_MINUTES_BACK)
    if minutes_back is None:
        return _bad_request(
            f"minutesBack must be between {MIN_MINUTES_BACK} and {MAX_MINUTES_BACK}"
        )

    data_client = DjangoDataClient()
    vendor = data_client.get_vendor_by_slug(vendor_slug)
    if vendor is None:
        return JsonResponse(
            {"ok": False, "error": f"Vendor not found: {vendor_slug}"}, status=404
        )

    location_id = params.get("locationId") or None
    try:
        stats = reconcile(vendor, location_id, minutes_back, data_client=data_client)
    except LocationNotFoundError as e:
        return JsonResponse({"ok": False, "error": str(e)}, status=404)

    logger.info(
        "Ops reconcile for %s (%s, %d min): %s",
        vendor.slug,
        location_id or "all locations",
        minutes_back,
        stats.to_response(),
    )
    return JsonResponse(
        {
            "ok": True,
            "vendor": vendor.slug,
            "locationId": location_id,
            "minutesBack": minutes_back,
            "stats": stats.to_response(),
        }
    )

"""
Reconciliation scanner - repairs state after missed or dropped webhooks.

Lists orders the POS modified in a recent window and replays each through
the ingestion engine with a reconcile signal. Because ingestion is
idempotent, running this any number of times converges to the same state.
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from django.conf import settings

from passline_schemas import (
    CanonicalOrder,
    EventKind,
    IngestSignal,
    POSSession,
    ReconcileStats,
)

from apps.web.core.models import Vendor
from apps.web.pos.adapters import POSAdapter, adapter_from_settings, session_for_location
from apps.web.pos.services.ingestion import AdapterFactory, apply_order
from apps.web.restaurant.data_client import DataClient, DjangoDataClient
from apps.web.restaurant.models import VendorLocation

logger = logging.getLogger(__name__)

BATCH_SIZE = 5
DEFAULT_MINUTES_BACK = 10


class LocationNotFoundError(Exception):
    """The vendor has no active location with the requested ID."""


def _chunks(items: list[Any], size: int) -> list[list[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


async def _collect_orders(
    adapter: POSAdapter,
    session: POSSession,
    location_id: str,
    since: datetime,
) -> list[CanonicalOrder | BaseException]:
    """
    List the window, then re-fetch each order in batches of BATCH_SIZE.

    Per-order fetch failures come back as exception objects.
    """
    try:
        listed = await adapter.list_orders_updated_since(session, location_id, since)
        fetched: list[CanonicalOrder | BaseException] = []
        for batch in _chunks(listed, BATCH_SIZE):
            fetched.extend(
                await asyncio.gather(
                    *(
                        adapter.fetch_order(session, location_id, order.external_order_id)
                        for order in batch
                    ),
                    return_exceptions=True,
                )
            )
        return fetched
    finally:
        await adapter.close()


def reconcile_location(
    location: VendorLocation,
    minutes_back: int = DEFAULT_MINUTES_BACK,
    *,
    data_client: DataClient | None = None,
    adapter_factory: AdapterFactory | None = None,
    now: datetime | None = None,
) -> ReconcileStats:
    """
    Reconcile one location.

    Raises:
        POSAPIError: If the order listing itself fails.
        POSAuthError: If no credentials are available.
    """
    data_client = data_client or DjangoDataClient()
    adapter_factory = adapter_factory or adapter_from_settings
    since = (now or datetime.now(UTC)) - timedelta(minutes=minutes_back)

    adapter = adapter_factory(location.pos_provider)
    session = session_for_location(location)
    results = asyncio.run(
        _collect_orders(adapter, session, location.external_location_id, since)
    )

    stats = ReconcileStats(orders_fetched=len(results))
    signal = IngestSignal(kind=EventKind.RECONCILE, occurred_at=datetime.now(UTC))

    for fetched in results:
        if isinstance(fetched, BaseException):
            logger.warning(
                "Reconcile fetch failed at %s: %s", location.external_location_id, fetched
            )
            stats.errors += 1
            continue

        outcome = apply_order(location, fetched, signal=signal, data_client=data_client)
        stats.processed += 1
        if outcome.ticket_created:
            stats.created_tickets += 1
        if outcome.ticket_updated:
            stats.updated_tickets += 1
        if outcome.errors:
            stats.errors += 1

    logger.info(
        "Reconciled %s %s (%d min): %s",
        location.pos_provider,
        location.external_location_id,
        minutes_back,
        stats.to_response(),
    )
    return stats


def _reconcile_isolated(
    location: VendorLocation,
    minutes_back: int,
    data_client: DataClient,
    adapter_factory: AdapterFactory | None,
) -> tuple[ReconcileStats | None, str | None]:
    """Reconcile one location; a failure is logged and returned as its message."""
    try:
        stats = reconcile_location(
            location,
            minutes_back,
            data_client=data_client,
            adapter_factory=adapter_factory,
        )
    except Exception as e:
        logger.exception(
            "Reconcile failed for %s (%s): %s",
            location.external_location_id,
            location.vendor.slug,
            e,
        )
        return None, str(e)
    return stats, None


def reconcile(
    vendor: Vendor,
    location_id: str | None = None,
    minutes_back: int = DEFAULT_MINUTES_BACK,
    *,
    data_client: DataClient | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> ReconcileStats:
    """
    Reconcile a vendor: one location, or all of its active locations.

    A failing location is counted in errors and the others still run.

    Raises:
        LocationNotFoundError: If location_id is given but not found.
    """
    data_client = data_client or DjangoDataClient()
    locations = [
        location
        for location in data_client.list_active_locations()
        if location.vendor_id == vendor.pk
        and (location_id is None or location.external_location_id == location_id)
    ]
    if location_id is not None and not locations:
        raise LocationNotFoundError(
            f"No active location {location_id} for vendor {vendor.slug}"
        )

    total = ReconcileStats()
    for location in locations:
        stats, _error = _reconcile_isolated(
            location, minutes_back, data_client, adapter_factory
        )
        if stats is None:
            total.errors += 1
        else:
            total.add(stats)
    return total


def reconcile_all(
    minutes_back: int = DEFAULT_MINUTES_BACK,
    location_ids: list[str] | None = None,
    *,
    data_client: DataClient | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> dict[str, Any]:
    """
    Sweep every configured location.

    The allow-list is location_ids, else SQUARE_LOCATION_IDS, else every
    active location of every active vendor. A failing location is counted
    and the sweep continues.

    Returns:
        {"summary": {...}, "locations": [{locationId, vendor, stats|error}]}
    """
    data_client = data_client or DjangoDataClient()
    allow_list = location_ids or list(getattr(settings, "SQUARE_LOCATION_IDS", []) or [])
    locations = data_client.list_active_locations(
        external_location_ids=allow_list or None
    )

    total = ReconcileStats()
    per_location: list[dict[str, Any]] = []
    for location in locations:
        entry: dict[str, Any] = {
            "locationId": location.external_location_id,
            "vendor": location.vendor.slug,
        }
        stats, error = _reconcile_isolated(
            location, minutes_back, data_client, adapter_factory
        )
        if stats is None:
            total.errors += 1
            entry["error"] = error
        else:
            total.add(stats)
            entry["stats"] = stats.to_response()
        per_location.append(entry)

    summary = {"locations": len(locations), **total.to_response()}
    logger.info("Reconcile sweep finished: %s", summary)
    return {"summary": summary, "locations": per_location}

"""
Order ingestion engine.

Turns "something happened to order X" into canonical state:
1. Resolve the location (unknown -> no-op)
2. Fetch the authoritative order from the POS (errors propagate for retry)
3. Upsert the PosOrder
4. Ensure a kitchen ticket for active orders
5. Advance the ticket for terminal orders
6. On payment completion, create the snapshot and loyalty entries once

Steps 3-6 are isolated: a failure in one is logged and recorded in the
result while the others still run. Everything is idempotent, so the same
order can be ingested any number of times, in any order.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from django.db import transaction
from django.utils import timezone

from passline_schemas import (
    CanonicalOrder,
    EventKind,
    IngestResult,
    IngestSignal,
    OrderLifecycle,
    POSSession,
)

from apps.web.pos.adapters import POSAdapter, adapter_from_settings, session_for_location
from apps.web.pos.services.notifications import notify_order_confirmed
from apps.web.restaurant.data_client import DataClient, DjangoDataClient
from apps.web.restaurant.models import PosOrder, VendorLocation

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[str], POSAdapter]

PAYMENT_COMPLETED_HINT = "COMPLETED"
USER_REFERENCE_SEPARATOR = "__"
POINTS_PER_CENTS = 100


def ingest(
    provider: str,
    external_order_id: str,
    location_id: str,
    *,
    signal: IngestSignal | None = None,
    data_client: DataClient | None = None,
    adapter_factory: AdapterFactory | None = None,
) -> IngestResult:
    """
    Ingest one order.

    Args:
        provider: POS provider value.
        external_order_id: Order ID in the POS.
        location_id: POS location ID (Square location, Clover merchant, Toast GUID).
        signal: What triggered this pass; None behaves like an order event.
        data_client: Storage boundary.
        adapter_factory: Builds the POS adapter for a provider.

    Returns:
        IngestResult describing what changed.

    Raises:
        OrderNotFoundError: If the provider has no such order.
        POSAPIError: If the order cannot be fetched.
        POSAuthError: If no credentials are available for the location.
    """
    data_client = data_client or DjangoDataClient()
    adapter_factory = adapter_factory or adapter_from_settings

    # 1. Resolve
    location = data_client.get_location(provider, location_id)
    if location is None:
        logger.info(
            "No active location for %s:%s - skipping order %s",
            provider,
            location_id,
            external_order_id,
        )
        return IngestResult(resolved=False)

    # 2. Fetch
    adapter = adapter_factory(provider)
    session = session_for_location(location)
    order = asyncio.run(
        _fetch_order(adapter, session, location_id, external_order_id)
    )

    return apply_order(location, order, signal=signal, data_client=data_client)


async def _fetch_order(
    adapter: POSAdapter, session: POSSession, location_id: str, order_id: str
) -> CanonicalOrder:
    try:
        return await adapter.fetch_order(session, location_id, order_id)
    finally:
        await adapter.close()


def apply_order(
    location: VendorLocation,
    order: CanonicalOrder,
    *,
    signal: IngestSignal | None = None,
    data_client: DataClient | None = None,
) -> IngestResult:
    """Run steps 3-6 for an already fetched order."""
    data_client = data_client or DjangoDataClient()
    result = IngestResult()

    # 3. Upsert
    try:
        pos_order = data_client.upsert_order(location, order)
        result.order_upserted = True
    except Exception as e:
        logger.exception(
            "Failed to store %s order %s: %s",
            order.provider.value,
            order.external_order_id,
            e,
        )
        result.errors.append(f"upsert_order: {e}")
        return result

    # 4. Active -> ticket exists
    if order.lifecycle.is_active:
        try:
            _ticket, created = data_client.ensure_ticket(pos_order)
            result.ticket_created = created
        except Exception as e:
            logger.exception(
                "Failed to ensure ticket for order %s: %s", order.external_order_id, e
            )
            result.errors.append(f"ensure_ticket: {e}")
        _promote(data_client, location)

    # 5. Terminal -> ticket follows
    if order.lifecycle.is_terminal:
        try:
            result.ticket_updated = data_client.update_ticket_for_terminal_state(
                pos_order
            )
        except Exception as e:
            logger.exception(
                "Failed to update ticket for order %s: %s", order.external_order_id, e
            )
            result.errors.append(f"update_ticket: {e}")
        _promote(data_client, location)

    # 6. Payment completed -> snapshot + loyalty, once
    if is_payment_completed(order, signal):
        try:
            _materialize_snapshot(location, order, pos_order, signal, data_client, result)
        except Exception as e:
            logger.exception(
                "Failed to create snapshot for order %s: %s", order.external_order_id, e
            )
            result.errors.append(f"snapshot: {e}")

    logger.info(
        "Ingested %s order %s (%s): ticket_created=%s ticket_updated=%s snapshot=%s",
        order.provider.value,
        order.external_order_id,
        order.lifecycle.value,
        result.ticket_created,
        result.ticket_updated,
        result.snapshot_created,
    )
    return result


def _promote(data_client: DataClient, location: VendorLocation) -> None:
    try:
        data_client.promote_queued_ticket(location)
    except Exception as e:
        logger.warning("Ticket promotion failed at %s: %s", location, e)


def is_payment_completed(order: CanonicalOrder, signal: IngestSignal | None) -> bool:
    """
    Only payment events materialize snapshots; order updates and
    reconciliation passes never do. A payment event without a status
    falls back to the fetched order's lifecycle.
    """
    if signal is None or signal.kind != EventKind.PAYMENT:
        return False
    if signal.status_hint:
        return signal.status_hint.upper() == PAYMENT_COMPLETED_HINT
    return order.lifecycle in (OrderLifecycle.PAID, OrderLifecycle.COMPLETED)


def extract_user_id(order: CanonicalOrder) -> str | None:
    """
    The placing user, if the order came from our online checkout.

    Checkout stamps ct_user_id in metadata; older orders encode it in the
    reference ID as "<prefix>__<userId>".
    """
    user_id = order.metadata.get("ct_user_id")
    if user_id:
        return str(user_id)
    if USER_REFERENCE_SEPARATOR in order.reference_id:
        _prefix, _sep, rest = order.reference_id.partition(USER_REFERENCE_SEPARATOR)
        return rest or None
    return None


def _redeem_points(order: CanonicalOrder) -> int:
    try:
        return max(0, int(order.metadata.get("ct_redeem_points") or 0))
    except (TypeError, ValueError):
        return 0


def build_snapshot_payload(
    order: CanonicalOrder, signal: IngestSignal | None
) -> dict[str, Any]:
    total = order.total_cents or (signal.amount_cents if signal and signal.amount_cents else 0)
    currency = order.currency or (signal.currency if signal else None) or "USD"
    return {
        "items": [
            {
                "id": item.external_id,
                "name": item.name,
                "quantity": item.quantity,
                "price": item.unit_price_cents,
                "modifiers": [
                    {"id": mod.external_id, "name": mod.name, "price": mod.price_cents}
                    for mod in item.modifiers
                ],
            }
            for item in order.line_items
        ],
        "total": total,
        "currency": currency,
        "payment_id": signal.payment_id if signal else None,
        "location_id": order.location_id,
        "reference_id": order.reference_id,
        "customer_email": order.customer_email,
        "customer_name": order.customer_name,
    }


def _materialize_snapshot(
    location: VendorLocation,
    order: CanonicalOrder,
    pos_order: PosOrder,
    signal: IngestSignal | None,
    data_client: DataClient,
    result: IngestResult,
) -> None:
    if data_client.get_snapshot(location.vendor, order.external_order_id) is not None:
        return

    payload = build_snapshot_payload(order, signal)
    user_id = extract_user_id(order)
    user: dict[str, str] = {}
    if user_id:
        try:
            user = data_client.resolve_user(user_id)
        except Exception as e:
            logger.warning(
                "Could not resolve user %s for order %s: %s",
                user_id,
                order.external_order_id,
                e,
            )
    display_name = user.get("display_name") or order.customer_name
    email = order.customer_email or user.get("email", "")
    pickup_label = display_name or f"Order {order.external_order_id[-6:].upper()}"

    created = data_client.create_snapshot(
        order=pos_order,
        user_id=user_id,
        placed_at=order.created_at or timezone.now(),
        snapshot=payload,
        customer_display_name=display_name,
        pickup_label=pickup_label,
        earn_points=payload["total"] // POINTS_PER_CENTS,
        redeem_points=_redeem_points(order),
    )
    if not created["created"]:
        return

    result.snapshot_created = True
    result.points_awarded = created["points_awarded"]
    result.points_redeemed = created["points_redeemed"]

    snapshot = created["snapshot"]
    transaction.on_commit(
        lambda: notify_order_confirmed(
            snapshot, email, pickup_instructions=location.pickup_instructions
        )
    )

"""
Webhook normalizers - provider payloads into NormalizedEvents.

Each normalizer is pure: it takes the parsed JSON body and returns one
event per logical notification. Clover groups several sub-events per
merchant into one delivery, so it can return many.
"""

import hashlib
import json
import logging
from collections.abc import Callable
from typing import Any

from passline_schemas import EventKind, NormalizedEvent, POSProvider

from apps.web.pos.exceptions import POSWebhookError

logger = logging.getLogger(__name__)

SQUARE_ORDER_EVENTS = frozenset(
    {"order.created", "order.updated", "order.fulfillment.updated"}
)
SQUARE_PAYMENT_EVENTS = frozenset({"payment.created", "payment.updated"})

# Clover object ID prefixes
CLOVER_ORDER_PREFIX = "O"
CLOVER_PAYMENT_PREFIX = "P"

HCO_APPROVED_STATUS = "APPROVED"


def payload_digest(payload: Any) -> str:
    """Stable SHA-256 of a payload, used as event ID when the provider sends none."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _to_int(value: Any) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


# =============================================================================
# Square
# =============================================================================


def normalize_square(payload: dict[str, Any]) -> list[NormalizedEvent]:
    event_type = payload.get("type", "")
    event_id = payload.get("event_id") or payload_digest(payload)
    obj = (payload.get("data") or {}).get("object") or {}

    event = NormalizedEvent(
        provider=POSProvider.SQUARE,
        external_event_id=event_id,
        event_type=event_type,
        location_id=payload.get("location_id"),
        payload=payload,
    )

    if event_type in SQUARE_ORDER_EVENTS:
        order = (
            obj.get("order_updated")
            or obj.get("order_created")
            or obj.get("order_fulfillment_updated")
            or obj.get("order")
            or {}
        )
        event.event_kind = EventKind.ORDER
        event.external_order_id = order.get("order_id") or order.get("id")
        event.location_id = order.get("location_id") or event.location_id
        event.status_hint = order.get("state")

    elif event_type in SQUARE_PAYMENT_EVENTS:
        payment = obj.get("payment") or {}
        amount = payment.get("amount_money") or payment.get("amountMoney") or {}
        event.event_kind = EventKind.PAYMENT
        event.payment_id = payment.get("id")
        event.external_order_id = payment.get("order_id") or payment.get("orderId")
        event.location_id = (
            payment.get("location_id") or payment.get("locationId") or event.location_id
        )
        event.status_hint = payment.get("status")
        event.amount_cents = _to_int(amount.get("amount"))
        event.currency = amount.get("currency")

    return [event]


# =============================================================================
# Clover
# =============================================================================


def _split_clover_object(object_id: str, event_type: str) -> tuple[str, str]:
    """
    Return (prefix, bare id).

    Clover sends objectId as "O:<id>" with type "UPDATE"; some senders put
    the prefix on the type instead ("O:UPDATE").
    """
    prefix, sep, bare = object_id.partition(":")
    if sep:
        return prefix, bare
    type_prefix, sep, _ = event_type.partition(":")
    return (type_prefix if sep else ""), object_id


def normalize_clover(payload: dict[str, Any]) -> list[NormalizedEvent]:
    merchants = payload.get("merchants")
    if not isinstance(merchants, dict):
        raise POSWebhookError("Clover payload has no merchants map", provider="clover")

    events: list[NormalizedEvent] = []
    for merchant_id, sub_events in merchants.items():
        for sub in sub_events or []:
            object_id = str(sub.get("objectId", ""))
            sub_type = str(sub.get("type", ""))
            ts = sub.get("ts", "")
            prefix, bare_id = _split_clover_object(object_id, sub_type)

            event = NormalizedEvent(
                provider=POSProvider.CLOVER,
                external_event_id=f"{merchant_id}:{sub_type}:{object_id}:{ts}",
                event_type=f"{prefix}:{sub_type}" if prefix and ":" not in sub_type else sub_type,
                location_id=merchant_id,
                payload={"appId": payload.get("appId"), "merchantId": merchant_id, **sub},
            )
            if prefix == CLOVER_ORDER_PREFIX:
                event.event_kind = EventKind.ORDER
                event.external_order_id = bare_id
            elif prefix == CLOVER_PAYMENT_PREFIX:
                # Payment notifications carry only the payment id
                event.event_kind = EventKind.PAYMENT
                event.payment_id = bare_id
            events.append(event)

    return events


def normalize_clover_hco(payload: dict[str, Any]) -> list[NormalizedEvent]:
    """Clover Hosted Checkout callback: {Type, Id, MerchantId, Status, Data}."""
    status = str(payload.get("Status", "")).upper()
    event = NormalizedEvent(
        provider=POSProvider.CLOVER,
        external_event_id=payload.get("Id") or payload_digest(payload),
        event_type=f"hco.{str(payload.get('Type', 'payment')).lower()}",
        location_id=payload.get("MerchantId"),
        status_hint=status or None,
        payload=payload,
    )
    if status == HCO_APPROVED_STATUS:
        event.event_kind = EventKind.PAYMENT
        event.external_order_id = payload.get("Data")
        event.status_hint = "COMPLETED"
    return [event]


# =============================================================================
# Toast
# =============================================================================


def normalize_toast(payload: dict[str, Any]) -> list[NormalizedEvent]:
    event_type = str(payload.get("eventType", ""))
    details = payload.get("data") or payload.get("details") or {}

    event = NormalizedEvent(
        provider=POSProvider.TOAST,
        external_event_id=payload.get("eventId")
        or payload.get("guid")
        or payload_digest(payload),
        event_type=event_type,
        location_id=payload.get("restaurantGuid") or details.get("restaurantGuid"),
        external_order_id=details.get("orderGuid")
        or (details.get("order") or {}).get("guid"),
        payload=payload,
    )

    upper = event_type.upper()
    if upper.startswith("PAYMENT"):
        event.event_kind = EventKind.PAYMENT
        event.payment_id = details.get("paymentGuid")
        event.status_hint = details.get("paymentStatus")
    elif upper.startswith("ORDER"):
        event.event_kind = EventKind.ORDER

    return [event]


# =============================================================================
# Mock
# =============================================================================


def normalize_mock(payload: dict[str, Any]) -> list[NormalizedEvent]:
    event_type = str(payload.get("event_type", ""))
    kind = EventKind.UNKNOWN
    if event_type.startswith("order."):
        kind = EventKind.ORDER
    elif event_type.startswith("payment."):
        kind = EventKind.PAYMENT

    return [
        NormalizedEvent(
            provider=POSProvider.MOCK,
            external_event_id=payload.get("event_id") or payload_digest(payload),
            event_type=event_type,
            event_kind=kind,
            external_order_id=payload.get("order_id"),
            location_id=payload.get("location_id"),
            status_hint=payload.get("status"),
            payment_id=payload.get("payment_id"),
            amount_cents=_to_int(payload.get("amount")),
            currency=payload.get("currency"),
            payload=payload,
        )
    ]


_NORMALIZERS: dict[tuple[str, str], Callable[[dict[str, Any]], list[NormalizedEvent]]] = {
    (POSProvider.SQUARE.value, ""): normalize_square,
    (POSProvider.CLOVER.value, ""): normalize_clover,
    (POSProvider.CLOVER.value, "hco"): normalize_clover_hco,
    (POSProvider.TOAST.value, ""): normalize_toast,
    (POSProvider.MOCK.value, ""): normalize_mock,
}


def normalize(
    provider: str, payload: Any, channel: str = ""
) -> list[NormalizedEvent]:
    """
    Normalize a parsed webhook body.

    Raises:
        POSWebhookError: If the provider/channel is unknown or the payload
            is not a JSON object of the expected shape.
    """
    normalizer = _NORMALIZERS.get((provider, channel))
    if normalizer is None:
        raise POSWebhookError(
            f"No normalizer for {provider}/{channel or 'default'}", provider=provider
        )
    if not isinstance(payload, dict):
        raise POSWebhookError("Webhook payload must be a JSON object", provider=provider)
    return normalizer(payload)

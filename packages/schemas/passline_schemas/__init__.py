"""Passline Schemas - Pydantic models for data contracts."""

from passline_schemas.pos import (
    CanonicalLineItem,
    CanonicalModifier,
    CanonicalOrder,
    CheckoutRequest,
    CheckoutResult,
    EventKind,
    GatewayResult,
    IngestResult,
    IngestSignal,
    NormalizedEvent,
    OrderLifecycle,
    OrderSource,
    POSProvider,
    POSSession,
    ReconcileStats,
)

__all__ = [
    # Enums
    "EventKind",
    "OrderLifecycle",
    "OrderSource",
    "POSProvider",
    # Orders
    "CanonicalLineItem",
    "CanonicalModifier",
    "CanonicalOrder",
    "CheckoutRequest",
    "CheckoutResult",
    "POSSession",
    # Webhooks
    "GatewayResult",
    "IngestSignal",
    "NormalizedEvent",
    # Results
    "IngestResult",
    "ReconcileStats",
]

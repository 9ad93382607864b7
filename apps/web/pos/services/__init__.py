"""POS services - webhook gateway, job queue, ingestion and reconciliation."""

from apps.web.pos.services.gateway import handle as handle_webhook
from apps.web.pos.services.ingestion import apply_order, ingest
from apps.web.pos.services.reconciliation import (
    LocationNotFoundError,
    reconcile,
    reconcile_all,
    reconcile_location,
)

__all__ = [
    "LocationNotFoundError",
    "apply_order",
    "handle_webhook",
    "ingest",
    "reconcile",
    "reconcile_all",
    "reconcile_location",
]

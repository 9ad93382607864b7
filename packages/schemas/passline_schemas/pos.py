"""POS integration schemas - data contracts for Point of Sale systems."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Enums
# =============================================================================


class POSProvider(str, Enum):
    """Supported POS providers."""

    SQUARE = "square"
    CLOVER = "clover"
    TOAST = "toast"
    MOCK = "mock"


class OrderLifecycle(str, Enum):
    """Provider-independent order lifecycle derived from the native state."""

    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELED = "canceled"

    @property
    def is_active(self) -> bool:
        """Orders that should have a kitchen ticket on the rail."""
        return self in (OrderLifecycle.OPEN, OrderLifecycle.PAID)

    @property
    def is_terminal(self) -> bool:
        return self in (OrderLifecycle.COMPLETED, OrderLifecycle.CANCELED)


class OrderSource(str, Enum):
    """Where an order was placed."""

    POS_TERMINAL = "pos_terminal"
    ONLINE = "online"


class EventKind(str, Enum):
    """Routing category of a normalized webhook event."""

    ORDER = "order"
    PAYMENT = "payment"
    RECONCILE = "reconcile"
    UNKNOWN = "unknown"


# =============================================================================
# Authentication
# =============================================================================


class POSSession(BaseModel):
    """Authenticated session with a POS provider."""

    provider: POSProvider
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None


# =============================================================================
# Orders
# =============================================================================


class CanonicalModifier(BaseModel):
    """Modifier applied to a line item."""

    external_id: str = ""
    name: str
    price_cents: int = 0


class CanonicalLineItem(BaseModel):
    """Line item in a canonical order. Amounts are in minor units."""

    external_id: str
    name: str = "Item"
    quantity: int = 1
    unit_price_cents: int = 0
    total_price_cents: int = 0
    modifiers: list[CanonicalModifier] = Field(default_factory=list)
    note: str = ""


class CanonicalOrder(BaseModel):
    """
    POS order normalized into a provider-independent shape.

    `status` keeps the provider-native state (e.g. Square `OPEN`), while
    `lifecycle` is the mapped value the ingestion engine acts on.
    """

    provider: POSProvider
    external_order_id: str
    location_id: str
    status: str
    lifecycle: OrderLifecycle
    source: OrderSource = OrderSource.POS_TERMINAL
    line_items: list[CanonicalLineItem] = Field(default_factory=list)
    total_cents: int = 0
    currency: str = "USD"
    reference_id: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    customer_email: str = ""
    customer_name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =============================================================================
# Checkout (shared adapter surface, not used by ingestion)
# =============================================================================


class CheckoutRequest(BaseModel):
    """Input for creating a hosted checkout link."""

    location_id: str
    items: list[CanonicalLineItem]
    redirect_url: str
    customer_email: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)


class CheckoutResult(BaseModel):
    """Hosted checkout link returned by a provider."""

    checkout_url: str
    external_order_id: str
    expires_at: datetime | None = None


# =============================================================================
# Webhooks
# =============================================================================


class NormalizedEvent(BaseModel):
    """
    A single logical webhook event in a fixed internal shape.

    Produced by the per-provider normalizers; a delivery that groups several
    sub-events (Clover) yields one NormalizedEvent per sub-event.
    """

    provider: POSProvider
    external_event_id: str
    event_type: str
    event_kind: EventKind = EventKind.UNKNOWN
    external_order_id: str | None = None
    location_id: str | None = None
    status_hint: str | None = None
    payment_id: str | None = None
    amount_cents: int | None = None
    currency: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class IngestSignal(BaseModel):
    """What triggered an ingestion pass."""

    kind: EventKind = EventKind.ORDER
    status_hint: str | None = None
    payment_id: str | None = None
    amount_cents: int | None = None
    currency: str | None = None
    occurred_at: datetime | None = None

    @classmethod
    def from_event(cls, event: NormalizedEvent) -> "IngestSignal":
        return cls(
            kind=event.event_kind,
            status_hint=event.status_hint,
            payment_id=event.payment_id,
            amount_cents=event.amount_cents,
            currency=event.currency,
        )


class GatewayResult(BaseModel):
    """Outcome of handling one webhook delivery."""

    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    status: Literal["processed", "ignored", "invalid"]
    reason: str | None = None
    signature_valid: bool | None = Field(default=None, alias="signatureValid")
    provider: POSProvider | None = None
    events_enqueued: int = Field(default=0, exclude=True)

    def to_response(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# =============================================================================
# Ingestion and reconciliation results
# =============================================================================


class IngestResult(BaseModel):
    """What an ingestion pass changed."""

    resolved: bool = True
    order_upserted: bool = False
    ticket_created: bool = False
    ticket_updated: bool = False
    snapshot_created: bool = False
    points_awarded: int = 0
    points_redeemed: int = 0
    errors: list[str] = Field(default_factory=list)


class ReconcileStats(BaseModel):
    """Counters for one reconciliation run."""

    model_config = ConfigDict(populate_by_name=True)

    orders_fetched: int = Field(default=0, alias="ordersFetched")
    processed: int = 0
    created_tickets: int = Field(default=0, alias="createdTickets")
    updated_tickets: int = Field(default=0, alias="updatedTickets")
    errors: int = 0

    def add(self, other: "ReconcileStats") -> None:
        self.orders_fetched += other.orders_fetched
        self.processed += other.processed
        self.created_tickets += other.created_tickets
        self.updated_tickets += other.updated_tickets
        self.errors += other.errors

    def to_response(self) -> dict[str, int]:
        return self.model_dump(by_alias=True)

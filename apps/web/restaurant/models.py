"""
Restaurant models - POS locations, canonical orders, kitchen tickets,
order snapshots, and the loyalty ledger.

All models follow the multi-tenancy pattern with VendorScopedModel.
POS-synced models carry the provider's identifiers for mapping.
"""

import uuid

from django.db import models

from apps.web.core.models import VendorScopedModel


class POSProvider(models.TextChoices):
    """Supported POS providers."""

    SQUARE = "square", "Square"
    CLOVER = "clover", "Clover"
    TOAST = "toast", "Toast"
    MOCK = "mock", "Mock"


class VendorLocation(VendorScopedModel):
    """
    A vendor's physical location as known to its POS system.

    Webhooks and reconciliation resolve the vendor through
    (pos_provider, external_location_id).
    """

    name = models.CharField(max_length=200, blank=True)
    pos_provider = models.CharField(
        max_length=20,
        choices=POSProvider.choices,
    )
    external_location_id = models.CharField(
        max_length=255,
        help_text="Square location ID, Clover merchant ID, or Toast restaurant GUID",
    )
    access_token = models.CharField(
        max_length=500,
        blank=True,
        help_text="POS API token for this location (blank = use global token)",
    )
    pickup_instructions = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["vendor", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["pos_provider", "external_location_id"],
                name="unique_vendor_location_per_provider",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.name or self.external_location_id} ({self.pos_provider})"


class OrderLifecycle(models.TextChoices):
    """Mapped lifecycle of a POS order."""

    DRAFT = "draft", "Draft"
    OPEN = "open", "Open"
    PAID = "paid", "Paid"
    COMPLETED = "completed", "Completed"
    CANCELED = "canceled", "Canceled"


class OrderSource(models.TextChoices):
    """Where an order was placed."""

    POS_TERMINAL = "pos_terminal", "POS terminal"
    ONLINE = "online", "Online"


class PosOrder(VendorScopedModel):
    """
    Canonical POS order.

    Upserted every time the provider reports a change; never deleted.
    `status` is the provider-native state, `lifecycle` the mapped one.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    location = models.ForeignKey(
        VendorLocation,
        on_delete=models.CASCADE,
        related_name="orders",
    )
    provider = models.CharField(max_length=20, choices=POSProvider.choices)
    external_order_id = models.CharField(
        max_length=255,
        help_text="Order ID in the POS system",
    )

    status = models.CharField(max_length=50, blank=True)
    lifecycle = models.CharField(
        max_length=20,
        choices=OrderLifecycle.choices,
        default=OrderLifecycle.OPEN,
    )
    source = models.CharField(
        max_length=20,
        choices=OrderSource.choices,
        default=OrderSource.POS_TERMINAL,
    )

    line_items = models.JSONField(default=list, blank=True)
    total_amount = models.BigIntegerField(
        default=0,
        help_text="Order total in minor currency units",
    )
    currency = models.CharField(max_length=3, default="USD")
    reference_id = models.CharField(max_length=255, blank=True)
    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Correlation fields (placing user, loyalty redemption, ...)",
    )

    provider_created_at = models.DateTimeField(null=True, blank=True)
    provider_updated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["vendor", "lifecycle"]),
            models.Index(fields=["provider", "external_order_id"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["location", "provider", "external_order_id"],
                name="unique_pos_order_per_location",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.provider}:{self.external_order_id} ({self.lifecycle})"


class TicketStatus(models.TextChoices):
    """Kitchen ticket status, in forward order."""

    PLACED = "placed", "Placed"
    PREPARING = "preparing", "Preparing"
    READY = "ready", "Ready"
    COMPLETED = "completed", "Completed"
    CANCELED = "canceled", "Canceled"


TERMINAL_TICKET_STATUSES = frozenset(
    {TicketStatus.COMPLETED.value, TicketStatus.CANCELED.value}
)

_TICKET_RANK = {
    TicketStatus.PLACED.value: 0,
    TicketStatus.PREPARING.value: 1,
    TicketStatus.READY.value: 2,
    TicketStatus.COMPLETED.value: 3,
    TicketStatus.CANCELED.value: 3,
}


class TicketSource(models.TextChoices):
    """Which channel produced a ticket; drives shortcode ranges."""

    ONLINE = "online", "Online"
    SQUARE_POS = "square_pos", "Square POS"
    CLOVER_POS = "clover_pos", "Clover POS"
    TOAST_POS = "toast_pos", "Toast POS"
    POS = "pos", "POS"


class KitchenTicket(VendorScopedModel):
    """
    Fulfillment-tracking record shown to kitchen staff.

    One per PosOrder. Status only moves forward; cancellation is terminal
    from any non-terminal state.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.OneToOneField(
        PosOrder,
        on_delete=models.CASCADE,
        related_name="ticket",
    )
    location = models.ForeignKey(
        VendorLocation,
        on_delete=models.CASCADE,
        related_name="tickets",
    )
    status = models.CharField(
        max_length=20,
        choices=TicketStatus.choices,
        default=TicketStatus.PLACED,
    )
    source = models.CharField(
        max_length=20,
        choices=TicketSource.choices,
        default=TicketSource.POS,
    )
    shortcode = models.CharField(max_length=8, blank=True)

    placed_at = models.DateTimeField()
    promoted_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the ticket entered the active rail",
    )
    ready_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["placed_at"]
        indexes = [
            models.Index(fields=["location", "status"]),
            models.Index(fields=["vendor", "placed_at"]),
        ]

    def __str__(self) -> str:
        return f"Ticket {self.shortcode or self.pk} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return TicketStatus(self.status).value in TERMINAL_TICKET_STATUSES

    def can_transition_to(self, target: str) -> bool:
        """Forward-only transitions; nothing leaves a terminal status."""
        if self.is_terminal:
            return False
        target = TicketStatus(target).value
        if target == TicketStatus.CANCELED.value:
            return True
        return _TICKET_RANK[target] > _TICKET_RANK[TicketStatus(self.status).value]


class OrderSnapshot(VendorScopedModel):
    """
    Immutable customer-facing record of a completed purchase.

    Created at most once per (vendor, external_order_id).
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    order = models.ForeignKey(
        PosOrder,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="snapshots",
    )
    external_order_id = models.CharField(max_length=255)
    user_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Placing user, when the order carried one",
    )
    placed_at = models.DateTimeField()
    snapshot = models.JSONField(
        help_text="Items, totals, and customer details at payment time",
    )
    customer_display_name = models.CharField(max_length=200, blank=True)
    pickup_label = models.CharField(max_length=200, blank=True)

    class Meta:
        ordering = ["-placed_at"]
        indexes = [
            models.Index(fields=["vendor", "user_id"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["vendor", "external_order_id"],
                name="unique_order_snapshot_per_vendor",
            ),
        ]

    def __str__(self) -> str:
        return f"Snapshot {self.external_order_id} - {self.pickup_label}"

    @property
    def total(self) -> int:
        return int(self.snapshot.get("total", 0))


class LoyaltyLedgerEntry(VendorScopedModel):
    """
    Append-only loyalty points movement.

    At most one earn (positive) and one redemption (negative) entry per
    snapshot.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user_id = models.CharField(max_length=255)
    snapshot = models.ForeignKey(
        OrderSnapshot,
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )
    points_delta = models.IntegerField()

    class Meta:
        ordering = ["-created_at"]
        verbose_name_plural = "loyalty ledger entries"
        indexes = [
            models.Index(fields=["vendor", "user_id"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["snapshot"],
                condition=models.Q(points_delta__gt=0),
                name="unique_loyalty_earn_per_snapshot",
            ),
            models.UniqueConstraint(
                fields=["snapshot"],
                condition=models.Q(points_delta__lt=0),
                name="unique_loyalty_redeem_per_snapshot",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user_id}: {self.points_delta:+d}"

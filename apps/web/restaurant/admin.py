"""Admin registration for restaurant models."""

from django.contrib import admin

from apps.web.restaurant.models import (
    KitchenTicket,
    LoyaltyLedgerEntry,
    OrderSnapshot,
    PosOrder,
    VendorLocation,
)


class LoyaltyLedgerEntryInline(admin.TabularInline):
    """Inline for ledger entries on a snapshot."""

    model = LoyaltyLedgerEntry
    extra = 0
    fields = ["user_id", "points_delta", "created_at"]
    readonly_fields = ["user_id", "points_delta", "created_at"]
    can_delete = False


@admin.register(VendorLocation)
class VendorLocationAdmin(admin.ModelAdmin):
    """Admin for vendor POS locations."""

    list_display = ["name", "vendor", "pos_provider", "external_location_id", "is_active"]
    list_filter = ["pos_provider", "is_active"]
    search_fields = ["name", "vendor__name", "vendor__slug", "external_location_id"]
    readonly_fields = ["created_at", "updated_at"]

    fieldsets = [
        (None, {"fields": ["vendor", "name", "is_active"]}),
        (
            "POS Integration",
            {"fields": ["pos_provider", "external_location_id", "access_token"]},
        ),
        ("Pickup", {"fields": ["pickup_instructions"]}),
        ("Timestamps", {"fields": ["created_at", "updated_at"]}),
    ]


@admin.register(PosOrder)
class PosOrderAdmin(admin.ModelAdmin):
    """Admin for canonical POS orders."""

    list_display = [
        "external_order_id",
        "vendor",
        "provider",
        "status",
        "lifecycle",
        "source",
        "total_amount",
        "provider_updated_at",
    ]
    list_filter = ["provider", "lifecycle", "source"]
    search_fields = ["external_order_id", "reference_id", "vendor__slug"]
    readonly_fields = ["id", "created_at", "updated_at"]
    date_hierarchy = "created_at"


@admin.register(KitchenTicket)
class KitchenTicketAdmin(admin.ModelAdmin):
    """Admin for kitchen tickets."""

    list_display = [
        "shortcode",
        "vendor",
        "location",
        "status",
        "source",
        "placed_at",
        "promoted_at",
    ]
    list_filter = ["status", "source"]
    search_fields = ["shortcode", "order__external_order_id", "vendor__slug"]
    readonly_fields = [
        "id",
        "placed_at",
        "promoted_at",
        "ready_at",
        "completed_at",
        "canceled_at",
    ]
    ordering = ["-placed_at"]


@admin.register(OrderSnapshot)
class OrderSnapshotAdmin(admin.ModelAdmin):
    """Admin for order snapshots - read-only business records."""

    list_display = ["external_order_id", "vendor", "pickup_label", "user_id", "placed_at"]
    search_fields = ["external_order_id", "user_id", "pickup_label"]
    readonly_fields = ["id", "snapshot", "placed_at", "created_at"]
    inlines = [LoyaltyLedgerEntryInline]
    date_hierarchy = "placed_at"


@admin.register(LoyaltyLedgerEntry)
class LoyaltyLedgerEntryAdmin(admin.ModelAdmin):
    """Admin for the append-only loyalty ledger."""

    list_display = ["user_id", "vendor", "points_delta", "snapshot", "created_at"]
    list_filter = ["vendor"]
    search_fields = ["user_id"]
    readonly_fields = ["id", "user_id", "snapshot", "points_delta", "created_at"]

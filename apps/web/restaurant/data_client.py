"""
Data client - the persistence boundary for order ingestion.

The ingestion engine and reconciliation scanner only read and write
vendors, orders, tickets, snapshots and loyalty entries through a
DataClient. DjangoDataClient is the ORM-backed implementation.
"""

import logging
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.utils import timezone

from passline_schemas import CanonicalOrder, OrderSource

from apps.web.core.models import Vendor
from apps.web.restaurant.models import (
    KitchenTicket,
    LoyaltyLedgerEntry,
    OrderLifecycle,
    OrderSnapshot,
    PosOrder,
    TicketSource,
    TicketStatus,
    VendorLocation,
)
from apps.web.restaurant.shortcodes import assign_shortcode

logger = logging.getLogger(__name__)

_POS_TICKET_SOURCES = {
    "square": TicketSource.SQUARE_POS,
    "clover": TicketSource.CLOVER_POS,
    "toast": TicketSource.TOAST_POS,
}

_TERMINAL_TICKET_FOR_LIFECYCLE = {
    OrderLifecycle.COMPLETED.value: TicketStatus.COMPLETED,
    OrderLifecycle.CANCELED.value: TicketStatus.CANCELED,
}


@runtime_checkable
class DataClient(Protocol):
    """Storage operations used by ingestion and reconciliation."""

    # =========================================================================
    # Vendors and locations
    # =========================================================================

    def get_location(
        self, provider: str, external_location_id: str
    ) -> VendorLocation | None:
        """Active location of an active vendor, or None."""
        ...

    def list_active_locations(
        self,
        provider: str | None = None,
        external_location_ids: list[str] | None = None,
    ) -> list[VendorLocation]: ...

    def get_vendor_by_slug(self, slug: str) -> Vendor | None: ...

    # =========================================================================
    # Orders and tickets
    # =========================================================================

    def upsert_order(
        self, location: VendorLocation, order: CanonicalOrder
    ) -> PosOrder: ...

    def ensure_ticket(self, order: PosOrder) -> tuple[KitchenTicket, bool]:
        """Return (ticket, created). Never changes an existing ticket."""
        ...

    def update_ticket_for_terminal_state(self, order: PosOrder) -> bool:
        """Advance the ticket to the order's terminal status. True if changed."""
        ...

    def promote_queued_ticket(self, location: VendorLocation) -> KitchenTicket | None: ...

    # =========================================================================
    # Snapshots and loyalty
    # =========================================================================

    def get_snapshot(self, vendor: Vendor, external_order_id: str) -> OrderSnapshot | None: ...

    def create_snapshot(
        self,
        *,
        order: PosOrder,
        user_id: str | None,
        placed_at: datetime,
        snapshot: dict[str, Any],
        customer_display_name: str,
        pickup_label: str,
        earn_points: int,
        redeem_points: int,
    ) -> dict[str, Any]: ...

    def resolve_user(self, user_id: str) -> dict[str, str]:
        """Best-effort {"display_name", "email"} for a placing user."""
        ...


class DjangoDataClient:
    """DataClient backed by the Django ORM."""

    # =========================================================================
    # Vendors and locations
    # =========================================================================

    def get_location(
        self, provider: str, external_location_id: str
    ) -> VendorLocation | None:
        if not external_location_id:
            return None
        return (
            VendorLocation.objects.select_related("vendor")
            .filter(
                pos_provider=provider,
                external_location_id=external_location_id,
                is_active=True,
                vendor__is_active=True,
            )
            .first()
        )

    def list_active_locations(
        self,
        provider: str | None = None,
        external_location_ids: list[str] | None = None,
    ) -> list[VendorLocation]:
        locations = VendorLocation.objects.select_related("vendor").filter(
            is_active=True,
            vendor__is_active=True,
        )
        if provider:
            locations = locations.filter(pos_provider=provider)
        if external_location_ids:
            locations = locations.filter(
                external_location_id__in=external_location_ids
            )
        return list(locations.order_by("vendor__slug", "external_location_id"))

    def get_vendor_by_slug(self, slug: str) -> Vendor | None:
        return Vendor.objects.filter(slug=slug, is_active=True).first()

    # =========================================================================
    # Orders and tickets
    # =========================================================================

    def upsert_order(
        self, location: VendorLocation, order: CanonicalOrder
    ) -> PosOrder:
        """Insert or update the canonical order; last write wins."""
        pos_order, created = PosOrder.objects.update_or_create(
            location=location,
            provider=order.provider.value,
            external_order_id=order.external_order_id,
            defaults={
                "vendor": location.vendor,
                "status": order.status,
                "lifecycle": order.lifecycle.value,
                "source": order.source.value,
                "line_items": [
                    item.model_dump(mode="json") for item in order.line_items
                ],
                "total_amount": order.total_cents,
                "currency": order.currency or "USD",
                "reference_id": order.reference_id,
                "metadata": order.metadata,
                "provider_created_at": order.created_at,
                "provider_updated_at": order.updated_at,
            },
        )
        logger.debug(
            "%s order %s:%s (%s)",
            "Created" if created else "Updated",
            order.provider.value,
            order.external_order_id,
            order.lifecycle.value,
        )
        return pos_order

    def ensure_ticket(self, order: PosOrder) -> tuple[KitchenTicket, bool]:
        existing = KitchenTicket.objects.filter(order=order).first()
        if existing is not None:
            return existing, False

        if order.source == OrderSource.ONLINE.value:
            source = TicketSource.ONLINE
        else:
            source = _POS_TICKET_SOURCES.get(order.provider, TicketSource.POS)

        active_codes = KitchenTicket.objects.filter(
            location_id=order.location_id,
        ).exclude(
            status__in=[TicketStatus.COMPLETED, TicketStatus.CANCELED],
        ).values_list("shortcode", flat=True)

        ticket, created = KitchenTicket.objects.get_or_create(
            order=order,
            defaults={
                "vendor_id": order.vendor_id,
                "location_id": order.location_id,
                "status": TicketStatus.PLACED,
                "source": source,
                "shortcode": assign_shortcode(source.value, active_codes),
                "placed_at": order.provider_created_at or timezone.now(),
            },
        )
        if created:
            logger.info(
                "Created kitchen ticket %s (%s) for order %s",
                ticket.pk,
                ticket.shortcode,
                order.external_order_id,
            )
        return ticket, created

    def update_ticket_for_terminal_state(self, order: PosOrder) -> bool:
        target = _TERMINAL_TICKET_FOR_LIFECYCLE.get(order.lifecycle)
        if target is None:
            return False

        with transaction.atomic():
            ticket = (
                KitchenTicket.objects.select_for_update().filter(order=order).first()
            )
            if ticket is None or ticket.status == target:
                return False
            if not ticket.can_transition_to(target):
                logger.info(
                    "Ticket %s stays %s (order %s is %s)",
                    ticket.pk,
                    ticket.status,
                    order.external_order_id,
                    order.lifecycle,
                )
                return False

            now = timezone.now()
            ticket.status = target
            update_fields = ["status", "updated_at"]
            if target == TicketStatus.COMPLETED:
                ticket.completed_at = now
                update_fields.append("completed_at")
            else:
                ticket.canceled_at = now
                update_fields.append("canceled_at")
            ticket.save(update_fields=update_fields)

        logger.info(
            "Ticket %s moved to %s for order %s",
            ticket.pk,
            target,
            order.external_order_id,
        )
        return True

    def promote_queued_ticket(self, location: VendorLocation) -> KitchenTicket | None:
        """
        Put the oldest waiting ticket on the active rail if there is room.

        Room means fewer promoted placed/preparing tickets than the vendor's
        kds_active_limit. The location row is locked so concurrent callers
        cannot overshoot the limit.
        """
        with transaction.atomic():
            locked = (
                VendorLocation.objects.select_for_update()
                .select_related("vendor")
                .get(pk=location.pk)
            )
            tickets = KitchenTicket.objects.filter(
                location=locked,
                status__in=[TicketStatus.PLACED, TicketStatus.PREPARING],
            )
            active = tickets.filter(promoted_at__isnull=False).count()
            if active >= locked.vendor.kds_active_limit:
                return None

            candidate = (
                tickets.filter(status=TicketStatus.PLACED, promoted_at__isnull=True)
                .order_by("placed_at", "created_at")
                .first()
            )
            if candidate is None:
                return None

            candidate.promoted_at = timezone.now()
            candidate.save(update_fields=["promoted_at", "updated_at"])

        logger.info("Promoted ticket %s at %s", candidate.pk, location)
        return candidate

    # =========================================================================
    # Snapshots and loyalty
    # =========================================================================

    def get_snapshot(self, vendor: Vendor, external_order_id: str) -> OrderSnapshot | None:
        return OrderSnapshot.objects.filter(
            vendor=vendor,
            external_order_id=external_order_id,
        ).first()

    def create_snapshot(
        self,
        *,
        order: PosOrder,
        user_id: str | None,
        placed_at: datetime,
        snapshot: dict[str, Any],
        customer_display_name: str,
        pickup_label: str,
        earn_points: int,
        redeem_points: int,
    ) -> dict[str, Any]:
        """
        Create the snapshot and its loyalty entries in one transaction.

        Returns:
            Dict with snapshot, created, points_awarded, points_redeemed.
            When another worker won the race the existing snapshot is
            returned with created=False and no ledger writes.
        """
        result: dict[str, Any] = {
            "snapshot": None,
            "created": False,
            "points_awarded": 0,
            "points_redeemed": 0,
        }

        try:
            with transaction.atomic():
                snap = OrderSnapshot.objects.create(
                    vendor_id=order.vendor_id,
                    order=order,
                    external_order_id=order.external_order_id,
                    user_id=user_id or "",
                    placed_at=placed_at,
                    snapshot=snapshot,
                    customer_display_name=customer_display_name,
                    pickup_label=pickup_label,
                )

                if user_id and earn_points > 0:
                    LoyaltyLedgerEntry.objects.create(
                        vendor_id=order.vendor_id,
                        user_id=user_id,
                        snapshot=snap,
                        points_delta=earn_points,
                    )
                    result["points_awarded"] = earn_points

                # unique_loyalty_redeem_per_snapshot keeps this to one entry
                if user_id and redeem_points > 0:
                    LoyaltyLedgerEntry.objects.create(
                        vendor_id=order.vendor_id,
                        user_id=user_id,
                        snapshot=snap,
                        points_delta=-redeem_points,
                    )
                    result["points_redeemed"] = redeem_points
        except IntegrityError:
            existing = self.get_snapshot(order.vendor, order.external_order_id)
            if existing is None:
                raise
            logger.info(
                "Snapshot for order %s already created by another worker",
                order.external_order_id,
            )
            result["snapshot"] = existing
            result["points_awarded"] = 0
            result["points_redeemed"] = 0
            return result

        result["snapshot"] = snap
        result["created"] = True
        return result

    def resolve_user(self, user_id: str) -> dict[str, str]:
        User = get_user_model()
        user = User.objects.filter(username=user_id).first()
        if user is None:
            return {"display_name": "", "email": ""}

        email = getattr(user, "email", "") or ""
        display_name = user.get_full_name().strip() if hasattr(user, "get_full_name") else ""
        if not display_name and email:
            display_name = email.split("@")[0]
        if not display_name:
            display_name = user.get_username()
        return {"display_name": display_name, "email": email}

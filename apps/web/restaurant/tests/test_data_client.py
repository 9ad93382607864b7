"""Tests for the ORM-backed DataClient."""

from datetime import timedelta

from django.contrib.auth import get_user_model
from django.utils import timezone

import pytest
from passline_schemas import OrderLifecycle, OrderSource

from apps.web.pos.adapters.mock import make_mock_order
from apps.web.restaurant.data_client import DataClient, DjangoDataClient
from apps.web.restaurant.models import (
    KitchenTicket,
    LoyaltyLedgerEntry,
    OrderSnapshot,
    PosOrder,
    TicketSource,
    TicketStatus,
)
from apps.web.restaurant.tests.factories import (
    KitchenTicketFactory,
    PosOrderFactory,
    VendorFactory,
    VendorLocationFactory,
)


@pytest.fixture
def client_() -> DjangoDataClient:
    return DjangoDataClient()


def test_implements_protocol():
    assert isinstance(DjangoDataClient(), DataClient)


@pytest.mark.django_db
class TestLocations:
    """Location lookups."""

    def test_get_location(self, client_, location):
        assert client_.get_location("square", "LSQ1") == location
        assert client_.get_location("clover", "LSQ1") is None
        assert client_.get_location("square", "") is None

    def test_inactive_vendor_hidden(self, client_, location):
        location.vendor.is_active = False
        location.vendor.save()

        assert client_.get_location("square", "LSQ1") is None
        assert client_.get_vendor_by_slug(location.vendor.slug) is None

    def test_list_active_locations(self, client_, location, mock_location):
        VendorLocationFactory(is_active=False)

        assert set(client_.list_active_locations()) == {location, mock_location}
        assert client_.list_active_locations(provider="mock") == [mock_location]
        assert client_.list_active_locations(external_location_ids=["LSQ1"]) == [location]


@pytest.mark.django_db
class TestOrders:
    """Order upsert and tickets."""

    def test_upsert_last_write_wins(self, client_, mock_location):
        first = client_.upsert_order(mock_location, make_mock_order("o-1"))
        second = client_.upsert_order(
            mock_location,
            make_mock_order("o-1", lifecycle=OrderLifecycle.PAID, total_cents=999),
        )

        assert first.pk == second.pk
        stored = PosOrder.objects.get()
        assert stored.lifecycle == "paid"
        assert stored.total_amount == 999
        assert stored.vendor == mock_location.vendor
        assert stored.line_items[0]["name"] == "Latte"

    def test_ensure_ticket_once(self, client_, mock_location):
        order = client_.upsert_order(mock_location, make_mock_order("o-1"))

        ticket, created = client_.ensure_ticket(order)
        again, created_again = client_.ensure_ticket(order)

        assert created is True
        assert created_again is False
        assert again.pk == ticket.pk
        assert ticket.source == TicketSource.POS
        assert ticket.placed_at == order.provider_created_at

    def test_ticket_source_per_provider(self, client_):
        order = PosOrderFactory(provider="square")
        online = PosOrderFactory(provider="square", source=OrderSource.ONLINE.value)

        ticket, _ = client_.ensure_ticket(order)
        online_ticket, _ = client_.ensure_ticket(online)

        assert ticket.source == TicketSource.SQUARE_POS
        assert online_ticket.source == TicketSource.ONLINE
        assert online_ticket.shortcode == "M31"

    def test_shortcodes_reused_after_completion(self, client_, mock_location):
        done = KitchenTicketFactory(
            order=PosOrderFactory(location=mock_location),
            shortcode="1",
            status=TicketStatus.COMPLETED,
        )
        active = KitchenTicketFactory(
            order=PosOrderFactory(location=mock_location), shortcode="2"
        )
        order = PosOrderFactory(location=mock_location, provider="mock")

        ticket, _ = client_.ensure_ticket(order)

        assert done.shortcode == "1"
        assert active.shortcode == "2"
        assert ticket.shortcode == "1"

    def test_terminal_state_sets_timestamps(self, client_):
        ticket = KitchenTicketFactory(status=TicketStatus.READY)
        ticket.order.lifecycle = OrderLifecycle.CANCELED.value
        ticket.order.save()

        assert client_.update_ticket_for_terminal_state(ticket.order) is True
        assert client_.update_ticket_for_terminal_state(ticket.order) is False

        ticket.refresh_from_db()
        assert ticket.status == TicketStatus.CANCELED
        assert ticket.canceled_at is not None

    def test_non_terminal_order_leaves_ticket(self, client_):
        ticket = KitchenTicketFactory(status=TicketStatus.PREPARING)

        assert client_.update_ticket_for_terminal_state(ticket.order) is False


@pytest.mark.django_db
class TestPromotion:
    """Active rail capacity."""

    def _ticket(self, location, minutes_ago, **kwargs):
        return KitchenTicketFactory(
            order=PosOrderFactory(location=location),
            placed_at=timezone.now() - timedelta(minutes=minutes_ago),
            **kwargs,
        )

    def test_promotes_oldest_waiting(self, client_, mock_location):
        newer = self._ticket(mock_location, 1)
        older = self._ticket(mock_location, 5)

        promoted = client_.promote_queued_ticket(mock_location)

        assert promoted.pk == older.pk
        newer.refresh_from_db()
        assert newer.promoted_at is None

    def test_respects_limit(self, client_, mock_location):
        # conftest vendor has kds_active_limit=2
        self._ticket(mock_location, 10, promoted_at=timezone.now())
        self._ticket(mock_location, 9, promoted_at=timezone.now(), status=TicketStatus.PREPARING)
        self._ticket(mock_location, 1)

        assert client_.promote_queued_ticket(mock_location) is None

    def test_ready_tickets_free_capacity(self, client_, mock_location):
        self._ticket(mock_location, 10, promoted_at=timezone.now(), status=TicketStatus.READY)
        self._ticket(mock_location, 9, promoted_at=timezone.now())
        waiting = self._ticket(mock_location, 1)

        assert client_.promote_queued_ticket(mock_location).pk == waiting.pk

    def test_nothing_waiting(self, client_, mock_location):
        assert client_.promote_queued_ticket(mock_location) is None


@pytest.mark.django_db
class TestSnapshotsAndUsers:
    """Snapshot creation and user lookup."""

    def _create(self, client_, order, **overrides):
        fields = {
            "order": order,
            "user_id": "user-42",
            "placed_at": timezone.now(),
            "snapshot": {"items": [], "total": order.total_amount},
            "customer_display_name": "Jamie",
            "pickup_label": "Jamie",
            "earn_points": 12,
            "redeem_points": 50,
        }
        fields.update(overrides)
        return client_.create_snapshot(**fields)

    def test_create_snapshot_with_ledger(self, client_):
        order = PosOrderFactory(total_amount=1250)

        result = self._create(client_, order)

        assert result["created"] is True
        assert result["points_awarded"] == 12
        assert result["points_redeemed"] == 50
        snapshot = result["snapshot"]
        assert client_.get_snapshot(order.vendor, order.external_order_id) == snapshot
        deltas = sorted(
            LoyaltyLedgerEntry.objects.filter(snapshot=snapshot).values_list(
                "points_delta", flat=True
            )
        )
        assert deltas == [-50, 12]

    def test_second_create_returns_existing(self, client_):
        order = PosOrderFactory()
        first = self._create(client_, order)

        second = self._create(client_, order)

        assert second["created"] is False
        assert second["snapshot"].pk == first["snapshot"].pk
        assert second["points_awarded"] == 0
        assert OrderSnapshot.objects.count() == 1
        assert LoyaltyLedgerEntry.objects.count() == 2

    def test_no_ledger_without_user(self, client_):
        result = self._create(client_, PosOrderFactory(), user_id=None)

        assert result["created"] is True
        assert result["points_awarded"] == 0
        assert not LoyaltyLedgerEntry.objects.exists()

    def test_snapshots_are_per_vendor(self, client_):
        order = PosOrderFactory(external_order_id="shared-id")
        other_vendor_order = PosOrderFactory(
            external_order_id="shared-id",
            location=VendorLocationFactory(vendor=VendorFactory()),
        )

        self._create(client_, order)
        result = self._create(client_, other_vendor_order)

        assert result["created"] is True

    def test_resolve_user(self, client_):
        User = get_user_model()
        User.objects.create_user(username="full", first_name="Jamie", last_name="Rivera")
        User.objects.create_user(username="mail", email="sam.lee@example.com")
        User.objects.create_user(username="bare")

        assert client_.resolve_user("full")["display_name"] == "Jamie Rivera"
        assert client_.resolve_user("mail") == {
            "display_name": "sam.lee",
            "email": "sam.lee@example.com",
        }
        assert client_.resolve_user("bare")["display_name"] == "bare"
        assert client_.resolve_user("ghost") == {"display_name": "", "email": ""}


@pytest.mark.django_db
def test_ticket_count_unchanged_by_lookup(client_, location):
    client_.get_location("square", "LSQ1")
    assert KitchenTicket.objects.count() == 0

"""Tests for restaurant models."""

from django.db import IntegrityError

import pytest

from apps.web.restaurant.models import KitchenTicket, TicketStatus
from apps.web.restaurant.tests.factories import (
    KitchenTicketFactory,
    OrderSnapshotFactory,
    PosOrderFactory,
    VendorLocationFactory,
)


class TestKitchenTicketTransitions:
    """Forward-only status changes."""

    @pytest.mark.parametrize(
        ("current", "target", "allowed"),
        [
            (TicketStatus.PLACED, TicketStatus.PREPARING, True),
            (TicketStatus.PLACED, TicketStatus.COMPLETED, True),
            (TicketStatus.PREPARING, TicketStatus.READY, True),
            (TicketStatus.READY, TicketStatus.PREPARING, False),
            (TicketStatus.READY, TicketStatus.READY, False),
            (TicketStatus.READY, TicketStatus.CANCELED, True),
            (TicketStatus.COMPLETED, TicketStatus.CANCELED, False),
            (TicketStatus.CANCELED, TicketStatus.COMPLETED, False),
            (TicketStatus.CANCELED, TicketStatus.PLACED, False),
        ],
    )
    def test_can_transition_to(self, current, target, allowed):
        ticket = KitchenTicket(status=current)
        assert ticket.can_transition_to(target) is allowed

    def test_is_terminal(self):
        assert KitchenTicket(status=TicketStatus.COMPLETED).is_terminal
        assert KitchenTicket(status=TicketStatus.CANCELED).is_terminal
        assert not KitchenTicket(status=TicketStatus.READY).is_terminal


@pytest.mark.django_db
class TestConstraints:
    """Uniqueness rules."""

    def test_one_location_per_provider_id(self):
        VendorLocationFactory(pos_provider="square", external_location_id="L1")

        with pytest.raises(IntegrityError):
            VendorLocationFactory(pos_provider="square", external_location_id="L1")

    def test_same_location_id_other_provider(self):
        VendorLocationFactory(pos_provider="square", external_location_id="L1")
        location = VendorLocationFactory(pos_provider="clover", external_location_id="L1")

        assert location.pk is not None

    def test_one_order_per_location(self):
        order = PosOrderFactory(external_order_id="o-1")

        with pytest.raises(IntegrityError):
            PosOrderFactory(location=order.location, external_order_id="o-1")

    def test_one_snapshot_per_vendor_order(self):
        snapshot = OrderSnapshotFactory()

        with pytest.raises(IntegrityError):
            OrderSnapshotFactory(
                order=snapshot.order, external_order_id=snapshot.external_order_id
            )

    def test_one_ticket_per_order(self):
        ticket = KitchenTicketFactory()

        with pytest.raises(IntegrityError):
            KitchenTicketFactory(order=ticket.order)


@pytest.mark.django_db
class TestStrings:
    def test_str(self):
        ticket = KitchenTicketFactory(shortcode="7")
        snapshot = OrderSnapshotFactory(pickup_label="Jamie")

        assert str(ticket) == "Ticket 7 (placed)"
        assert "Jamie" in str(snapshot)
        assert snapshot.total == snapshot.order.total_amount

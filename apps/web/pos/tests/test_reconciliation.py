"""Tests for the reconciliation scanner."""

from datetime import UTC, datetime, timedelta

import pytest
from passline_schemas import OrderLifecycle

from apps.web.pos.adapters.mock import MockPOSAdapter, make_mock_order
from apps.web.pos.exceptions import POSAPIError
from apps.web.pos.services.reconciliation import (
    LocationNotFoundError,
    reconcile,
    reconcile_all,
    reconcile_location,
)
from apps.web.restaurant.models import KitchenTicket, OrderSnapshot, PosOrder, TicketStatus
from apps.web.restaurant.tests.factories import VendorFactory, VendorLocationFactory


class _FlakyAdapter(MockPOSAdapter):
    """Lists every order but fails to re-fetch the ones named in `broken`."""

    def __init__(self, broken: set[str], **kwargs):
        super().__init__(**kwargs)
        self._broken = broken

    async def fetch_order(self, session, location_id, order_id):
        if order_id in self._broken:
            raise POSAPIError("upstream timeout", provider="mock", status_code=504)
        return await super().fetch_order(session, location_id, order_id)


@pytest.fixture
def adapter() -> MockPOSAdapter:
    return MockPOSAdapter()


def _recent(order_id: str, **overrides):
    return make_mock_order(
        order_id, updated_at=datetime.now(UTC) - timedelta(minutes=1), **overrides
    )


@pytest.mark.django_db
class TestReconcileLocation:
    """One location."""

    def test_creates_missing_state(self, adapter, mock_location):
        adapter.add_order(_recent("o-1"))
        adapter.add_order(_recent("o-2", lifecycle=OrderLifecycle.PAID))
        adapter.add_order(_recent("o-3", lifecycle=OrderLifecycle.COMPLETED))

        stats = reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)

        assert stats.orders_fetched == 3
        assert stats.processed == 3
        assert stats.created_tickets == 2
        assert stats.updated_tickets == 0
        assert stats.errors == 0
        assert PosOrder.objects.count() == 3
        # Snapshots only come from payment events
        assert not OrderSnapshot.objects.exists()

    def test_idempotent(self, adapter, mock_location):
        adapter.add_order(_recent("o-1"))
        adapter.add_order(_recent("o-2", lifecycle=OrderLifecycle.PAID))

        reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)
        second = reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)

        assert second.processed == 2
        assert second.created_tickets == 0
        assert second.updated_tickets == 0
        assert KitchenTicket.objects.count() == 2
        assert not OrderSnapshot.objects.exists()

    def test_repairs_missed_completion(self, adapter, mock_location):
        adapter.add_order(_recent("o-1"))
        reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)
        adapter.set_lifecycle("o-1", OrderLifecycle.COMPLETED)

        stats = reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)

        assert stats.updated_tickets == 1
        assert KitchenTicket.objects.get().status == TicketStatus.COMPLETED

    def test_window_excludes_old_orders(self, adapter, mock_location):
        adapter.add_order(
            make_mock_order("old", updated_at=datetime.now(UTC) - timedelta(hours=3))
        )

        stats = reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)

        assert stats.orders_fetched == 0

    def test_fetch_errors_counted(self, mock_location):
        adapter = _FlakyAdapter(
            broken={"o-2"},
            orders=[_recent(f"o-{n}") for n in range(1, 8)],
        )

        stats = reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)

        assert stats.orders_fetched == 7
        assert stats.processed == 6
        assert stats.errors == 1
        assert not PosOrder.objects.filter(external_order_id="o-2").exists()

    def test_listing_failure_raises(self, mock_location):
        adapter = MockPOSAdapter(fail_fetch=True)

        with pytest.raises(POSAPIError):
            reconcile_location(mock_location, 10, adapter_factory=lambda p: adapter)


@pytest.mark.django_db
class TestReconcileVendor:
    """Vendor-scoped reconciliation."""

    def test_unknown_location(self, vendor, mock_location, adapter):
        with pytest.raises(LocationNotFoundError):
            reconcile(vendor, "nowhere", adapter_factory=lambda p: adapter)

    def test_other_vendors_location_not_found(self, mock_location, adapter):
        other = VendorFactory()

        with pytest.raises(LocationNotFoundError):
            reconcile(other, "mock-location", adapter_factory=lambda p: adapter)

    def test_single_location(self, vendor, mock_location, adapter):
        adapter.add_order(_recent("o-1"))

        stats = reconcile(vendor, "mock-location", 30, adapter_factory=lambda p: adapter)

        assert stats.processed == 1
        assert stats.created_tickets == 1

    def test_failing_location_counted(self, vendor, mock_location, adapter, settings):
        settings.SQUARE_ACCESS_TOKEN = ""
        adapter.add_order(_recent("o-1"))
        VendorLocationFactory(
            vendor=vendor, external_location_id="LSQ-NOTOKEN", access_token=""
        )

        stats = reconcile(vendor, None, 10, adapter_factory=lambda p: adapter)

        assert stats.errors == 1
        assert stats.processed == 1
        assert stats.created_tickets == 1


@pytest.mark.django_db
class TestReconcileAll:
    """Sweeps across vendors."""

    def test_sweep_continues_after_failure(self, vendor, mock_location, adapter, settings):
        settings.SQUARE_ACCESS_TOKEN = ""
        adapter.add_order(_recent("o-1"))
        # Square location without a token anywhere: session creation fails
        VendorLocationFactory(
            vendor=vendor, external_location_id="LSQ-NOTOKEN", access_token=""
        )

        def factory(provider):
            return adapter if provider == "mock" else MockPOSAdapter()

        outcome = reconcile_all(10, adapter_factory=factory)

        summary = outcome["summary"]
        assert summary["locations"] == 2
        assert summary["processed"] == 1
        assert summary["createdTickets"] == 1
        assert summary["errors"] == 1

        by_location = {entry["locationId"]: entry for entry in outcome["locations"]}
        assert by_location["mock-location"]["stats"]["ordersFetched"] == 1
        assert "No access token" in by_location["LSQ-NOTOKEN"]["error"]
        assert by_location["LSQ-NOTOKEN"]["vendor"] == vendor.slug

    def test_allow_list(self, vendor, mock_location, adapter):
        VendorLocationFactory(vendor=vendor, pos_provider="mock", external_location_id="mock-2")

        outcome = reconcile_all(10, ["mock-2"], adapter_factory=lambda p: adapter)

        assert [e["locationId"] for e in outcome["locations"]] == ["mock-2"]

    def test_allow_list_from_settings(self, vendor, mock_location, adapter, settings):
        VendorLocationFactory(vendor=vendor, pos_provider="mock", external_location_id="mock-2")
        settings.SQUARE_LOCATION_IDS = ["mock-location"]

        outcome = reconcile_all(10, adapter_factory=lambda p: adapter)

        assert [e["locationId"] for e in outcome["locations"]] == ["mock-location"]

    def test_inactive_vendor_skipped(self, adapter):
        location = VendorLocationFactory(pos_provider="mock")
        location.vendor.is_active = False
        location.vendor.save()

        outcome = reconcile_all(10, adapter_factory=lambda p: adapter)

        assert outcome["summary"]["locations"] == 0

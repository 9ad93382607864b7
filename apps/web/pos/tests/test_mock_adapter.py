"""Tests for MockPOSAdapter."""

from datetime import UTC, datetime, timedelta

import pytest
from passline_schemas import OrderLifecycle, POSProvider, POSSession

from apps.web.pos.adapters import get_adapter, session_for_location
from apps.web.pos.adapters.mock import MockPOSAdapter, make_mock_order
from apps.web.pos.exceptions import OrderNotFoundError, POSAPIError, POSAuthError
from apps.web.restaurant.tests.factories import VendorLocationFactory


@pytest.fixture
def session() -> POSSession:
    """Create a test session."""
    return POSSession(provider=POSProvider.MOCK, access_token="test-token")


@pytest.fixture
def adapter() -> MockPOSAdapter:
    """Mock adapter holding one open order."""
    return MockPOSAdapter(orders=[make_mock_order("o-1")])


class TestMockFetch:
    """Tests for fetch_order."""

    @pytest.mark.asyncio
    async def test_fetch_known_order(self, adapter, session):
        order = await adapter.fetch_order(session, "mock-location", "o-1")

        assert order.external_order_id == "o-1"
        assert order.lifecycle == OrderLifecycle.OPEN
        assert order.total_cents == 450
        assert adapter.fetch_calls == ["o-1"]

    @pytest.mark.asyncio
    async def test_fetch_unknown_order(self, adapter, session):
        with pytest.raises(OrderNotFoundError) as exc_info:
            await adapter.fetch_order(session, "mock-location", "o-404")

        assert exc_info.value.order_id == "o-404"

    @pytest.mark.asyncio
    async def test_fail_fetch(self, session):
        adapter = MockPOSAdapter(orders=[make_mock_order("o-1")], fail_fetch=True)

        with pytest.raises(POSAPIError) as exc_info:
            await adapter.fetch_order(session, "mock-location", "o-1")

        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_set_lifecycle_between_fetches(self, adapter, session):
        """Order state can change between the webhook and the fetch."""
        adapter.set_lifecycle("o-1", OrderLifecycle.COMPLETED)

        order = await adapter.fetch_order(session, "mock-location", "o-1")

        assert order.lifecycle == OrderLifecycle.COMPLETED
        assert order.status == "COMPLETED"


class TestMockList:
    """Tests for list_orders_updated_since."""

    @pytest.mark.asyncio
    async def test_filters_by_location_and_window(self, session):
        now = datetime.now(UTC)
        adapter = MockPOSAdapter(
            orders=[
                make_mock_order("recent", updated_at=now - timedelta(minutes=2)),
                make_mock_order("old", updated_at=now - timedelta(hours=2)),
                make_mock_order("elsewhere", location_id="other-location"),
            ]
        )

        orders = await adapter.list_orders_updated_since(
            session, "mock-location", now - timedelta(minutes=10)
        )

        assert [o.external_order_id for o in orders] == ["recent"]


class TestAdapterWiring:
    """Tests for the adapter factory and session helpers."""

    def test_get_adapter_mock(self):
        assert isinstance(get_adapter(POSProvider.MOCK), MockPOSAdapter)

    def test_get_adapter_unknown(self):
        with pytest.raises(ValueError, match="Unsupported POS provider"):
            get_adapter("lightspeed")

    @pytest.mark.django_db
    def test_session_uses_location_token(self):
        location = VendorLocationFactory(access_token="loc-token")

        session = session_for_location(location)

        assert session.access_token == "loc-token"
        assert session.provider == POSProvider.SQUARE

    @pytest.mark.django_db
    def test_session_falls_back_to_settings(self, settings):
        settings.SQUARE_ACCESS_TOKEN = "global-token"
        location = VendorLocationFactory(access_token="")

        assert session_for_location(location).access_token == "global-token"

    @pytest.mark.django_db
    def test_session_without_token(self, settings):
        settings.CLOVER_ACCESS_TOKEN = ""
        location = VendorLocationFactory(pos_provider="clover", access_token="")

        with pytest.raises(POSAuthError):
            session_for_location(location)

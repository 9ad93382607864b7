"""Mock POS adapter for testing and development."""

import asyncio
from datetime import UTC, datetime

from passline_schemas import (
    CanonicalLineItem,
    CanonicalOrder,
    CheckoutRequest,
    CheckoutResult,
    OrderLifecycle,
    POSProvider,
    POSSession,
)

from apps.web.pos.exceptions import OrderNotFoundError, POSAPIError


def make_mock_order(
    order_id: str,
    location_id: str = "mock-location",
    lifecycle: OrderLifecycle = OrderLifecycle.OPEN,
    **overrides: object,
) -> CanonicalOrder:
    """Build a small canonical order with one line item."""
    now = datetime.now(UTC)
    fields: dict[str, object] = {
        "provider": POSProvider.MOCK,
        "external_order_id": order_id,
        "location_id": location_id,
        "status": lifecycle.value.upper(),
        "lifecycle": lifecycle,
        "line_items": [
            CanonicalLineItem(
                external_id="item-latte",
                name="Latte",
                quantity=1,
                unit_price_cents=450,
                total_price_cents=450,
            )
        ],
        "total_cents": 450,
        "created_at": now,
        "updated_at": now,
    }
    fields.update(overrides)
    return CanonicalOrder(**fields)  # type: ignore[arg-type]


class MockPOSAdapter:
    """
    Mock POS adapter for development and testing.

    Holds orders in memory. Provides configurable behavior for simulating:
    - Orders changing state between webhook and fetch
    - Missing orders (404)
    - Provider outages
    - API latency

    Usage:
        adapter = MockPOSAdapter(orders=[make_mock_order("o-1")])
        adapter.set_lifecycle("o-1", OrderLifecycle.COMPLETED)
    """

    def __init__(
        self,
        orders: list[CanonicalOrder] | None = None,
        fail_fetch: bool = False,
        api_delay_ms: int = 0,
    ) -> None:
        """
        Initialize mock adapter.

        Args:
            orders: Orders the mock POS knows about.
            fail_fetch: If True, every read raises POSAPIError.
            api_delay_ms: Simulated API delay in milliseconds.
        """
        self._orders: dict[str, CanonicalOrder] = {
            order.external_order_id: order for order in orders or []
        }
        self._fail_fetch = fail_fetch
        self._api_delay_ms = api_delay_ms
        self.fetch_calls: list[str] = []

    @property
    def provider(self) -> POSProvider:
        """The POS provider this adapter connects to."""
        return POSProvider.MOCK

    async def close(self) -> None:
        """Nothing to release."""

    # =========================================================================
    # Configuration methods (for test setup)
    # =========================================================================

    def add_order(self, order: CanonicalOrder) -> None:
        self._orders[order.external_order_id] = order

    def set_lifecycle(self, order_id: str, lifecycle: OrderLifecycle) -> None:
        """Move a tracked order to a new lifecycle state."""
        if order_id in self._orders:
            self._orders[order_id] = self._orders[order_id].model_copy(
                update={
                    "lifecycle": lifecycle,
                    "status": lifecycle.value.upper(),
                    "updated_at": datetime.now(UTC),
                }
            )

    # =========================================================================
    # Order Operations
    # =========================================================================

    async def _simulate_call(self) -> None:
        if self._api_delay_ms > 0:
            await asyncio.sleep(self._api_delay_ms / 1000)
        if self._fail_fetch:
            raise POSAPIError("Mock POS unavailable", provider="mock", status_code=503)

    async def fetch_order(
        self,
        session: POSSession,  # noqa: ARG002
        location_id: str,  # noqa: ARG002
        order_id: str,
    ) -> CanonicalOrder:
        """Get the current state of a tracked order."""
        self.fetch_calls.append(order_id)
        await self._simulate_call()

        if order_id in self._orders:
            return self._orders[order_id]

        raise OrderNotFoundError(
            f"Order not found: {order_id}",
            provider="mock",
            order_id=order_id,
        )

    async def list_orders_updated_since(
        self,
        session: POSSession,  # noqa: ARG002
        location_id: str,
        since: datetime,
        until: datetime | None = None,
    ) -> list[CanonicalOrder]:
        """Tracked orders for the location updated inside the window."""
        await self._simulate_call()
        until = until or datetime.now(UTC)
        orders = [
            order
            for order in self._orders.values()
            if order.location_id == location_id
            and (order.updated_at is None or since <= order.updated_at <= until)
        ]
        return sorted(
            orders,
            key=lambda o: o.updated_at or datetime.min.replace(tzinfo=UTC),
            reverse=True,
        )

    async def create_checkout(
        self,
        session: POSSession,  # noqa: ARG002
        request: CheckoutRequest,  # noqa: ARG002
    ) -> CheckoutResult:
        raise POSAPIError(
            "Checkout creation is not supported by the ingestion service",
            provider="mock",
        )

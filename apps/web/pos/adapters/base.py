"""Base POS adapter protocol - interface for all POS integrations."""

from datetime import datetime
from typing import Protocol, runtime_checkable

from passline_schemas import (
    CanonicalOrder,
    CheckoutRequest,
    CheckoutResult,
    POSProvider,
    POSSession,
)


@runtime_checkable
class POSAdapter(Protocol):
    """
    Protocol defining the interface for POS system integrations.

    All POS adapters (Square, Clover, Toast, Mock) must implement this interface.
    Methods are async to support non-blocking I/O with external APIs.
    """

    @property
    def provider(self) -> POSProvider:
        """The POS provider this adapter connects to."""
        ...

    async def close(self) -> None:
        """Release the adapter's HTTP client if it owns one."""
        ...

    # =========================================================================
    # Order Operations (read)
    # =========================================================================

    async def fetch_order(
        self, session: POSSession, location_id: str, order_id: str
    ) -> CanonicalOrder:
        """
        Fetch the authoritative state of an order.

        Args:
            session: Authenticated session.
            location_id: POS location identifier.
            order_id: Order ID in the POS system.

        Returns:
            The order mapped to the canonical shape.

        Raises:
            OrderNotFoundError: If the provider has no such order.
            POSAPIError: If the API request fails.
            POSRateLimitError: If rate limit is exceeded.
        """
        ...

    async def list_orders_updated_since(
        self,
        session: POSSession,
        location_id: str,
        since: datetime,
        until: datetime | None = None,
    ) -> list[CanonicalOrder]:
        """
        List orders modified within a time window.

        Args:
            session: Authenticated session.
            location_id: POS location identifier.
            since: Window start (inclusive).
            until: Window end, defaults to now.

        Returns:
            Orders in the window, most recently updated first.

        Raises:
            POSAPIError: If the API request fails.
        """
        ...

    # =========================================================================
    # Checkout (write) - not used by ingestion
    # =========================================================================

    async def create_checkout(
        self, session: POSSession, request: CheckoutRequest
    ) -> CheckoutResult:
        """
        Create a hosted checkout link.

        Raises:
            POSAPIError: Checkout creation is handled outside this service.
        """
        ...

"""Square POS adapter - reads orders from Square's Orders API."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import httpx
from passline_schemas import (
    CanonicalLineItem,
    CanonicalModifier,
    CanonicalOrder,
    CheckoutRequest,
    CheckoutResult,
    OrderLifecycle,
    OrderSource,
    POSProvider,
    POSSession,
)

from apps.web.pos.exceptions import (
    OrderNotFoundError,
    POSAPIError,
    POSAuthError,
    POSRateLimitError,
)

logger = logging.getLogger(__name__)

# Square API version - update periodically
SQUARE_API_VERSION = "2024-01-18"

# Metadata key / reference prefix stamped on orders created by online checkout
ONLINE_SOURCE_KEY = "ct_source"
ONLINE_SOURCE_VALUE = "countrtop"
ONLINE_REFERENCE_PREFIX = "ct_"


class SquareAdapter:
    """
    Square POS adapter implementing the POSAdapter protocol.

    Used by ingestion to fetch the authoritative state of an order after a
    webhook, and by reconciliation to list recently updated orders.

    Square's REST API returns snake_case JSON; money is in minor units.

    API Reference: https://developer.squareup.com/reference/square/orders-api
    """

    SANDBOX_BASE_URL = "https://connect.squareupsandbox.com"
    PROD_BASE_URL = "https://connect.squareup.com"

    # Square rate limits are per-endpoint, generally generous
    REQUESTS_PER_SECOND = 10.0

    # Retry configuration
    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 2.0

    SEARCH_PAGE_SIZE = 100

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        sandbox: bool = False,
    ) -> None:
        """
        Initialize the Square adapter.

        Args:
            http_client: Optional HTTP client for dependency injection (testing).
            sandbox: If True, use Square sandbox environment.
        """
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._sandbox = sandbox
        self._base_url = self.SANDBOX_BASE_URL if sandbox else self.PROD_BASE_URL
        self._rate_limiter = _RateLimiter(self.REQUESTS_PER_SECOND)
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    @property
    def provider(self) -> POSProvider:
        """The POS provider this adapter connects to."""
        return POSProvider.SQUARE

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        session: POSSession,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an HTTP request with rate limiting and retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            session: Authenticated session
            **kwargs: Additional arguments passed to httpx

        Returns:
            HTTP response

        Raises:
            POSAPIError: If request fails after retries, or with status_code
                404 immediately when the resource does not exist.
            POSRateLimitError: If rate limit exceeded
        """
        headers = {
            "Authorization": f"Bearer {session.access_token}",
            "Square-Version": SQUARE_API_VERSION,
            "Content-Type": "application/json",
            **kwargs.pop("headers", {}),
        }

        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(self.MAX_RETRIES):
            await self._rate_limiter.acquire()

            try:
                response = await self._client.request(
                    method, url, headers=headers, **kwargs
                )

                if response.status_code == 429:
                    retry_after = int(response.headers.get("Retry-After", "60"))
                    raise POSRateLimitError(
                        "Square rate limit exceeded",
                        provider="square",
                        retry_after=retry_after,
                    )

                if response.status_code == 401:
                    raise POSAuthError(
                        "Square session expired or invalid",
                        provider="square",
                    )

                if response.status_code == 404:
                    raise POSAPIError(
                        f"Square resource not found: {url}",
                        provider="square",
                        status_code=404,
                        response_body=response.text,
                    )

                response.raise_for_status()
                return response

            except (httpx.RequestError, httpx.HTTPStatusError) as e:
                last_error = e
                if isinstance(e, httpx.HTTPStatusError):
                    last_status = e.response.status_code
                if attempt < self.MAX_RETRIES - 1:
                    backoff = self.RETRY_BACKOFF_BASE**attempt
                    logger.warning(
                        "Square API failed (attempt %d/%d), retry in %.1fs: %s",
                        attempt + 1,
                        self.MAX_RETRIES,
                        backoff,
                        str(e),
                    )
                    await asyncio.sleep(backoff)

        raise POSAPIError(
            f"Square API request failed after {self.MAX_RETRIES} attempts: "
            f"{last_error}",
            provider="square",
            status_code=last_status,
        )

    # =========================================================================
    # Order Operations
    # =========================================================================

    async def fetch_order(
        self, session: POSSession, location_id: str, order_id: str
    ) -> CanonicalOrder:
        """
        Retrieve a single order.

        Square order IDs are globally unique, so location_id is only used as
        a fallback when the order omits it.
        """
        try:
            response = await self._request_with_retry(
                "GET",
                f"{self._base_url}/v2/orders/{order_id}",
                session,
            )
        except POSAPIError as e:
            if e.status_code == 404:
                raise OrderNotFoundError(
                    f"Square order {order_id} not found",
                    provider="square",
                    order_id=order_id,
                ) from e
            raise

        order = response.json().get("order")
        if not order:
            raise OrderNotFoundError(
                f"Square returned no order for {order_id}",
                provider="square",
                order_id=order_id,
            )
        return self._to_canonical(order, location_id)

    async def list_orders_updated_since(
        self,
        session: POSSession,
        location_id: str,
        since: datetime,
        until: datetime | None = None,
    ) -> list[CanonicalOrder]:
        """Search orders by updated_at, following the cursor to the end."""
        until = until or datetime.now(UTC)
        body: dict[str, Any] = {
            "location_ids": [location_id],
            "limit": self.SEARCH_PAGE_SIZE,
            "query": {
                "filter": {
                    "date_time_filter": {
                        "updated_at": {
                            "start_at": since.isoformat(),
                            "end_at": until.isoformat(),
                        }
                    }
                },
                "sort": {"sort_field": "UPDATED_AT", "sort_order": "DESC"},
            },
        }

        orders: list[CanonicalOrder] = []
        cursor: str | None = None
        while True:
            if cursor:
                body["cursor"] = cursor
            response = await self._request_with_retry(
                "POST",
                f"{self._base_url}/v2/orders/search",
                session,
                json=body,
            )
            data = response.json()
            orders.extend(
                self._to_canonical(order, location_id)
                for order in data.get("orders", [])
            )
            cursor = data.get("cursor")
            if not cursor:
                break

        logger.info(
            "Square search returned %d orders for location %s since %s",
            len(orders),
            location_id,
            since.isoformat(),
        )
        return orders

    async def create_checkout(
        self, session: POSSession, request: CheckoutRequest
    ) -> CheckoutResult:
        """Checkout links are created by the storefront, not by ingestion."""
        raise POSAPIError(
            "Checkout creation is not supported by the ingestion service",
            provider="square",
        )

    # =========================================================================
    # Mapping
    # =========================================================================

    def _to_canonical(
        self, order: dict[str, Any], fallback_location_id: str = ""
    ) -> CanonicalOrder:
        """Map a Square order to the canonical shape."""
        state = order.get("state", "")
        metadata = order.get("metadata") or {}
        reference_id = order.get("reference_id") or ""
        email, name = _extract_customer(order)

        return CanonicalOrder(
            provider=POSProvider.SQUARE,
            external_order_id=order.get("id", ""),
            location_id=order.get("location_id") or fallback_location_id,
            status=state,
            lifecycle=map_square_lifecycle(state, bool(order.get("tenders"))),
            source=_detect_source(metadata, reference_id),
            line_items=[_map_line_item(item) for item in order.get("line_items", [])],
            total_cents=_money_amount(order.get("total_money")),
            currency=(order.get("total_money") or {}).get("currency", "USD"),
            reference_id=reference_id,
            metadata=metadata,
            customer_email=email,
            customer_name=name,
            created_at=_parse_timestamp(order.get("created_at")),
            updated_at=_parse_timestamp(order.get("updated_at")),
        )


def map_square_lifecycle(state: str, has_tenders: bool = False) -> OrderLifecycle:
    """
    Map a Square order state to the canonical lifecycle.

    An OPEN order with tenders attached has been paid.
    """
    state = (state or "").upper()
    if state == "COMPLETED":
        return OrderLifecycle.COMPLETED
    if state == "CANCELED":
        return OrderLifecycle.CANCELED
    if state == "DRAFT":
        return OrderLifecycle.DRAFT
    if has_tenders:
        return OrderLifecycle.PAID
    return OrderLifecycle.OPEN


def _detect_source(metadata: dict[str, Any], reference_id: str) -> OrderSource:
    if metadata.get(ONLINE_SOURCE_KEY) == ONLINE_SOURCE_VALUE:
        return OrderSource.ONLINE
    if reference_id.startswith(ONLINE_REFERENCE_PREFIX):
        return OrderSource.ONLINE
    return OrderSource.POS_TERMINAL


def _map_line_item(item: dict[str, Any]) -> CanonicalLineItem:
    try:
        quantity = int(float(item.get("quantity", "1")))
    except (TypeError, ValueError):
        quantity = 1

    modifiers = [
        CanonicalModifier(
            external_id=mod.get("catalog_object_id") or mod.get("uid", ""),
            name=mod.get("name", ""),
            price_cents=_money_amount(mod.get("base_price_money")),
        )
        for mod in item.get("modifiers", [])
    ]

    return CanonicalLineItem(
        external_id=item.get("catalog_object_id") or item.get("uid", ""),
        name=item.get("name") or "Item",
        quantity=quantity,
        unit_price_cents=_money_amount(item.get("base_price_money")),
        total_price_cents=_money_amount(item.get("total_money")),
        modifiers=modifiers,
        note=item.get("note", ""),
    )


def _extract_customer(order: dict[str, Any]) -> tuple[str, str]:
    """Customer email and display name from the pickup recipient."""
    for fulfillment in order.get("fulfillments", [])[:1]:
        details = fulfillment.get("pickup_details") or {}
        recipient = details.get("recipient") or {}
        return recipient.get("email_address", ""), recipient.get("display_name", "")
    return "", ""


def _money_amount(money: dict[str, Any] | None) -> int:
    if not money:
        return 0
    return int(money.get("amount") or 0)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable Square timestamp: %s", value)
        return None


class _RateLimiter:
    """Simple rate limiter for API requests."""

    def __init__(self, requests_per_second: float = 10.0) -> None:
        self.min_interval = 1.0 / requests_per_second
        self.last_request: datetime | None = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request can be made within rate limits."""
        async with self._lock:
            if self.last_request:
                elapsed = (datetime.now(UTC) - self.last_request).total_seconds()
                if elapsed < self.min_interval:
                    await asyncio.sleep(self.min_interval - elapsed)
            self.last_request = datetime.now(UTC)

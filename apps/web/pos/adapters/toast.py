"""Toast POS adapter - reads orders from Toast's restaurant platform."""

import asyncio
import logging
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
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

ONLINE_REFERENCE_PREFIX = "ct_"


class RateLimiter:
    """Simple rate limiter for API requests."""

    def __init__(self, requests_per_second: float = 1.0) -> None:
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


class ToastAdapter:
    """
    Toast POS adapter implementing the POSAdapter protocol.

    The Toast restaurant GUID is the location ID and is sent on every
    request as Toast-Restaurant-External-ID. Toast prices are decimal
    dollars and are converted to cents.

    API Reference: https://doc.toasttab.com/
    """

    BASE_URL = "https://ws-api.toasttab.com"
    ORDERS_URL = f"{BASE_URL}/orders/v2/orders"
    ORDERS_BULK_URL = f"{BASE_URL}/orders/v2/ordersBulk"

    # Toast rate limit: 1 request per second per restaurant
    REQUESTS_PER_SECOND = 1.0

    # Retry configuration
    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 2.0  # Exponential backoff base

    PAGE_SIZE = 100

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        """
        Initialize the Toast adapter.

        Args:
            http_client: Optional HTTP client for dependency injection (testing).
        """
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._rate_limiters: dict[str, RateLimiter] = {}
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    def _get_rate_limiter(self, location_id: str) -> RateLimiter:
        """Get or create a rate limiter for a specific location."""
        if location_id not in self._rate_limiters:
            self._rate_limiters[location_id] = RateLimiter(self.REQUESTS_PER_SECOND)
        return self._rate_limiters[location_id]

    @property
    def provider(self) -> POSProvider:
        """The POS provider this adapter connects to."""
        return POSProvider.TOAST

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        session: POSSession,
        location_id: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """
        Make an HTTP request with rate limiting and retry logic.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Request URL
            session: Authenticated session
            location_id: Toast restaurant GUID for rate limiting
            **kwargs: Additional arguments passed to httpx

        Returns:
            HTTP response

        Raises:
            POSAPIError: If request fails after retries, or with status_code
                404 immediately when the resource does not exist.
            POSRateLimitError: If rate limit exceeded
        """
        rate_limiter = self._get_rate_limiter(location_id)
        headers = {
            "Authorization": f"Bearer {session.access_token}",
            "Toast-Restaurant-External-ID": location_id,
            **kwargs.pop("headers", {}),
        }

        last_error: Exception | None = None
        last_status: int | None = None

        for attempt in range(self.MAX_RETRIES):
            await rate_limiter.acquire()

            try:
                response = await self._client.request(
                    method, url, headers=headers, **kwargs
                )

                if response.status_code == 429:
                    retry_after = int(response.headers.get("Retry-After", "60"))
                    raise POSRateLimitError(
                        "Toast rate limit exceeded",
                        provider="toast",
                        retry_after=retry_after,
                    )

                if response.status_code == 401:
                    raise POSAuthError(
                        "Toast session expired",
                        provider="toast",
                    )

                if response.status_code == 404:
                    raise POSAPIError(
                        f"Toast resource not found: {url}",
                        provider="toast",
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
                        "Toast API failed (attempt %d/%d), retry in %.1fs: %s",
                        attempt + 1,
                        self.MAX_RETRIES,
                        backoff,
                        str(e),
                    )
                    await asyncio.sleep(backoff)

        # All retries exhausted
        raise POSAPIError(
            f"Toast API request failed after {self.MAX_RETRIES} attempts: {last_error}",
            provider="toast",
            status_code=last_status,
        )

    # =========================================================================
    # Order Operations
    # =========================================================================

    async def fetch_order(
        self, session: POSSession, location_id: str, order_id: str
    ) -> CanonicalOrder:
        try:
            response = await self._request_with_retry(
                "GET",
                f"{self.ORDERS_URL}/{order_id}",
                session,
                location_id,
            )
        except POSAPIError as e:
            if e.status_code == 404:
                raise OrderNotFoundError(
                    f"Toast order {order_id} not found",
                    provider="toast",
                    order_id=order_id,
                ) from e
            raise

        return self._to_canonical(response.json(), location_id)

    async def list_orders_updated_since(
        self,
        session: POSSession,
        location_id: str,
        since: datetime,
        until: datetime | None = None,
    ) -> list[CanonicalOrder]:
        """Page through ordersBulk for the modification window."""
        until = until or datetime.now(UTC)
        orders: list[CanonicalOrder] = []
        page = 1
        while True:
            response = await self._request_with_retry(
                "GET",
                self.ORDERS_BULK_URL,
                session,
                location_id,
                params={
                    "startDate": _format_toast_date(since),
                    "endDate": _format_toast_date(until),
                    "pageSize": self.PAGE_SIZE,
                    "page": page,
                },
            )
            batch = response.json() or []
            orders.extend(self._to_canonical(raw, location_id) for raw in batch)
            if len(batch) < self.PAGE_SIZE:
                break
            page += 1

        logger.info(
            "Toast listed %d orders for restaurant %s since %s",
            len(orders),
            location_id,
            since.isoformat(),
        )
        return orders

    async def create_checkout(
        self, session: POSSession, request: CheckoutRequest
    ) -> CheckoutResult:
        """Toast online ordering does not expose hosted checkout."""
        raise POSAPIError(
            "Checkout creation is not supported by the ingestion service",
            provider="toast",
        )

    # =========================================================================
    # Mapping
    # =========================================================================

    def _to_canonical(self, raw: dict[str, Any], location_id: str) -> CanonicalOrder:
        checks = raw.get("checks") or []
        check = checks[0] if checks else {}
        payments = check.get("payments") or []
        is_paid = bool(check.get("paidDate")) or any(
            p.get("paidDate") for p in payments
        )
        external_id = raw.get("externalId") or ""
        customer = check.get("customer") or {}

        line_items = [
            _map_selection(selection)
            for selection in check.get("selections", [])
            if not selection.get("voided")
        ]

        return CanonicalOrder(
            provider=POSProvider.TOAST,
            external_order_id=raw.get("guid", ""),
            location_id=location_id,
            status=_native_status(raw, is_paid),
            lifecycle=map_toast_lifecycle(
                voided=bool(raw.get("voided")),
                deleted=bool(raw.get("deleted")),
                closed=bool(raw.get("closedDate")),
                paid=is_paid,
            ),
            source=(
                OrderSource.ONLINE
                if external_id.startswith(ONLINE_REFERENCE_PREFIX)
                else OrderSource.POS_TERMINAL
            ),
            line_items=line_items,
            total_cents=dollars_to_cents(check.get("totalAmount")),
            reference_id=external_id,
            customer_email=customer.get("email", ""),
            customer_name=" ".join(
                part
                for part in (customer.get("firstName"), customer.get("lastName"))
                if part
            ),
            created_at=_parse_toast_date(raw.get("openedDate") or raw.get("createdDate")),
            updated_at=_parse_toast_date(raw.get("modifiedDate")),
        )


def map_toast_lifecycle(
    *, voided: bool, deleted: bool, closed: bool, paid: bool
) -> OrderLifecycle:
    """Map Toast order flags to the canonical lifecycle."""
    if voided or deleted:
        return OrderLifecycle.CANCELED
    if closed and paid:
        return OrderLifecycle.COMPLETED
    if paid:
        return OrderLifecycle.PAID
    return OrderLifecycle.OPEN


def _native_status(raw: dict[str, Any], is_paid: bool) -> str:
    if raw.get("voided"):
        return "VOIDED"
    if raw.get("deleted"):
        return "DELETED"
    if raw.get("closedDate"):
        return "CLOSED"
    return "PAID" if is_paid else "OPEN"


def _map_selection(selection: dict[str, Any]) -> CanonicalLineItem:
    try:
        quantity = max(1, int(selection.get("quantity") or 1))
    except (TypeError, ValueError):
        quantity = 1
    total = dollars_to_cents(selection.get("price"))
    unit = dollars_to_cents(selection.get("preDiscountPrice")) // quantity or (
        total // quantity
    )

    return CanonicalLineItem(
        external_id=(selection.get("item") or {}).get("guid", "")
        or selection.get("guid", ""),
        name=selection.get("displayName") or "Item",
        quantity=quantity,
        unit_price_cents=unit,
        total_price_cents=total,
        modifiers=[
            CanonicalModifier(
                external_id=(mod.get("item") or {}).get("guid", "") or mod.get("guid", ""),
                name=mod.get("displayName", ""),
                price_cents=dollars_to_cents(mod.get("price")),
            )
            for mod in selection.get("modifiers", [])
        ],
    )


def dollars_to_cents(value: Any) -> int:
    """Toast amounts are decimal dollars (e.g. 12.5)."""
    if value in (None, ""):
        return 0
    try:
        return int((Decimal(str(value)) * 100).quantize(Decimal("1")))
    except InvalidOperation:
        logger.warning("Unparseable Toast amount: %s", value)
        return 0


def _format_toast_date(value: datetime) -> str:
    """Toast expects yyyy-MM-ddTHH:mm:ss.SSS+0000."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.000+0000")


def _parse_toast_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable Toast timestamp: %s", value)
        return None

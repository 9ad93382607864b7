"""Clover POS adapter - reads orders from Clover's merchant platform."""

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

# Order states and payment results that mean the order is gone
DEAD_ORDER_STATES = frozenset({"voided", "deleted"})
DEAD_PAYMENT_RESULTS = frozenset({"VOIDED", "VOIDING"})
SUCCESS_PAYMENT_RESULT = "SUCCESS"

ONLINE_REFERENCE_PREFIX = "ct_"

# Clover unitQty is in thousandths
UNIT_QTY_SCALE = 1000


class CloverAdapter:
    """
    Clover POS adapter implementing the POSAdapter protocol.

    The Clover merchant ID plays the role of the location ID. Timestamps
    are epoch milliseconds; money is in cents.

    Note: Clover uses OAuth 2.0 with merchant authorization flow.
    Unlike Toast, Clover tokens don't expire.

    API Reference: https://docs.clover.com/reference
    """

    SANDBOX_BASE_URL = "https://sandbox.dev.clover.com"
    PROD_BASE_URL = "https://api.clover.com"

    # Clover rate limits vary by endpoint, but generally more lenient than Toast
    REQUESTS_PER_SECOND = 10.0

    # Retry configuration
    MAX_RETRIES = 3
    RETRY_BACKOFF_BASE = 2.0

    PAGE_SIZE = 100
    ORDER_EXPAND = "lineItems,lineItems.modifications,payments,customers"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        sandbox: bool = False,
    ) -> None:
        """
        Initialize the Clover adapter.

        Args:
            http_client: Optional HTTP client for dependency injection (testing).
            sandbox: If True, use Clover sandbox environment.
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
        return POSProvider.CLOVER

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

        Raises:
            POSAPIError: If request fails after retries, or with status_code
                404 immediately when the resource does not exist.
            POSRateLimitError: If rate limit exceeded
        """
        headers = {
            "Authorization": f"Bearer {session.access_token}",
            "Accept": "application/json",
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
                        "Clover rate limit exceeded",
                        provider="clover",
                        retry_after=retry_after,
                    )

                if response.status_code == 401:
                    raise POSAuthError(
                        "Clover session expired or invalid",
                        provider="clover",
                    )

                if response.status_code == 404:
                    raise POSAPIError(
                        f"Clover resource not found: {url}",
                        provider="clover",
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
                        "Clover API failed (attempt %d/%d), retry in %.1fs: %s",
                        attempt + 1,
                        self.MAX_RETRIES,
                        backoff,
                        str(e),
                    )
                    await asyncio.sleep(backoff)

        raise POSAPIError(
            f"Clover API request failed after {self.MAX_RETRIES} attempts: "
            f"{last_error}",
            provider="clover",
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
                f"{self._base_url}/v3/merchants/{location_id}/orders/{order_id}",
                session,
                params={"expand": self.ORDER_EXPAND},
            )
        except POSAPIError as e:
            if e.status_code == 404:
                raise OrderNotFoundError(
                    f"Clover order {order_id} not found",
                    provider="clover",
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
        """List orders by modifiedTime, paging with offset."""
        until = until or datetime.now(UTC)
        since_ms = int(since.timestamp() * 1000)
        until_ms = int(until.timestamp() * 1000)

        orders: list[CanonicalOrder] = []
        offset = 0
        while True:
            response = await self._request_with_retry(
                "GET",
                f"{self._base_url}/v3/merchants/{location_id}/orders",
                session,
                params=[
                    ("filter", f"modifiedTime>={since_ms}"),
                    ("filter", f"modifiedTime<={until_ms}"),
                    ("expand", self.ORDER_EXPAND),
                    ("orderBy", "modifiedTime DESC"),
                    ("limit", str(self.PAGE_SIZE)),
                    ("offset", str(offset)),
                ],
            )
            elements = response.json().get("elements", [])
            orders.extend(self._to_canonical(raw, location_id) for raw in elements)
            if len(elements) < self.PAGE_SIZE:
                break
            offset += self.PAGE_SIZE

        logger.info(
            "Clover listed %d orders for merchant %s since %s",
            len(orders),
            location_id,
            since.isoformat(),
        )
        return orders

    async def create_checkout(
        self, session: POSSession, request: CheckoutRequest
    ) -> CheckoutResult:
        """Hosted checkout sessions are created by the storefront."""
        raise POSAPIError(
            "Checkout creation is not supported by the ingestion service",
            provider="clover",
        )

    # =========================================================================
    # Mapping
    # =========================================================================

    def _to_canonical(self, raw: dict[str, Any], location_id: str) -> CanonicalOrder:
        payments = _elements(raw.get("payments"))
        state = raw.get("state") or ""
        reference_id = raw.get("externalReferenceId") or ""
        email, name = _extract_customer(raw)

        return CanonicalOrder(
            provider=POSProvider.CLOVER,
            external_order_id=raw.get("id", ""),
            location_id=location_id,
            status=state,
            lifecycle=map_clover_lifecycle(state, payments),
            source=(
                OrderSource.ONLINE
                if reference_id.startswith(ONLINE_REFERENCE_PREFIX)
                else OrderSource.POS_TERMINAL
            ),
            line_items=[_map_line_item(item) for item in _elements(raw.get("lineItems"))],
            total_cents=int(raw.get("total") or 0),
            currency=raw.get("currency") or "USD",
            reference_id=reference_id,
            metadata={"note": raw["note"]} if raw.get("note") else {},
            customer_email=email,
            customer_name=name,
            created_at=_from_epoch_ms(raw.get("createdTime")),
            updated_at=_from_epoch_ms(raw.get("modifiedTime")),
        )


def is_dead_order(state: str, payments: list[dict[str, Any]]) -> bool:
    """Voided or deleted orders, or any voided payment, mean the order is gone."""
    if (state or "").lower() in DEAD_ORDER_STATES:
        return True
    return any(p.get("result") in DEAD_PAYMENT_RESULTS for p in payments)


def map_clover_lifecycle(
    state: str, payments: list[dict[str, Any]]
) -> OrderLifecycle:
    """
    Map a Clover order to the canonical lifecycle.

    Clover has no fulfillment state, so a paid order stays PAID until the
    kitchen completes its ticket.
    """
    if is_dead_order(state, payments):
        return OrderLifecycle.CANCELED
    if any(p.get("result") == SUCCESS_PAYMENT_RESULT for p in payments):
        return OrderLifecycle.PAID
    return OrderLifecycle.OPEN


def _elements(container: Any) -> list[dict[str, Any]]:
    """Clover wraps expanded collections as {"elements": [...]}."""
    if isinstance(container, dict):
        return list(container.get("elements", []))
    if isinstance(container, list):
        return container
    return []


def _map_line_item(item: dict[str, Any]) -> CanonicalLineItem:
    unit_qty = item.get("unitQty") or UNIT_QTY_SCALE
    quantity = max(1, round(unit_qty / UNIT_QTY_SCALE))
    price = int(item.get("price") or 0)

    modifiers = [
        CanonicalModifier(
            external_id=(mod.get("modifier") or {}).get("id", "") or mod.get("id", ""),
            name=mod.get("name", ""),
            price_cents=int(mod.get("amount") or 0),
        )
        for mod in _elements(item.get("modifications"))
    ]

    return CanonicalLineItem(
        external_id=(item.get("item") or {}).get("id", "") or item.get("id", ""),
        name=item.get("name") or "Item",
        quantity=quantity,
        unit_price_cents=price,
        total_price_cents=price * quantity
        + sum(m.price_cents for m in modifiers) * quantity,
        modifiers=modifiers,
        note=item.get("note") or "",
    )


def _extract_customer(raw: dict[str, Any]) -> tuple[str, str]:
    for customer in _elements(raw.get("customers"))[:1]:
        emails = _elements(customer.get("emailAddresses"))
        email = emails[0].get("emailAddress", "") if emails else ""
        name = " ".join(
            part
            for part in (customer.get("firstName"), customer.get("lastName"))
            if part
        )
        return email, name
    return "", ""


def _from_epoch_ms(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000, tz=UTC)


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

"""POS integration and ingestion exceptions.

Every exception a worker can record against a job derives from POSError,
which knows how to summarize itself for ``WebhookJob.last_error`` and
whether the provider asked for a specific retry delay.
"""


class POSError(Exception):
    """Base exception for POS integration errors."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.message = message
        self.provider = provider
        super().__init__(message)

    @property
    def backoff_seconds(self) -> int | None:
        """Delay requested by the provider, or None for the queue default."""
        return None

    def describe(self) -> str:
        return f"{type(self).__name__}: {self.message}"


class POSAuthError(POSError):
    """No usable credentials for the location, or the provider rejected them."""


class POSAPIError(POSError):
    """Provider request failed after retries."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message, provider)
        self.status_code = status_code
        self.response_body = response_body


class POSRateLimitError(POSAPIError):
    """Provider answered 429; retry_after comes from its Retry-After header."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message, provider, status_code=429)
        self.retry_after = retry_after

    @property
    def backoff_seconds(self) -> int | None:
        return self.retry_after


class POSWebhookError(POSError):
    """Webhook payload could not be normalized."""


class POSOrderError(POSError):
    """An order could not be fetched or applied."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        order_id: str | None = None,
    ) -> None:
        super().__init__(message, provider)
        self.order_id = order_id


class OrderNotFoundError(POSOrderError):
    """The POS provider has no order with the requested ID."""

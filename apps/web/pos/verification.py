"""
Webhook signature verification.

Each provider signs the raw request body with HMAC-SHA256:
- Square: base64(HMAC(key, notification_url + body))
- Clover: header "t=<ts>,v1=<hex>", hex(HMAC(key, "<ts>.<body>"))
- Toast (and the mock provider): base64(HMAC(key, body))

Repeated failures from the same caller are counted in a sliding window
and raise one alert per window.
"""

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from django.conf import settings
from django.core.cache import cache as default_cache

from passline_schemas import POSProvider

logger = logging.getLogger(__name__)

# Header carrying the signature, per provider (lowercase)
SIGNATURE_HEADERS: dict[str, tuple[str, ...]] = {
    POSProvider.SQUARE.value: ("x-square-hmacsha256-signature",),
    POSProvider.CLOVER.value: ("clover-signature", "x-clover-signature"),
    POSProvider.TOAST.value: ("toast-signature",),
    POSProvider.MOCK.value: ("x-passline-signature",),
}

ALERT_THRESHOLD = 5
ALERT_WINDOW_SECONDS = 60 * 60
FAILURE_KEY_PREFIX = "webhook-sigfail"
ALERT_KEY_PREFIX = "webhook-sigfail-alert"


def _hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode(), message, hashlib.sha256).digest()


def verify_square_signature(
    raw_body: bytes, signature: str, secret: str, notification_url: str
) -> bool:
    """Square signs the notification URL followed by the body."""
    expected = base64.b64encode(
        _hmac_sha256(secret, notification_url.encode() + raw_body)
    ).decode()
    return hmac.compare_digest(signature.strip(), expected)


def parse_clover_signature_header(header_value: str) -> tuple[str, str]:
    """Split "t=<ts>,v1=<hex>" into (ts, hex). Missing parts come back empty."""
    parts: dict[str, str] = {}
    for chunk in header_value.split(","):
        key, sep, value = chunk.strip().partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts.get("t", ""), parts.get("v1", "")


def verify_clover_signature(raw_body: bytes, header_value: str, secret: str) -> bool:
    timestamp, provided = parse_clover_signature_header(header_value)
    if not timestamp or not provided:
        return False
    expected = hmac.new(
        secret.encode(),
        timestamp.encode() + b"." + raw_body,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(provided.lower(), expected)


def verify_body_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Generic signature: base64 HMAC over the body only (Toast)."""
    expected = base64.b64encode(_hmac_sha256(secret, raw_body)).decode()
    return hmac.compare_digest(signature.strip(), expected)


def verify(
    provider: str,
    raw_body: bytes,
    header_value: str,
    secret: str,
    *,
    notification_url: str | None = None,
    is_production: bool | None = None,
) -> bool:
    """
    Verify a webhook signature for a provider.

    Args:
        provider: POS provider value.
        raw_body: Exact request body bytes.
        header_value: Value of the provider's signature header.
        secret: Signing secret; empty means not configured.
        notification_url: Square only - the URL Square posted to.
        is_production: Overrides settings.IS_PRODUCTION.

    Returns:
        True if the signature is valid, or if no secret is configured
        outside production. False otherwise.
    """
    if is_production is None:
        is_production = getattr(settings, "IS_PRODUCTION", False)

    if not secret:
        if is_production:
            logger.error(
                "No webhook secret configured for %s in production - rejecting",
                provider,
            )
            return False
        logger.warning(
            "No webhook secret configured for %s - skipping verification",
            provider,
        )
        return True

    if not header_value:
        return False

    if provider == POSProvider.SQUARE.value:
        return verify_square_signature(
            raw_body, header_value, secret, notification_url or ""
        )
    if provider == POSProvider.CLOVER.value:
        return verify_clover_signature(raw_body, header_value, secret)
    return verify_body_signature(raw_body, header_value, secret)


def get_signature_header(provider: str, headers: Mapping[str, str]) -> str:
    """Find the provider's signature header in a case-insensitive way."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in SIGNATURE_HEADERS.get(provider, ()):
        value = lowered.get(name, "")
        if value:
            return value
    return ""


def get_webhook_secret(provider: str, channel: str = "") -> str:
    """Get the webhook secret for a provider from settings."""
    if provider == POSProvider.CLOVER.value and channel == "hco":
        return getattr(settings, "CLOVER_HCO_WEBHOOK_SECRET", "")

    secret_map = {
        POSProvider.SQUARE.value: getattr(settings, "SQUARE_WEBHOOK_SIGNATURE_KEY", ""),
        POSProvider.CLOVER.value: getattr(settings, "CLOVER_WEBHOOK_SECRET", ""),
        POSProvider.TOAST.value: getattr(settings, "TOAST_WEBHOOK_SECRET", ""),
        POSProvider.MOCK.value: getattr(settings, "MOCK_WEBHOOK_SECRET", ""),
    }
    return secret_map.get(provider, "")


class ValidationFailureTracker:
    """
    Counts signature failures per key in a sliding window.

    When a key reaches the threshold an alert fires, at most once per
    window per key. Timestamps live in the Django cache (or the injected
    cache), so counts are shared between workers on a shared backend.
    """

    def __init__(
        self,
        threshold: int = ALERT_THRESHOLD,
        window_seconds: int = ALERT_WINDOW_SECONDS,
        cache: Any = None,
        clock: Callable[[], float] = time.time,
        on_alert: Callable[[str, int], None] | None = None,
    ) -> None:
        self.threshold = threshold
        self.window_seconds = window_seconds
        self._cache = cache
        self._clock = clock
        self._on_alert = on_alert

    @property
    def cache(self) -> Any:
        return self._cache or default_cache

    def _recent(self, key: str, now: float) -> list[float]:
        stored = self.cache.get(f"{FAILURE_KEY_PREFIX}:{key}") or []
        return [ts for ts in stored if now - ts <= self.window_seconds]

    def record_failure(self, key: str) -> bool:
        """
        Record one failure for key.

        Returns:
            True if this failure raised an alert.
        """
        now = self._clock()
        failures = self._recent(key, now)
        failures.append(now)
        self.cache.set(
            f"{FAILURE_KEY_PREFIX}:{key}", failures, timeout=self.window_seconds
        )

        count = len(failures)
        if count < self.threshold:
            return False

        alert_key = f"{ALERT_KEY_PREFIX}:{key}"
        last_alert = self.cache.get(alert_key)
        if last_alert is not None and now - last_alert < self.window_seconds:
            return False

        self.cache.set(alert_key, now, timeout=self.window_seconds)
        logger.error(
            "Repeated webhook signature failures for %s: %d in %ds (threshold %d)",
            key,
            count,
            self.window_seconds,
            self.threshold,
        )
        if self._on_alert is not None:
            self._on_alert(key, count)
        return True

    def failure_count(self, key: str) -> int:
        return len(self._recent(key, self._clock()))


failure_tracker = ValidationFailureTracker()

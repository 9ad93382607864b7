"""
Decorators for request handling and validation.
"""

import json
import logging
import secrets
import time
from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from django.conf import settings
from django.core.cache import cache as default_cache
from django.http import HttpRequest, JsonResponse

from .middleware import get_client_ip

logger = logging.getLogger(__name__)


def _extract_secret(request: HttpRequest) -> str:
    """Pull a shared secret from the header, query string, or JSON body."""
    for header in ("Authorization", "X-Cron-Authorization"):
        value = request.headers.get(header, "")
        if value:
            return value.removeprefix("Bearer ").strip()

    query_secret = request.GET.get("secret", "")
    if query_secret:
        return query_secret

    if request.method == "POST" and request.body:
        try:
            body = json.loads(request.body)
        except (ValueError, UnicodeDecodeError):
            return ""
        if isinstance(body, dict):
            return str(body.get("secret", "") or "")

    return ""


def shared_secret_required(
    *setting_names: str,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator that requires a bearer secret matching one of the named settings.

    The first non-empty setting wins. Without any configured secret the view
    is refused in production and allowed (with a warning) elsewhere.

    Usage:
        @shared_secret_required("CRON_SECRET")
        def process_webhooks(request):
            ...
    """
    names = setting_names or ("CRON_SECRET",)

    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(request: HttpRequest, *args: Any, **kwargs: Any) -> Any:
            configured = [
                s for s in (getattr(settings, name, "") for name in names) if s
            ]

            if not configured:
                if getattr(settings, "IS_PRODUCTION", False):
                    logger.error("No secret configured for %s", request.path)
                    return JsonResponse(
                        {"ok": False, "error": "Server misconfigured"},
                        status=500,
                    )
                logger.warning(
                    "No secret configured for %s - allowing (non-production)",
                    request.path,
                )
                return view_func(request, *args, **kwargs)

            provided = _extract_secret(request)
            if not provided or not any(
                secrets.compare_digest(provided, expected) for expected in configured
            ):
                return JsonResponse({"ok": False, "error": "Unauthorized"}, status=401)

            return view_func(request, *args, **kwargs)

        return wrapper

    return decorator


def rate_limited(
    limit: int,
    window_seconds: int = 60,
    cache: Any = None,
    clock: Callable[[], float] = time.time,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Fixed-window rate limit per client IP and path.

    Counters live in the Django cache (or the injected cache), so they are
    shared between workers when a shared backend is configured and lost on
    restart otherwise.

    Usage:
        @rate_limited(5, window_seconds=60)
        def ops_reconcile(request):
            ...
    """

    def decorator(view_func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view_func)
        def wrapper(request: HttpRequest, *args: Any, **kwargs: Any) -> Any:
            store = cache or default_cache
            now = clock()
            window_index = int(now // window_seconds)
            reset_at = (window_index + 1) * window_seconds
            client_ip = getattr(request, "client_ip", None) or get_client_ip(request)
            key = f"ratelimit:{client_ip}:{request.path}:{window_index}"

            store.add(key, 0, timeout=window_seconds)
            try:
                count = store.incr(key)
            except ValueError:
                # Expired between add() and incr()
                store.set(key, 1, timeout=window_seconds)
                count = 1

            headers = {
                "X-RateLimit-Limit": str(limit),
                "X-RateLimit-Remaining": str(max(0, limit - count)),
                "X-RateLimit-Reset": str(int(reset_at)),
            }

            if count > limit:
                retry_after = max(1, int(reset_at - now))
                logger.warning(
                    "Rate limit exceeded for %s on %s (%d/%d)",
                    client_ip,
                    request.path,
                    count,
                    limit,
                )
                response = JsonResponse(
                    {"ok": False, "error": "Too many requests"},
                    status=429,
                )
                response["Retry-After"] = str(retry_after)
            else:
                response = view_func(request, *args, **kwargs)

            for name, value in headers.items():
                response[name] = value
            return response

        return wrapper

    return decorator


def parse_csv(value: str | Iterable[str] | None) -> list[str]:
    """Normalize a comma-separated string or list into a list of values."""
    if not value:
        return []
    if isinstance(value, str):
        items: Iterable[str] = value.split(",")
    else:
        items = value
    return [str(item).strip() for item in items if str(item).strip()]

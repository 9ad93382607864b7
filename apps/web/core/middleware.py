"""
Client IP middleware - attaches the caller's address to the request.
"""

from collections.abc import Callable

from django.http import HttpRequest, HttpResponse


def get_client_ip(request: HttpRequest) -> str:
    """
    Resolve the caller's IP address.

    Checked in order:
    1. X-Forwarded-For (first hop)
    2. X-Real-IP
    3. CF-Connecting-IP
    4. REMOTE_ADDR
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()

    for header in ("X-Real-IP", "CF-Connecting-IP"):
        value = request.headers.get(header, "")
        if value:
            return value.strip()

    return request.META.get("REMOTE_ADDR", "") or "unknown"


class ClientIPMiddleware:
    """Sets request.client_ip for rate limiting and webhook failure tracking."""

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        request.client_ip = get_client_ip(request)  # type: ignore[attr-defined]
        return self.get_response(request)

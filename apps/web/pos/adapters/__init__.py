"""POS adapters - implementations for each POS provider."""

from typing import TYPE_CHECKING, Any

from django.conf import settings
from passline_schemas import POSProvider, POSSession

from apps.web.pos.adapters.base import POSAdapter
from apps.web.pos.adapters.clover import CloverAdapter
from apps.web.pos.adapters.mock import MockPOSAdapter
from apps.web.pos.adapters.square import SquareAdapter
from apps.web.pos.adapters.toast import ToastAdapter
from apps.web.pos.exceptions import POSAuthError

if TYPE_CHECKING:
    from apps.web.restaurant.models import VendorLocation


def get_adapter(provider: POSProvider | str, **kwargs: Any) -> POSAdapter:
    """
    Get a POS adapter instance for the specified provider.

    This is the main entry point for obtaining POS adapters. Use this
    factory function rather than instantiating adapters directly.

    Args:
        provider: The POS provider to get an adapter for.
        **kwargs: Additional arguments passed to the adapter constructor.
            For CloverAdapter/SquareAdapter: sandbox=True for sandbox env.
            All HTTP adapters accept http_client.

    Returns:
        An adapter instance implementing the POSAdapter protocol.

    Raises:
        ValueError: If the provider is not supported.

    Example:
        adapter = get_adapter(POSProvider.SQUARE, sandbox=True)
        order = await adapter.fetch_order(session, location_id, order_id)
    """
    try:
        provider = POSProvider(provider)
    except ValueError:
        pass

    if provider == POSProvider.MOCK:
        return MockPOSAdapter()
    elif provider == POSProvider.TOAST:
        return ToastAdapter(**kwargs)
    elif provider == POSProvider.CLOVER:
        return CloverAdapter(**kwargs)
    elif provider == POSProvider.SQUARE:
        return SquareAdapter(**kwargs)
    else:
        supported = ", ".join(p.value for p in POSProvider)
        raise ValueError(
            f"Unsupported POS provider: {provider}. Supported: {supported}"
        )


def adapter_from_settings(provider: POSProvider | str) -> POSAdapter:
    """Adapter configured for the current environment (sandbox flags)."""
    if provider == POSProvider.SQUARE:
        return get_adapter(provider, sandbox=getattr(settings, "SQUARE_SANDBOX", False))
    if provider == POSProvider.CLOVER:
        return get_adapter(provider, sandbox=getattr(settings, "CLOVER_SANDBOX", False))
    return get_adapter(provider)


def session_for_location(location: "VendorLocation") -> POSSession:
    """
    Build an API session for a location.

    The location's own token wins; otherwise the provider-wide token from
    settings is used (single-merchant deployments).

    Raises:
        POSAuthError: If no token is available.
    """
    provider = POSProvider(location.pos_provider)
    fallback = {
        POSProvider.SQUARE: getattr(settings, "SQUARE_ACCESS_TOKEN", ""),
        POSProvider.CLOVER: getattr(settings, "CLOVER_ACCESS_TOKEN", ""),
        POSProvider.TOAST: getattr(settings, "TOAST_ACCESS_TOKEN", ""),
        POSProvider.MOCK: "mock-token",
    }
    token = location.access_token or fallback.get(provider, "")
    if not token:
        raise POSAuthError(
            f"No access token for {provider.value} location "
            f"{location.external_location_id}",
            provider=provider.value,
        )
    return POSSession(provider=provider, access_token=token)


__all__ = [
    "CloverAdapter",
    "MockPOSAdapter",
    "POSAdapter",
    "SquareAdapter",
    "ToastAdapter",
    "adapter_from_settings",
    "get_adapter",
    "session_for_location",
]

"""Provider adapters for Daily Ritual fitness integrations.

Each adapter implements the ProviderAdapter ABC and handles:
- OAuth authorization URL, code exchange and token refresh
- Fetching workouts (and recovery, where the provider has it)
- Mapping provider activity codes onto the internal taxonomy
- Decoding and verifying provider webhook events

Available adapters:
    WhoopAdapter  — Whoop API v2 (OAuth2), recovery + workouts
    StravaAdapter — Strava API v3 (OAuth2), activities
"""

from __future__ import annotations

import httpx

from src.config import Settings
from src.integrations.activity_map import ActivityTypeMap
from src.integrations.adapters.strava import StravaAdapter
from src.integrations.adapters.whoop import WhoopAdapter
from src.integrations.base import ProviderAdapter
from src.integrations.errors import UnknownProvider

__all__ = [
    "WhoopAdapter",
    "StravaAdapter",
    "ADAPTER_REGISTRY",
    "build_adapters",
    "get_adapter_class",
]

# Registry: provider slug → adapter class
ADAPTER_REGISTRY: dict[str, type[ProviderAdapter]] = {
    "whoop": WhoopAdapter,
    "strava": StravaAdapter,
}


def get_adapter_class(provider: str) -> type[ProviderAdapter]:
    """Return the adapter class for a provider slug.

    Raises:
        UnknownProvider: If the slug is not registered.
    """
    if provider not in ADAPTER_REGISTRY:
        raise UnknownProvider(provider, list(ADAPTER_REGISTRY))
    return ADAPTER_REGISTRY[provider]


def build_adapters(
    settings: Settings,
    http_client: httpx.AsyncClient | None = None,
    activity_map: ActivityTypeMap | None = None,
) -> dict[str, ProviderAdapter]:
    """Construct one adapter instance per enabled provider.

    Raises:
        UnknownProvider: ``settings.enabled_providers`` names an unregistered slug.
    """
    adapters: dict[str, ProviderAdapter] = {}
    for provider in settings.enabled_providers:
        adapter_cls = get_adapter_class(provider)
        client_id, client_secret = settings.provider_credentials(provider)
        adapters[provider] = adapter_cls(
            client_id=client_id,
            client_secret=client_secret,
            http_client=http_client,
            timeout=settings.provider_timeout_seconds,
            activity_map=activity_map,
        )
    return adapters

"""Wires the integration engine together.

One ``IntegrationRuntime`` is built per application (in the lifespan hook)
and stored on ``app.state.runtime``; tests build their own with fake
adapters and the in-memory store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import httpx

from src.config import Settings
from src.integrations.adapters import build_adapters
from src.integrations.base import ProviderAdapter
from src.integrations.connections import ConnectionService
from src.integrations.gateway import WebhookGateway
from src.integrations.importer import WorkoutImporter
from src.integrations.oauth_state import OAuthStateSigner
from src.integrations.store.base import IntegrationStore
from src.integrations.sync import SyncOrchestrator
from src.integrations.tokens import TokenManager
from src.models.base import utc_now


@dataclass
class IntegrationRuntime:
    settings: Settings
    store: IntegrationStore
    adapters: dict[str, ProviderAdapter]
    tokens: TokenManager
    importer: WorkoutImporter
    sync: SyncOrchestrator
    gateway: WebhookGateway
    connections: ConnectionService


def build_runtime(
    settings: Settings,
    store: IntegrationStore,
    http_client: httpx.AsyncClient | None = None,
    adapters: dict[str, ProviderAdapter] | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> IntegrationRuntime:
    """Assemble every engine component around one store and adapter set."""
    adapters = adapters if adapters is not None else build_adapters(settings, http_client)

    tokens = TokenManager(store, adapters, clock=clock)
    importer = WorkoutImporter(
        store, display_names={p: a.DISPLAY_NAME for p, a in adapters.items()}
    )
    sync = SyncOrchestrator(
        store,
        adapters,
        tokens,
        importer,
        default_days=settings.default_sync_days,
        clock=clock,
    )
    gateway = WebhookGateway(
        store,
        adapters,
        tokens,
        importer,
        secrets={p: settings.webhook_secret(p) for p in adapters},
        ack_timeout=settings.webhook_ack_timeout_seconds,
        require_signature=settings.webhook_require_signature,
        clock=clock,
    )
    connections = ConnectionService(
        store,
        adapters,
        tokens,
        OAuthStateSigner(
            settings.oauth_state_secret, settings.oauth_state_ttl_seconds, clock=clock
        ),
        redirect_uri=settings.redirect_uri,
        deep_link_scheme=settings.mobile_deep_link_scheme,
        clock=clock,
    )
    return IntegrationRuntime(
        settings=settings,
        store=store,
        adapters=adapters,
        tokens=tokens,
        importer=importer,
        sync=sync,
        gateway=gateway,
        connections=connections,
    )

"""Connecting, listing and disconnecting provider integrations."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable
from urllib.parse import urlencode
from uuid import UUID

from src.integrations.base import ProviderAdapter
from src.integrations.errors import NotConnected, UnknownProvider
from src.integrations.oauth_state import OAuthStateSigner
from src.integrations.records import IntegrationRecord
from src.integrations.store.base import IntegrationStore
from src.integrations.tokens import TokenManager
from src.models.base import utc_now
from src.models.integrations import (
    AuthUrlResponse,
    IntegrationStatus,
    RecoverySummary,
    RecoveryZone,
)

logger = logging.getLogger("ritual.integrations.connections")


def recovery_zone(score: int | None) -> RecoveryZone | None:
    """Whoop-style zones: green ≥ 67, yellow ≥ 34, red below."""
    if score is None:
        return None
    if score >= 67:
        return "green"
    if score >= 34:
        return "yellow"
    return "red"


class ConnectionService:
    """OAuth connect / disconnect and per-user integration views."""

    def __init__(
        self,
        store: IntegrationStore,
        adapters: dict[str, ProviderAdapter],
        tokens: TokenManager,
        state_signer: OAuthStateSigner,
        redirect_uri: Callable[[str], str],
        deep_link_scheme: str = "dailyritual",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._adapters = adapters
        self._tokens = tokens
        self._state = state_signer
        self._redirect_uri = redirect_uri
        self._scheme = deep_link_scheme
        self._clock = clock

    def adapter(self, provider: str) -> ProviderAdapter:
        try:
            return self._adapters[provider]
        except KeyError:
            raise UnknownProvider(provider, list(self._adapters)) from None

    async def list_integrations(self, user_id: UUID) -> list[IntegrationStatus]:
        """One entry per supported provider, connected or not."""
        records = {r.provider: r for r in await self._store.list_integrations(user_id)}
        statuses = []
        for provider, adapter in self._adapters.items():
            record = records.get(provider)
            statuses.append(
                IntegrationStatus(
                    provider=provider,
                    display_name=adapter.DISPLAY_NAME,
                    connected=record is not None,
                    connected_at=record.connected_at if record else None,
                    last_sync_at=record.last_sync_at if record else None,
                    external_user_id=record.external_user_id if record else None,
                )
            )
        return statuses

    def authorization_url(self, user_id: UUID, provider: str) -> AuthUrlResponse:
        adapter = self.adapter(provider)
        state = self._state.create(user_id, provider)
        url = adapter.authorization_url(self._redirect_uri(provider), state)
        return AuthUrlResponse(auth_url=url, state=state)

    async def complete_authorization(
        self, provider: str, code: str, state: str
    ) -> IntegrationRecord:
        """Finish the browser redirect flow.

        Raises:
            InvalidOAuthState: ``state`` was forged, expired or for another provider.
        """
        self.adapter(provider)
        user_id = self._state.verify(state, provider)
        return await self.connect_with_code(user_id, provider, code)

    async def connect_with_code(
        self,
        user_id: UUID,
        provider: str,
        code: str,
        redirect_uri: str | None = None,
    ) -> IntegrationRecord:
        """Exchange ``code`` and store the resulting IntegrationRecord."""
        adapter = self.adapter(provider)
        tokens = await adapter.exchange_code(code, redirect_uri or self._redirect_uri(provider))
        external_user_id = await adapter.fetch_profile(tokens.access_token)

        now = self._clock()
        record = await self._store.upsert_integration(
            IntegrationRecord(
                user_id=user_id,
                provider=provider,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=tokens.expires_at(now),
                external_user_id=external_user_id,
                connected_at=now,
            )
        )
        logger.info(
            "Connected %s for user %s (external id %s)", provider, user_id, external_user_id
        )
        return record

    async def disconnect(self, user_id: UUID, provider: str) -> None:
        self.adapter(provider)
        if not await self._store.delete_integration(user_id, provider):
            raise NotConnected(provider)
        logger.info("Disconnected %s for user %s", provider, user_id)

    async def recovery_summary(
        self, user_id: UUID, provider: str, day: date | None = None
    ) -> RecoverySummary:
        adapter = self.adapter(provider)
        record = await self._store.get_integration(user_id, provider)
        if record is None:
            raise NotConnected(provider)

        day = day or self._clock().date()
        access_token = await self._tokens.with_valid_token(record)
        snapshot = await adapter.fetch_recovery(access_token, day)
        if snapshot is None:
            return RecoverySummary(provider=provider, date=day)
        return RecoverySummary(
            provider=provider,
            date=day,
            recovery_score=snapshot.recovery_score,
            recovery_zone=recovery_zone(snapshot.recovery_score),
            sleep_performance=snapshot.sleep_performance,
            hrv=snapshot.hrv,
            resting_hr=snapshot.resting_hr,
            strain_score=snapshot.strain_score,
        )

    def deep_link(self, provider: str, success: bool, error: str | None = None) -> str:
        """Mobile deep link the OAuth callback redirects to."""
        params = {"success": "true" if success else "false"}
        if error:
            params["error"] = error
        return f"{self._scheme}://{provider}/connected?{urlencode(params)}"

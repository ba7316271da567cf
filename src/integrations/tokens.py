"""Lazy OAuth token refresh.

Tokens are refreshed just-in-time by whichever caller first notices the
stored access token has expired.  Concurrent callers may both refresh; the
store keeps whichever pair was written last, and providers accept either.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from src.integrations.base import ProviderAdapter
from src.integrations.errors import (
    AuthExpired,
    ProviderRequestFailed,
    ProviderUnavailable,
    UnknownProvider,
)
from src.integrations.records import IntegrationRecord
from src.integrations.store.base import IntegrationStore
from src.models.base import utc_now

logger = logging.getLogger("ritual.integrations.tokens")


class TokenManager:
    """Hands out a usable access token for an IntegrationRecord."""

    def __init__(
        self,
        store: IntegrationStore,
        adapters: dict[str, ProviderAdapter],
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._adapters = adapters
        self._clock = clock

    def is_expired(self, record: IntegrationRecord) -> bool:
        return record.token_expires_at is None or record.token_expires_at <= self._clock()

    async def with_valid_token(self, record: IntegrationRecord) -> str:
        """Return an access token, refreshing and persisting first if expired.

        ``record`` is updated in place with the new token pair.

        Raises:
            AuthExpired: The provider refused the refresh token (or none is
                stored).  The record is left in place so the user can be
                prompted to reconnect.
            ProviderUnavailable: The refresh call timed out or hit a 5xx.
            ProviderRequestFailed: The refresh answer could not be decoded.
        """
        if not self.is_expired(record):
            return record.access_token

        adapter = self._adapters.get(record.provider)
        if adapter is None:
            raise UnknownProvider(record.provider, list(self._adapters))
        if not record.refresh_token:
            raise AuthExpired(record.provider, "no refresh token stored")

        logger.info(
            "Refreshing %s token for user %s (expired at %s)",
            record.provider,
            record.user_id,
            record.token_expires_at,
        )
        try:
            tokens = await adapter.refresh(record.refresh_token)
        except ProviderUnavailable:
            raise
        except ProviderRequestFailed as exc:
            # A malformed 2xx is not a refusal of the refresh token.
            if exc.status_code is None or not 400 <= exc.status_code < 500:
                raise
            logger.warning(
                "%s refused token refresh for user %s: status %s",
                record.provider,
                record.user_id,
                exc.status_code,
            )
            raise AuthExpired(record.provider, str(exc)) from exc

        expires_at = tokens.expires_at(self._clock())
        refresh_token = tokens.refresh_token or record.refresh_token
        await self._store.update_tokens(
            record.user_id, record.provider, tokens.access_token, refresh_token, expires_at
        )

        record.access_token = tokens.access_token
        record.refresh_token = refresh_token
        record.token_expires_at = expires_at
        return tokens.access_token

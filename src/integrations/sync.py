"""User-triggered (pull) workout sync."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable
from uuid import UUID

from src.integrations.base import ProviderAdapter
from src.integrations.errors import (
    InvalidSyncRange,
    NotConnected,
    SequenceConflict,
    UnknownProvider,
)
from src.integrations.importer import WorkoutImporter
from src.integrations.store.base import IntegrationStore
from src.integrations.tokens import TokenManager
from src.models.base import utc_now

logger = logging.getLogger("ritual.integrations.sync")


@dataclass
class SyncSummary:
    """Result of one manual sync.

    Attributes:
        provider:          Provider slug.
        start_date:        First day of the window (inclusive).
        end_date:          Last day of the window (inclusive).
        found:             Workouts the provider returned.
        imported:          Workouts newly imported by this call.
        already_imported:  Workouts that were already present.
        imported_ids:      ReflectionEntry ids created by this call.
        errors:            Per-workout failures that did not abort the sync.
    """

    provider: str
    start_date: date
    end_date: date
    found: int = 0
    imported: int = 0
    already_imported: int = 0
    imported_ids: list[UUID] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class SyncOrchestrator:
    """Fetches a date range from a provider and runs each workout through the importer."""

    def __init__(
        self,
        store: IntegrationStore,
        adapters: dict[str, ProviderAdapter],
        tokens: TokenManager,
        importer: WorkoutImporter,
        default_days: int = 7,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._adapters = adapters
        self._tokens = tokens
        self._importer = importer
        self._default_days = default_days
        self._clock = clock

    async def sync_range(
        self,
        user_id: UUID,
        provider: str,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> SyncSummary:
        """Import every workout in [start_date, end_date].

        Missing bounds fall back to the trailing ``default_days`` window.

        Raises:
            UnknownProvider:       No adapter for ``provider``.
            InvalidSyncRange:      start_date is after end_date.
            NotConnected:          The user has no record for ``provider``.
            AuthExpired:           Token refresh was refused.
            ProviderRequestFailed: Fetching the workout list failed.
        """
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise UnknownProvider(provider, list(self._adapters))

        end_date = end_date or self._clock().date()
        start_date = start_date or end_date - timedelta(days=self._default_days)
        if start_date > end_date:
            raise InvalidSyncRange(
                f"start_date {start_date} is after end_date {end_date}"
            )

        record = await self._store.get_integration(user_id, provider)
        if record is None:
            raise NotConnected(provider)

        access_token = await self._tokens.with_valid_token(record)
        workouts = await adapter.fetch_workouts(access_token, start_date, end_date)

        summary = SyncSummary(provider, start_date, end_date, found=len(workouts))
        for workout in workouts:
            try:
                result = await self._importer.import_workout(user_id, workout)
            except SequenceConflict as exc:
                logger.error("Sync %s/%s: %s", provider, workout.external_id, exc)
                summary.errors.append(f"{workout.external_id}: {exc}")
                continue
            if result.imported:
                summary.imported += 1
                summary.imported_ids.append(result.reflection_id)
            else:
                summary.already_imported += 1

        await self._store.mark_synced(user_id, provider, self._clock())
        logger.info(
            "Synced %s for user %s (%s..%s): found=%d imported=%d already=%d errors=%d",
            provider,
            user_id,
            start_date,
            end_date,
            summary.found,
            summary.imported,
            summary.already_imported,
            len(summary.errors),
        )
        return summary

"""In-process IntegrationStore.

Enforces the same uniqueness rules as the Postgres schema.  Each write
checks and inserts without yielding to the event loop, so concurrent
tasks observe the constraint exactly as they would against the database.
Not shared across processes; use only for local runs and tests.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime
from uuid import UUID

from src.integrations.base import RecoverySnapshot
from src.integrations.errors import DuplicateKey
from src.integrations.records import IntegrationRecord, ReflectionEntry, ScheduleEntry
from src.integrations.store.base import IntegrationStore
from src.models.base import utc_now

logger = logging.getLogger("ritual.integrations.store.memory")


class InMemoryStore(IntegrationStore):
    """Dict-backed store used when ``store_backend=memory``."""

    def __init__(self) -> None:
        self.integrations: dict[tuple[UUID, str], IntegrationRecord] = {}
        self.schedule: list[ScheduleEntry] = []
        self.reflections: list[ReflectionEntry] = []

    # ------------------------------------------------------------------
    # Integration records
    # ------------------------------------------------------------------

    async def get_integration(self, user_id: UUID, provider: str) -> IntegrationRecord | None:
        record = self.integrations.get((user_id, provider))
        return replace(record) if record else None

    async def find_integration_by_external_id(
        self, provider: str, external_user_id: str
    ) -> IntegrationRecord | None:
        for record in self.integrations.values():
            if record.provider == provider and record.external_user_id == external_user_id:
                return replace(record)
        return None

    async def list_integrations(self, user_id: UUID) -> list[IntegrationRecord]:
        return [replace(r) for (uid, _), r in self.integrations.items() if uid == user_id]

    async def upsert_integration(self, record: IntegrationRecord) -> IntegrationRecord:
        key = (record.user_id, record.provider)
        existing = self.integrations.get(key)
        stored = replace(record, id=existing.id) if existing else replace(record)
        self.integrations[key] = stored
        return replace(stored)

    async def update_tokens(
        self,
        user_id: UUID,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime,
    ) -> None:
        record = self.integrations.get((user_id, provider))
        if record is None:
            return
        record.access_token = access_token
        record.refresh_token = refresh_token
        record.token_expires_at = token_expires_at

    async def mark_synced(self, user_id: UUID, provider: str, synced_at: datetime) -> None:
        record = self.integrations.get((user_id, provider))
        if record is not None:
            record.last_sync_at = synced_at

    async def delete_integration(self, user_id: UUID, provider: str) -> bool:
        return self.integrations.pop((user_id, provider), None) is not None

    # ------------------------------------------------------------------
    # Schedule entries
    # ------------------------------------------------------------------

    async def max_schedule_sequence(self, user_id: UUID, day: date) -> int | None:
        sequences = [
            e.sequence for e in self.schedule if e.user_id == user_id and e.date == day
        ]
        return max(sequences, default=None)

    async def insert_schedule_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        for e in self.schedule:
            if e.user_id == entry.user_id and e.date == entry.date and e.sequence == entry.sequence:
                raise DuplicateKey("schedule_sequence")
        self.schedule.append(replace(entry))
        return entry

    # ------------------------------------------------------------------
    # Reflection entries
    # ------------------------------------------------------------------

    async def max_workout_sequence(self, user_id: UUID, day: date) -> int | None:
        sequences = [
            r.workout_sequence
            for r in self.reflections
            if r.user_id == user_id and r.date == day
        ]
        return max(sequences, default=None)

    async def find_reflection_by_external_id(
        self, user_id: UUID, external_activity_id: str
    ) -> ReflectionEntry | None:
        for r in self.reflections:
            if r.user_id == user_id and r.external_activity_id == external_activity_id:
                return replace(r)
        return None

    async def insert_reflection(self, entry: ReflectionEntry) -> ReflectionEntry:
        mine = [r for r in self.reflections if r.user_id == entry.user_id]
        if entry.external_activity_id is not None and any(
            r.external_activity_id == entry.external_activity_id for r in mine
        ):
            raise DuplicateKey("external_activity_id")
        if any(
            r.date == entry.date and r.workout_sequence == entry.workout_sequence
            for r in mine
        ):
            raise DuplicateKey("workout_sequence")
        self.reflections.append(replace(entry))
        return entry

    async def delete_reflection(self, reflection_id: UUID) -> None:
        self.reflections = [r for r in self.reflections if r.id != reflection_id]

    async def latest_reflection_for_date(
        self, user_id: UUID, day: date
    ) -> ReflectionEntry | None:
        candidates = [r for r in self.reflections if r.user_id == user_id and r.date == day]
        if not candidates:
            return None
        return replace(max(candidates, key=lambda r: r.created_at))

    async def update_reflection_recovery(
        self, reflection_id: UUID, snapshot: RecoverySnapshot
    ) -> ReflectionEntry | None:
        for r in self.reflections:
            if r.id == reflection_id:
                r.recovery_score = snapshot.recovery_score
                r.sleep_performance = snapshot.sleep_performance
                r.hrv = snapshot.hrv
                r.resting_hr = snapshot.resting_hr
                r.updated_at = utc_now()
                return replace(r)
        logger.debug("Reflection %s vanished before recovery update", reflection_id)
        return None

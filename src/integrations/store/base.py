"""Storage interface for integration records, schedule and reflections.

Two implementations exist: ``PostgresStore`` (production, asyncpg) and
``InMemoryStore`` (local runs and tests).  Business logic only talks to
this interface, so the importer behaves identically against both.

Uniqueness rules every implementation must enforce, raising
``DuplicateKey`` on violation:

    user_integrations:   (user_id, provider)             — upsert key
    training_plans:      (user_id, date, sequence)       — "schedule_sequence"
    workout_reflections: (user_id, date, workout_sequence) — "workout_sequence"
    workout_reflections: (user_id, external_activity_id) — "external_activity_id"
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from uuid import UUID

from src.integrations.base import RecoverySnapshot
from src.integrations.records import IntegrationRecord, ReflectionEntry, ScheduleEntry


class IntegrationStore(ABC):
    """Persistent store consumed by the integration engine."""

    # ------------------------------------------------------------------
    # Integration records
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_integration(self, user_id: UUID, provider: str) -> IntegrationRecord | None:
        """Return the record for (user_id, provider), if connected."""

    @abstractmethod
    async def find_integration_by_external_id(
        self, provider: str, external_user_id: str
    ) -> IntegrationRecord | None:
        """Resolve a provider-side user id back to our record."""

    @abstractmethod
    async def list_integrations(self, user_id: UUID) -> list[IntegrationRecord]:
        """All records for a user."""

    @abstractmethod
    async def upsert_integration(self, record: IntegrationRecord) -> IntegrationRecord:
        """Insert or replace the record keyed by (user_id, provider)."""

    @abstractmethod
    async def update_tokens(
        self,
        user_id: UUID,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime,
    ) -> None:
        """Persist a refreshed token pair."""

    @abstractmethod
    async def mark_synced(self, user_id: UUID, provider: str, synced_at: datetime) -> None:
        """Set last_sync_at."""

    @abstractmethod
    async def delete_integration(self, user_id: UUID, provider: str) -> bool:
        """Remove the record; True if one existed."""

    # ------------------------------------------------------------------
    # Schedule entries
    # ------------------------------------------------------------------

    @abstractmethod
    async def max_schedule_sequence(self, user_id: UUID, day: date) -> int | None:
        """Highest ScheduleEntry.sequence for the day, None if the day is empty."""

    @abstractmethod
    async def insert_schedule_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        """Insert; raises DuplicateKey('schedule_sequence') on collision."""

    # ------------------------------------------------------------------
    # Reflection entries
    # ------------------------------------------------------------------

    @abstractmethod
    async def max_workout_sequence(self, user_id: UUID, day: date) -> int | None:
        """Highest ReflectionEntry.workout_sequence for the day."""

    @abstractmethod
    async def find_reflection_by_external_id(
        self, user_id: UUID, external_activity_id: str
    ) -> ReflectionEntry | None:
        """Dedup lookup for an imported workout."""

    @abstractmethod
    async def insert_reflection(self, entry: ReflectionEntry) -> ReflectionEntry:
        """Insert; raises DuplicateKey('workout_sequence' | 'external_activity_id')."""

    @abstractmethod
    async def delete_reflection(self, reflection_id: UUID) -> None:
        """Remove a reflection by id (no-op if absent)."""

    @abstractmethod
    async def latest_reflection_for_date(
        self, user_id: UUID, day: date
    ) -> ReflectionEntry | None:
        """Most recently created reflection for the day."""

    @abstractmethod
    async def update_reflection_recovery(
        self, reflection_id: UUID, snapshot: RecoverySnapshot
    ) -> ReflectionEntry | None:
        """Copy recovery metrics onto a reflection."""

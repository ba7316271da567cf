"""Workout import pipeline.

Turns one ProviderWorkout into a draft ReflectionEntry plus a ScheduleEntry.

Dedup key:
    workout_reflections: (user_id, external_activity_id) — UNIQUE constraint

Sequence allocation (both namespaces, independently):
    read max → insert max+1 → on unique violation re-read and retry once →
    a second violation raises SequenceConflict.

The reflection is written first because it holds the dedup key: if two
importers race on the same workout, the loser's reflection insert fails
on ``external_activity_id`` and it reports ALREADY_IMPORTED without having
touched the schedule.  If the schedule write then fails hard, the
reflection is removed again so a later sync can retry from scratch.

Between that failed schedule write and the rollback, a concurrent importer
of the same workout still sees the reflection and reports ALREADY_IMPORTED.
That import is then missing until the next manual sync re-imports it; the
webhook path tolerates this because manual sync is what reconciles it.
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from src.integrations.base import ProviderWorkout
from src.integrations.errors import DuplicateKey, SequenceConflict
from src.integrations.records import ReflectionEntry, ScheduleEntry
from src.integrations.store.base import IntegrationStore

logger = logging.getLogger("ritual.integrations.importer")

T = TypeVar("T")

_MAX_ATTEMPTS = 2  # first try + one retry


class ImportStatus(str, enum.Enum):
    IMPORTED = "imported"
    ALREADY_IMPORTED = "already_imported"


@dataclass
class ImportResult:
    """Outcome of one import.

    Attributes:
        status:        IMPORTED or ALREADY_IMPORTED.
        external_id:   Provider workout id.
        reflection_id: New ReflectionEntry id (IMPORTED) or the existing
                       one when it could be looked up.
    """

    status: ImportStatus
    external_id: str
    reflection_id: UUID | None = None

    @property
    def imported(self) -> bool:
        return self.status is ImportStatus.IMPORTED


def duration_minutes(start: datetime, end: datetime | None) -> int | None:
    """Whole minutes between start and end, rounding halves up; None if ≤ 0."""
    if end is None:
        return None
    minutes = math.floor((end - start).total_seconds() / 60 + 0.5)
    return minutes if minutes > 0 else None


def workout_date(start: datetime) -> date:
    """Calendar date of the workout start in UTC."""
    if start.tzinfo is None:
        return start.date()
    return start.astimezone(timezone.utc).date()


class WorkoutImporter:
    """Idempotent importer shared by the webhook gateway and manual sync."""

    def __init__(
        self,
        store: IntegrationStore,
        display_names: dict[str, str] | None = None,
    ) -> None:
        self._store = store
        self._display_names = display_names or {}

    async def import_workout(self, user_id: UUID, workout: ProviderWorkout) -> ImportResult:
        """Import one provider workout.

        Raises:
            SequenceConflict: Sequence allocation collided twice in a row.
        """
        existing = await self._store.find_reflection_by_external_id(
            user_id, workout.external_id
        )
        if existing is not None:
            logger.debug(
                "%s workout %s already imported for user %s",
                workout.provider,
                workout.external_id,
                user_id,
            )
            return ImportResult(ImportStatus.ALREADY_IMPORTED, workout.external_id, existing.id)

        day = workout_date(workout.start)
        duration = duration_minutes(workout.start, workout.end)

        def build_reflection(sequence: int) -> ReflectionEntry:
            return ReflectionEntry(
                user_id=user_id,
                date=day,
                workout_sequence=sequence,
                activity_type=workout.activity_type,
                external_activity_id=workout.external_id,
                source=workout.provider,
                duration_minutes=duration,
                calories_burned=workout.calories,
                average_hr=workout.average_hr,
                max_hr=workout.max_hr,
                strain_score=workout.strain_score,
            )

        try:
            reflection = await self._allocate(
                "workout_sequence",
                day,
                lambda: self._store.max_workout_sequence(user_id, day),
                lambda seq: self._store.insert_reflection(build_reflection(seq)),
            )
        except DuplicateKey as exc:
            if exc.constraint != "external_activity_id":
                raise
            # A concurrent import of the same workout got there first.
            logger.info(
                "%s workout %s imported concurrently for user %s",
                workout.provider,
                workout.external_id,
                user_id,
            )
            return ImportResult(ImportStatus.ALREADY_IMPORTED, workout.external_id)

        start_time = workout.start.astimezone(timezone.utc).time().replace(tzinfo=None)
        note = f"Imported from {self._display_name(workout.provider)}"

        try:
            await self._allocate(
                "schedule_sequence",
                day,
                lambda: self._store.max_schedule_sequence(user_id, day),
                lambda seq: self._store.insert_schedule_entry(
                    ScheduleEntry(
                        user_id=user_id,
                        date=day,
                        sequence=seq,
                        activity_type=workout.activity_type,
                        start_time=start_time,
                        duration_minutes=duration,
                        notes=note,
                    )
                ),
            )
        except Exception:
            logger.error(
                "Schedule write failed for %s workout %s; rolling back reflection %s",
                workout.provider,
                workout.external_id,
                reflection.id,
            )
            try:
                await self._store.delete_reflection(reflection.id)
            except Exception:
                logger.exception(
                    "Could not roll back reflection %s; it stays without a schedule entry",
                    reflection.id,
                )
            raise

        logger.info(
            "Imported %s workout %s for user %s on %s (reflection seq %d)",
            workout.provider,
            workout.external_id,
            user_id,
            day,
            reflection.workout_sequence,
        )
        return ImportResult(ImportStatus.IMPORTED, workout.external_id, reflection.id)

    async def _allocate(
        self,
        namespace: str,
        day: date,
        read_max: Callable[[], Awaitable[int | None]],
        insert: Callable[[int], Awaitable[T]],
    ) -> T:
        """Insert with sequence max+1, retrying once on a collision in ``namespace``."""
        for attempt in range(1, _MAX_ATTEMPTS + 1):
            current = await read_max()
            sequence = (current or 0) + 1
            try:
                return await insert(sequence)
            except DuplicateKey as exc:
                if exc.constraint != namespace:
                    raise
                logger.info(
                    "%s %d taken on %s (attempt %d/%d)",
                    namespace,
                    sequence,
                    day,
                    attempt,
                    _MAX_ATTEMPTS,
                )
        raise SequenceConflict(namespace, day)

    def _display_name(self, provider: str) -> str:
        return self._display_names.get(provider, provider.title())

"""asyncpg-backed IntegrationStore.

Expected schema (Supabase migrations own the DDL; reproduced here for
reference)::

    CREATE TABLE user_integrations (
        id               uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id          uuid NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
        service          text NOT NULL,
        access_token     text NOT NULL,
        refresh_token    text,
        token_expires_at timestamptz,
        external_user_id text,
        connected_at     timestamptz NOT NULL DEFAULT now(),
        last_sync_at     timestamptz,
        CONSTRAINT user_integrations_user_service_key UNIQUE (user_id, service)
    );

    CREATE TABLE training_plans (
        id               uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id          uuid NOT NULL,
        date             date NOT NULL,
        sequence         int  NOT NULL,
        type             text NOT NULL,
        start_time       time,
        duration_minutes int,
        notes            text,
        created_at       timestamptz NOT NULL DEFAULT now(),
        CONSTRAINT training_plans_user_date_sequence_key UNIQUE (user_id, date, sequence)
    );

    CREATE TABLE workout_reflections (
        id                   uuid PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id              uuid NOT NULL,
        date                 date NOT NULL,
        workout_sequence     int  NOT NULL,
        activity_type        text NOT NULL,
        external_activity_id text,
        source               text,
        duration_minutes     int,
        calories_burned      int,
        average_hr           int,
        max_hr               int,
        strain_score         numeric,
        feeling              int,
        notes                text,
        recovery_score       int,
        sleep_performance    int,
        hrv                  numeric,
        resting_hr           int,
        created_at           timestamptz NOT NULL DEFAULT now(),
        updated_at           timestamptz NOT NULL DEFAULT now(),
        CONSTRAINT workout_reflections_user_date_sequence_key
            UNIQUE (user_id, date, workout_sequence),
        CONSTRAINT workout_reflections_user_external_activity_key
            UNIQUE (user_id, external_activity_id)
    );
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from uuid import UUID

import asyncpg

from src.integrations.base import RecoverySnapshot
from src.integrations.errors import DuplicateKey
from src.integrations.records import IntegrationRecord, ReflectionEntry, ScheduleEntry
from src.integrations.store.base import IntegrationStore
from src.services.supabase import get_connection

logger = logging.getLogger("ritual.integrations.store.postgres")

# Postgres constraint name → DuplicateKey.constraint
_CONSTRAINTS = {
    "user_integrations_user_service_key": "integration",
    "training_plans_user_date_sequence_key": "schedule_sequence",
    "workout_reflections_user_date_sequence_key": "workout_sequence",
    "workout_reflections_user_external_activity_key": "external_activity_id",
}

_INTEGRATION_COLUMNS = (
    "id, user_id, service, access_token, refresh_token, token_expires_at, "
    "external_user_id, connected_at, last_sync_at"
)

_REFLECTION_COLUMNS = (
    "id, user_id, date, workout_sequence, activity_type, external_activity_id, "
    "source, duration_minutes, calories_burned, average_hr, max_hr, strain_score, "
    "feeling, notes, recovery_score, sleep_performance, hrv, resting_hr, "
    "created_at, updated_at"
)


def _duplicate_key(exc: asyncpg.UniqueViolationError) -> DuplicateKey:
    name = getattr(exc, "constraint_name", None) or ""
    constraint = _CONSTRAINTS.get(name)
    if constraint is None:
        logger.error("Unmapped unique constraint %r: %s", name, exc)
        constraint = name or "unknown"
    return DuplicateKey(constraint)


def _integration_from_row(row: asyncpg.Record) -> IntegrationRecord:
    return IntegrationRecord(
        id=row["id"],
        user_id=row["user_id"],
        provider=row["service"],
        access_token=row["access_token"],
        refresh_token=row["refresh_token"],
        token_expires_at=row["token_expires_at"],
        external_user_id=row["external_user_id"],
        connected_at=row["connected_at"],
        last_sync_at=row["last_sync_at"],
    )


def _reflection_from_row(row: asyncpg.Record) -> ReflectionEntry:
    data = dict(row)
    for key in ("strain_score", "hrv"):
        if data[key] is not None:
            data[key] = float(data[key])
    return ReflectionEntry(**data)


class PostgresStore(IntegrationStore):
    """Store backed by the Supabase Postgres tables above."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    # ------------------------------------------------------------------
    # Integration records
    # ------------------------------------------------------------------

    async def get_integration(self, user_id: UUID, provider: str) -> IntegrationRecord | None:
        async with get_connection(self._pool, user_id=user_id) as conn:
            row = await conn.fetchrow(
                f"SELECT {_INTEGRATION_COLUMNS} FROM user_integrations "
                "WHERE user_id = $1 AND service = $2",
                user_id,
                provider,
            )
        return _integration_from_row(row) if row else None

    async def find_integration_by_external_id(
        self, provider: str, external_user_id: str
    ) -> IntegrationRecord | None:
        async with get_connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"SELECT {_INTEGRATION_COLUMNS} FROM user_integrations "
                "WHERE service = $1 AND external_user_id = $2 "
                "ORDER BY connected_at DESC LIMIT 1",
                provider,
                external_user_id,
            )
        return _integration_from_row(row) if row else None

    async def list_integrations(self, user_id: UUID) -> list[IntegrationRecord]:
        async with get_connection(self._pool, user_id=user_id) as conn:
            rows = await conn.fetch(
                f"SELECT {_INTEGRATION_COLUMNS} FROM user_integrations "
                "WHERE user_id = $1 ORDER BY service",
                user_id,
            )
        return [_integration_from_row(r) for r in rows]

    async def upsert_integration(self, record: IntegrationRecord) -> IntegrationRecord:
        async with get_connection(self._pool, user_id=record.user_id) as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO user_integrations ({_INTEGRATION_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (user_id, service) DO UPDATE SET
                    access_token     = EXCLUDED.access_token,
                    refresh_token    = EXCLUDED.refresh_token,
                    token_expires_at = EXCLUDED.token_expires_at,
                    external_user_id = EXCLUDED.external_user_id,
                    connected_at     = EXCLUDED.connected_at
                RETURNING {_INTEGRATION_COLUMNS}
                """,
                record.id,
                record.user_id,
                record.provider,
                record.access_token,
                record.refresh_token,
                record.token_expires_at,
                record.external_user_id,
                record.connected_at,
                record.last_sync_at,
            )
        return _integration_from_row(row)

    async def update_tokens(
        self,
        user_id: UUID,
        provider: str,
        access_token: str,
        refresh_token: str | None,
        token_expires_at: datetime,
    ) -> None:
        async with get_connection(self._pool, user_id=user_id) as conn:
            await conn.execute(
                "UPDATE user_integrations SET access_token = $3, refresh_token = $4, "
                "token_expires_at = $5 WHERE user_id = $1 AND service = $2",
                user_id,
                provider,
                access_token,
                refresh_token,
                token_expires_at,
            )

    async def mark_synced(self, user_id: UUID, provider: str, synced_at: datetime) -> None:
        async with get_connection(self._pool, user_id=user_id) as conn:
            await conn.execute(
                "UPDATE user_integrations SET last_sync_at = $3 "
                "WHERE user_id = $1 AND service = $2",
                user_id,
                provider,
                synced_at,
            )

    async def delete_integration(self, user_id: UUID, provider: str) -> bool:
        async with get_connection(self._pool, user_id=user_id) as conn:
            status = await conn.execute(
                "DELETE FROM user_integrations WHERE user_id = $1 AND service = $2",
                user_id,
                provider,
            )
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return status.split()[-1] != "0"

    # ------------------------------------------------------------------
    # Schedule entries
    # ------------------------------------------------------------------

    async def max_schedule_sequence(self, user_id: UUID, day: date) -> int | None:
        async with get_connection(self._pool, user_id=user_id) as conn:
            return await conn.fetchval(
                "SELECT max(sequence) FROM training_plans WHERE user_id = $1 AND date = $2",
                user_id,
                day,
            )

    async def insert_schedule_entry(self, entry: ScheduleEntry) -> ScheduleEntry:
        try:
            async with get_connection(self._pool, user_id=entry.user_id) as conn:
                await conn.execute(
                    """
                    INSERT INTO training_plans
                        (id, user_id, date, sequence, type, start_time,
                         duration_minutes, notes, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    entry.id,
                    entry.user_id,
                    entry.date,
                    entry.sequence,
                    entry.activity_type,
                    entry.start_time,
                    entry.duration_minutes,
                    entry.notes,
                    entry.created_at,
                )
        except asyncpg.UniqueViolationError as exc:
            raise _duplicate_key(exc) from exc
        return entry

    # ------------------------------------------------------------------
    # Reflection entries
    # ------------------------------------------------------------------

    async def max_workout_sequence(self, user_id: UUID, day: date) -> int | None:
        async with get_connection(self._pool, user_id=user_id) as conn:
            return await conn.fetchval(
                "SELECT max(workout_sequence) FROM workout_reflections "
                "WHERE user_id = $1 AND date = $2",
                user_id,
                day,
            )

    async def find_reflection_by_external_id(
        self, user_id: UUID, external_activity_id: str
    ) -> ReflectionEntry | None:
        async with get_connection(self._pool, user_id=user_id) as conn:
            row = await conn.fetchrow(
                f"SELECT {_REFLECTION_COLUMNS} FROM workout_reflections "
                "WHERE user_id = $1 AND external_activity_id = $2",
                user_id,
                external_activity_id,
            )
        return _reflection_from_row(row) if row else None

    async def insert_reflection(self, entry: ReflectionEntry) -> ReflectionEntry:
        values = (
            entry.id,
            entry.user_id,
            entry.date,
            entry.workout_sequence,
            entry.activity_type,
            entry.external_activity_id,
            entry.source,
            entry.duration_minutes,
            entry.calories_burned,
            entry.average_hr,
            entry.max_hr,
            entry.strain_score,
            entry.feeling,
            entry.notes,
            entry.recovery_score,
            entry.sleep_performance,
            entry.hrv,
            entry.resting_hr,
            entry.created_at,
            entry.updated_at,
        )
        placeholders = ", ".join(f"${i}" for i in range(1, len(values) + 1))
        try:
            async with get_connection(self._pool, user_id=entry.user_id) as conn:
                await conn.execute(
                    f"INSERT INTO workout_reflections ({_REFLECTION_COLUMNS}) "
                    f"VALUES ({placeholders})",
                    *values,
                )
        except asyncpg.UniqueViolationError as exc:
            raise _duplicate_key(exc) from exc
        return entry

    async def delete_reflection(self, reflection_id: UUID) -> None:
        async with get_connection(self._pool) as conn:
            await conn.execute("DELETE FROM workout_reflections WHERE id = $1", reflection_id)

    async def latest_reflection_for_date(
        self, user_id: UUID, day: date
    ) -> ReflectionEntry | None:
        async with get_connection(self._pool, user_id=user_id) as conn:
            row = await conn.fetchrow(
                f"SELECT {_REFLECTION_COLUMNS} FROM workout_reflections "
                "WHERE user_id = $1 AND date = $2 "
                "ORDER BY created_at DESC LIMIT 1",
                user_id,
                day,
            )
        return _reflection_from_row(row) if row else None

    async def update_reflection_recovery(
        self, reflection_id: UUID, snapshot: RecoverySnapshot
    ) -> ReflectionEntry | None:
        async with get_connection(self._pool) as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE workout_reflections SET
                    recovery_score    = $2,
                    sleep_performance = $3,
                    hrv               = $4,
                    resting_hr        = $5,
                    updated_at        = now()
                WHERE id = $1
                RETURNING {_REFLECTION_COLUMNS}
                """,
                reflection_id,
                snapshot.recovery_score,
                snapshot.sleep_performance,
                snapshot.hrv,
                snapshot.resting_hr,
            )
        return _reflection_from_row(row) if row else None

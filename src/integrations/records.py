"""Persistent records owned by the integration engine.

These are the rows behind ``user_integrations``, ``training_plans`` and
``workout_reflections``.  Stores hand them back and forth as plain
dataclasses; API schemas live in ``src.models.integrations``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time
from uuid import UUID

from src.models.base import utc_now


@dataclass
class IntegrationRecord:
    """OAuth credentials and metadata linking one user to one provider.

    Upsert key: (user_id, provider).

    Attributes:
        user_id:          Internal user UUID.
        provider:         Provider slug ('whoop', 'strava').
        access_token:     Bearer token for provider resource calls.
        refresh_token:    Long-lived token used by the lazy refresh.
        token_expires_at: UTC expiry of access_token; None forces a refresh.
        external_user_id: Provider's id for the user, used to route webhooks.
        connected_at:     When the OAuth exchange completed.
        last_sync_at:     Last successful manual sync.
    """

    user_id: UUID
    provider: str
    access_token: str
    refresh_token: str | None = None
    token_expires_at: datetime | None = None
    external_user_id: str | None = None
    connected_at: datetime = field(default_factory=utc_now)
    last_sync_at: datetime | None = None
    id: UUID = field(default_factory=uuid.uuid4)


@dataclass
class ScheduleEntry:
    """A training session slot, ordered within a day by ``sequence``."""

    user_id: UUID
    date: date
    sequence: int
    activity_type: str
    start_time: time | None = None
    duration_minutes: int | None = None
    notes: str | None = None
    id: UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ReflectionEntry:
    """Post-workout reflection; imported drafts leave feeling/notes unset.

    ``external_activity_id`` is unique per user and is the import dedup key.
    ``workout_sequence`` has its own per-day namespace, independent of
    ScheduleEntry.sequence.
    """

    user_id: UUID
    date: date
    workout_sequence: int
    activity_type: str
    external_activity_id: str | None = None
    source: str | None = None
    duration_minutes: int | None = None
    calories_burned: int | None = None
    average_hr: int | None = None
    max_hr: int | None = None
    strain_score: float | None = None
    feeling: int | None = None
    notes: str | None = None
    recovery_score: int | None = None
    sleep_performance: int | None = None
    hrv: float | None = None
    resting_hr: int | None = None
    id: UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

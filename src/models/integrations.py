"""Pydantic schemas for the integrations API."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Literal

from pydantic import Field

from src.models.base import RitualBase


# ---------- Connection status ----------

class IntegrationStatus(RitualBase):
    provider: str
    display_name: str
    connected: bool = False
    connected_at: datetime | None = None
    last_sync_at: datetime | None = None
    external_user_id: str | None = None


class AuthUrlResponse(RitualBase):
    auth_url: str
    state: str


class ConnectRequest(RitualBase):
    code: str = Field(min_length=1)
    redirect_uri: str | None = None


# ---------- Sync ----------

class SyncRequest(RitualBase):
    """Both bounds optional; ordering is checked by the sync orchestrator."""

    start_date: date | None = None
    end_date: date | None = None


class SyncResult(RitualBase):
    provider: str
    start_date: date
    end_date: date
    workouts_found: int
    workouts_imported: int
    already_imported: int
    imported_ids: list[uuid.UUID] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


# ---------- Recovery ----------

RecoveryZone = Literal["green", "yellow", "red"]


class RecoverySummary(RitualBase):
    provider: str
    date: date
    recovery_score: int | None = None
    recovery_zone: RecoveryZone | None = None
    sleep_performance: int | None = None
    hrv: float | None = None
    resting_hr: int | None = None
    strain_score: float | None = None

"""Whoop API v2 adapter.

Uses OAuth2 (authorization code + refresh with the ``offline`` scope).

API base: https://api.prod.whoop.com/developer

Endpoints used:
    /v2/user/profile/basic  — External user id
    /v2/activity/workout    — Workout sessions (paginated via next_token)
    /v2/recovery            — Recovery scores
    /v2/activity/sleep      — Sleep performance
    /v2/cycle               — Day strain

Webhooks are signed with a hex HMAC-SHA256 of the raw body in
``X-WHOOP-Signature``; payloads look like
``{"user_id": 10129, "id": "...", "type": "workout.updated"}``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any
from urllib.parse import urlencode

from src.integrations.base import (
    EventKind,
    OAuthTokens,
    ProviderAdapter,
    ProviderWorkout,
    RecoverySnapshot,
    WebhookEvent,
)

logger = logging.getLogger("ritual.integrations.whoop")

_WHOOP_API_BASE = "https://api.prod.whoop.com/developer"
_WHOOP_TOKEN_URL = "https://api.prod.whoop.com/oauth/oauth2/token"
_WHOOP_AUTH_URL = "https://api.prod.whoop.com/oauth/oauth2/auth"

_WHOOP_SCOPES = "read:recovery read:workout read:sleep read:cycles read:profile offline"

_PAGE_LIMIT = 25
_MAX_PAGES = 20

_KJ_PER_KCAL = 4.184


class WhoopAdapter(ProviderAdapter):
    """Whoop API v2 adapter.

    Whoop is the recovery source: besides workouts it supplies the daily
    recovery score, HRV, resting heart rate and sleep performance that the
    recovery webhook copies onto the day's latest reflection.
    """

    PROVIDER = "whoop"
    DISPLAY_NAME = "Whoop"
    SIGNATURE_HEADER = "X-WHOOP-Signature"
    EVENT_KINDS = {
        "workout.created": EventKind.WORKOUT,
        "workout.updated": EventKind.WORKOUT,
        "recovery.updated": EventKind.RECOVERY,
    }

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": _WHOOP_SCOPES,
            "state": state,
        }
        return f"{_WHOOP_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        """Exchange a Whoop authorization code for tokens."""
        logger.info("Whoop: exchanging authorization code")
        data = await self._request(
            "POST",
            _WHOOP_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": redirect_uri,
            },
        )
        return self._tokens_from(data)

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        """Refresh a Whoop access token.

        Whoop rotates refresh tokens; when the response omits one the old
        token is kept.
        """
        data = await self._request(
            "POST",
            _WHOOP_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "scope": "offline",
            },
        )
        tokens = self._tokens_from(data)
        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        return tokens

    def _tokens_from(self, data: Any) -> OAuthTokens:
        return OAuthTokens(
            access_token=self._require(data, "access_token"),
            refresh_token=data.get("refresh_token"),
            expires_in=self._safe_int(data.get("expires_in")) or 3600,
            extra={k: v for k, v in data.items() if k not in ("access_token", "refresh_token")},
        )

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def fetch_profile(self, access_token: str) -> str:
        data = await self._request(
            "GET", f"{_WHOOP_API_BASE}/v2/user/profile/basic", access_token=access_token
        )
        return str(self._require(data, "user_id"))

    async def fetch_workouts(
        self, access_token: str, start_date: date, end_date: date
    ) -> list[ProviderWorkout]:
        """Fetch all Whoop workouts in the date range, following next_token."""
        start, end = self._day_bounds(start_date, end_date)
        params: dict = {
            "start": _whoop_ts(start),
            "end": _whoop_ts(end),
            "limit": _PAGE_LIMIT,
        }

        workouts: list[ProviderWorkout] = []
        for _ in range(_MAX_PAGES):
            data = await self._request(
                "GET",
                f"{_WHOOP_API_BASE}/v2/activity/workout",
                params=params,
                access_token=access_token,
                allow_missing=True,
            )
            if not data:
                break
            for record in data.get("records", []):
                workout = self.decode_workout(record)
                if workout is not None:
                    workouts.append(workout)
            next_token = data.get("next_token")
            if not next_token:
                break
            params = {**params, "nextToken": next_token}
        else:
            logger.warning(
                "Whoop: stopped paging workouts after %d pages (%s → %s)",
                _MAX_PAGES, start_date, end_date,
            )

        return workouts

    async def fetch_recovery(
        self, access_token: str, day: date
    ) -> RecoverySnapshot | None:
        """Combine recovery, sleep and cycle collections for one day.

        Returns None when Whoop has none of the three for the day.
        """
        start, end = self._day_bounds(day, day)
        params = {"start": _whoop_ts(start), "end": _whoop_ts(end)}

        recovery, sleep, cycle = await asyncio.gather(
            self._first_record("/v2/recovery", params, access_token),
            self._first_record("/v2/activity/sleep", params, access_token),
            self._first_record("/v2/cycle", params, access_token),
        )
        if recovery is None and sleep is None and cycle is None:
            return None

        rec_score = (recovery or {}).get("score") or {}
        sleep_score = (sleep or {}).get("score") or {}
        cycle_score = (cycle or {}).get("score") or {}

        return RecoverySnapshot(
            recovery_score=self._safe_int(rec_score.get("recovery_score")),
            sleep_performance=self._safe_int(
                sleep_score.get("sleep_performance_percentage")
            ),
            hrv=self._safe_float(rec_score.get("hrv_rmssd_milli")),
            resting_hr=self._safe_int(rec_score.get("resting_heart_rate")),
            strain_score=self._safe_float(cycle_score.get("strain")),
        )

    async def _first_record(
        self, path: str, params: dict, access_token: str
    ) -> dict | None:
        data = await self._request(
            "GET",
            f"{_WHOOP_API_BASE}{path}",
            params=params,
            access_token=access_token,
            allow_missing=True,
        )
        records = (data or {}).get("records") or []
        return records[0] if records else None

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode_workout(self, record: dict) -> ProviderWorkout | None:
        """Convert one Whoop workout record to a ProviderWorkout.

        Records without an id or a parseable start are skipped (None).
        """
        external_id = record.get("id")
        start = self._parse_iso_datetime(record.get("start"))
        if external_id is None or start is None:
            logger.warning("Whoop: skipping workout without id/start: %r", record.get("id"))
            return None

        score = record.get("score") or {}
        kilojoule = self._safe_float(score.get("kilojoule"))
        sport_id = record.get("sport_id")

        return ProviderWorkout(
            provider=self.PROVIDER,
            external_id=str(external_id),
            activity_code=sport_id,
            activity_type=self.map_activity_type(sport_id),
            start=start,
            end=self._parse_iso_datetime(record.get("end")),
            name=record.get("sport_name"),
            calories=round(kilojoule / _KJ_PER_KCAL) if kilojoule is not None else None,
            average_hr=self._safe_int(score.get("average_heart_rate")),
            max_hr=self._safe_int(score.get("max_heart_rate")),
            strain_score=self._safe_float(score.get("strain")),
            distance_m=self._safe_float(score.get("distance_meter")),
            raw=record,
        )

    def parse_webhook_event(self, payload: dict) -> WebhookEvent | None:
        event_type = payload.get("type")
        if not event_type or not isinstance(event_type, str):
            return None

        user_id = payload.get("user_id")
        object_id = payload.get("id") or payload.get("workout_id")
        return WebhookEvent(
            provider=self.PROVIDER,
            event_type=event_type,
            kind=self._classify(event_type),
            external_user_id=str(user_id) if user_id is not None else None,
            object_id=str(object_id) if object_id is not None else None,
            raw=payload,
        )


def _whoop_ts(value: datetime) -> str:
    """Whoop expects millisecond ISO timestamps with a Z suffix."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")

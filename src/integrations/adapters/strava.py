"""Strava API v3 adapter.

Uses OAuth2 (authorization code + refresh).  Strava has no recovery
resource, so ``fetch_recovery`` keeps the base-class default (None).

API base: https://www.strava.com/api/v3

Endpoints used:
    /athlete             — External athlete id
    /athlete/activities  — Activity summaries (paged, after/before epoch)

Webhook events look like::

    {"object_type": "activity", "aspect_type": "create",
     "object_id": 1360128428, "owner_id": 134815, "event_time": 1516126040}

and are classified as ``"<object_type>.<aspect_type>"``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

from src.integrations.base import (
    EventKind,
    OAuthTokens,
    ProviderAdapter,
    ProviderWorkout,
    WebhookEvent,
)

logger = logging.getLogger("ritual.integrations.strava")

_STRAVA_API_BASE = "https://www.strava.com/api/v3"
_STRAVA_AUTH_URL = "https://www.strava.com/oauth/authorize"
_STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"

_PER_PAGE = 100
_MAX_PAGES = 10


class StravaAdapter(ProviderAdapter):
    """Strava API v3 adapter (activity source)."""

    PROVIDER = "strava"
    DISPLAY_NAME = "Strava"
    SIGNATURE_HEADER = "X-Strava-Signature"
    EVENT_KINDS = {
        "activity.create": EventKind.WORKOUT,
        "activity.update": EventKind.WORKOUT,
    }

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "approval_prompt": "auto",
            "scope": "read,activity:read_all",
            "state": state,
        }
        return f"{_STRAVA_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        logger.info("Strava: exchanging authorization code")
        data = await self._request(
            "POST",
            _STRAVA_TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "grant_type": "authorization_code",
            },
        )
        return self._tokens_from(data)

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        data = await self._request(
            "POST",
            _STRAVA_TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
        )
        tokens = self._tokens_from(data)
        if tokens.refresh_token is None:
            tokens.refresh_token = refresh_token
        return tokens

    def _tokens_from(self, data: Any) -> OAuthTokens:
        # Strava returns both expires_in and an absolute expires_at; the
        # relative value is what the token manager stores.
        return OAuthTokens(
            access_token=self._require(data, "access_token"),
            refresh_token=data.get("refresh_token"),
            expires_in=self._safe_int(data.get("expires_in")) or 21600,
            extra={"athlete": data.get("athlete"), "expires_at": data.get("expires_at")},
        )

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def fetch_profile(self, access_token: str) -> str:
        data = await self._request(
            "GET", f"{_STRAVA_API_BASE}/athlete", access_token=access_token
        )
        return str(self._require(data, "id"))

    async def fetch_workouts(
        self, access_token: str, start_date: date, end_date: date
    ) -> list[ProviderWorkout]:
        """Page through /athlete/activities until a short page comes back."""
        start, end = self._day_bounds(start_date, end_date)
        workouts: list[ProviderWorkout] = []

        for page in range(1, _MAX_PAGES + 1):
            data = await self._request(
                "GET",
                f"{_STRAVA_API_BASE}/athlete/activities",
                params={
                    "after": int(start.timestamp()),
                    "before": int(end.timestamp()),
                    "page": page,
                    "per_page": _PER_PAGE,
                },
                access_token=access_token,
                allow_missing=True,
            )
            if not data:
                break
            for activity in data:
                workout = self.decode_activity(activity)
                if workout is not None:
                    workouts.append(workout)
            if len(data) < _PER_PAGE:
                break

        return workouts

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode_activity(self, activity: dict) -> ProviderWorkout | None:
        """Convert a Strava SummaryActivity to a ProviderWorkout."""
        external_id = activity.get("id")
        start = self._parse_iso_datetime(activity.get("start_date"))
        if external_id is None or start is None:
            logger.warning("Strava: skipping activity without id/start: %r", external_id)
            return None

        sport = activity.get("sport_type") or activity.get("type")
        elapsed = self._safe_int(activity.get("elapsed_time"))
        end = start + timedelta(seconds=elapsed) if elapsed is not None else None

        return ProviderWorkout(
            provider=self.PROVIDER,
            external_id=str(external_id),
            activity_code=sport,
            activity_type=self.map_activity_type(sport),
            start=start,
            end=end,
            name=activity.get("name"),
            calories=self._safe_int(activity.get("calories")),
            average_hr=self._safe_int(activity.get("average_heartrate")),
            max_hr=self._safe_int(activity.get("max_heartrate")),
            strain_score=self._safe_float(activity.get("suffer_score")),
            distance_m=self._safe_float(activity.get("distance")),
            raw=activity,
        )

    def parse_webhook_event(self, payload: dict) -> WebhookEvent | None:
        object_type = payload.get("object_type")
        aspect_type = payload.get("aspect_type")
        if not object_type or not aspect_type:
            return None

        event_type = f"{object_type}.{aspect_type}"
        owner_id = payload.get("owner_id")
        object_id = payload.get("object_id")
        event_time = self._safe_int(payload.get("event_time"))

        return WebhookEvent(
            provider=self.PROVIDER,
            event_type=event_type,
            kind=self._classify(event_type),
            external_user_id=str(owner_id) if owner_id is not None else None,
            object_id=str(object_id) if object_id is not None else None,
            occurred_at=(
                datetime.fromtimestamp(event_time, tz=timezone.utc)
                if event_time is not None
                else None
            ),
            raw=payload,
        )

    def _normalize_signature(self, signature: str) -> str:
        return signature.removeprefix("sha256=")

    @staticmethod
    def verify_subscription(
        mode: str | None, token: str | None, challenge: str | None, verify_token: str
    ) -> str | None:
        """Answer Strava's subscription handshake.

        Returns the challenge to echo back, or None if the request does not
        carry our verify token.
        """
        if mode == "subscribe" and verify_token and token == verify_token and challenge:
            return challenge
        return None

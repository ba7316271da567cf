"""Base classes and canonical data models for provider integrations.

Every provider adapter subclasses ProviderAdapter and decodes its own JSON
into the canonical ProviderWorkout / RecoverySnapshot / WebhookEvent shapes.
Nothing downstream of the adapter boundary (token manager, importer,
gateway, sync orchestrator) ever looks at provider-specific payloads.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any

import httpx

from src.integrations.activity_map import ActivityTypeMap, get_activity_map
from src.integrations.errors import ProviderRequestFailed, ProviderUnavailable

logger = logging.getLogger("ritual.integrations")

DEFAULT_TIMEOUT_SECONDS = 10.0


# ---------------------------------------------------------------------------
# OAuth tokens
# ---------------------------------------------------------------------------


@dataclass
class OAuthTokens:
    """Token pair returned by a code exchange or a refresh.

    Attributes:
        access_token:  Bearer token for API calls.
        refresh_token: Token used to obtain the next pair.
        expires_in:    Lifetime of access_token in seconds.
        extra:         Any additional fields the provider returned.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int = 3600
    extra: dict = field(default_factory=dict)

    def expires_at(self, now: datetime) -> datetime:
        return now + timedelta(seconds=self.expires_in)


# ---------------------------------------------------------------------------
# Canonical provider shapes
# ---------------------------------------------------------------------------


@dataclass
class ProviderWorkout:
    """One provider workout, decoded at the adapter boundary.

    Attributes:
        provider:      Provider slug.
        external_id:   Provider's workout id (the import dedup key).
        activity_code: Raw provider activity code, kept for logging.
        activity_type: Internal category from the activity map.
        start:         UTC start timestamp.
        end:           UTC end timestamp (None if the provider omitted it).
        name:          Provider's display name for the workout.
        calories:      Energy in kcal.
        average_hr:    Average heart rate (bpm).
        max_hr:        Max heart rate (bpm).
        strain_score:  Provider strain / effort score when available.
        distance_m:    Distance in meters.
        raw:           Original provider record.
    """

    provider: str
    external_id: str
    activity_code: Any
    activity_type: str
    start: datetime
    end: datetime | None = None
    name: str | None = None
    calories: int | None = None
    average_hr: int | None = None
    max_hr: int | None = None
    strain_score: float | None = None
    distance_m: float | None = None
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class RecoverySnapshot:
    """Recovery metrics for one day."""

    recovery_score: int | None = None
    sleep_performance: int | None = None
    hrv: float | None = None
    resting_hr: int | None = None
    strain_score: float | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (
                self.recovery_score,
                self.sleep_performance,
                self.hrv,
                self.resting_hr,
                self.strain_score,
            )
        )


class EventKind(str, enum.Enum):
    WORKOUT = "workout"
    RECOVERY = "recovery"
    UNRECOGNIZED = "unrecognized"


@dataclass
class WebhookEvent:
    """A classified inbound provider event."""

    provider: str
    event_type: str
    kind: EventKind
    external_user_id: str | None = None
    object_id: str | None = None
    occurred_at: datetime | None = None
    raw: dict = field(default_factory=dict, repr=False)


# ---------------------------------------------------------------------------
# Abstract base adapter
# ---------------------------------------------------------------------------


class ProviderAdapter(ABC):
    """Abstract base class for all provider adapters.

    Adapters are constructed explicitly (one per provider per runtime) and
    injected into the token manager, sync orchestrator and webhook gateway,
    so tests can swap in a fake without network access.

    Subclasses must implement:
        - authorization_url()
        - exchange_code()
        - refresh()
        - fetch_profile()
        - fetch_workouts()
        - parse_webhook_event()

    Optional overrides:
        - fetch_recovery()  (returns None by default)
    """

    #: Unique slug matching user_integrations.service.
    PROVIDER: str = "unknown"

    #: Human-readable name used in logs and imported notes.
    DISPLAY_NAME: str = "Unknown Provider"

    #: Header carrying the webhook HMAC.
    SIGNATURE_HEADER: str = "X-Signature"

    #: Provider event type -> event kind.
    EVENT_KINDS: dict[str, EventKind] = {}

    def __init__(
        self,
        client_id: str = "",
        client_secret: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        activity_map: ActivityTypeMap | None = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            client_id:     OAuth2 client ID.
            client_secret: OAuth2 client secret.
            http_client:   Optional shared httpx client (for pooling / tests).
            timeout:       Upper bound in seconds for every provider call.
            activity_map:  Activity taxonomy; the bundled one by default.
        """
        if not client_id or not client_secret:
            logger.warning("%s credentials not configured", self.DISPLAY_NAME)
        self._client_id = client_id
        self._client_secret = client_secret
        self._http_client = http_client
        self._timeout = timeout
        self._activity_map = activity_map or get_activity_map()

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @abstractmethod
    def authorization_url(self, redirect_uri: str, state: str) -> str:
        """Build the provider consent URL carrying the opaque ``state``."""

    @abstractmethod
    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        """Exchange an authorization code for a token pair."""

    @abstractmethod
    async def refresh(self, refresh_token: str) -> OAuthTokens:
        """Trade a refresh token for a new token pair."""

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_profile(self, access_token: str) -> str:
        """Return the provider's identifier for the token owner."""

    @abstractmethod
    async def fetch_workouts(
        self, access_token: str, start_date: date, end_date: date
    ) -> list[ProviderWorkout]:
        """Return workouts starting within [start_date, end_date] (UTC days).

        A 404 from the provider means "no data for this window" and yields
        an empty list.
        """

    async def fetch_recovery(
        self, access_token: str, day: date
    ) -> RecoverySnapshot | None:
        """Return recovery metrics for ``day``, or None if unsupported/absent."""
        return None

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    @abstractmethod
    def parse_webhook_event(self, payload: dict) -> WebhookEvent | None:
        """Decode an inbound event.

        Returns None when the payload is structurally invalid (no event
        type can be derived).  Types not in EVENT_KINDS come back as
        EventKind.UNRECOGNIZED.
        """

    def verify_webhook_signature(
        self, raw_payload: bytes, signature: str, secret: str
    ) -> bool:
        """Check a hex HMAC-SHA256 of the raw body in constant time.

        Args:
            raw_payload: Exact request body bytes as received.
            signature:   Value of SIGNATURE_HEADER.
            secret:      Shared webhook secret.
        """
        expected = hmac.new(secret.encode(), raw_payload, hashlib.sha256).hexdigest()
        provided = self._normalize_signature(signature).strip().lower()
        return hmac.compare_digest(expected.encode(), provided.encode())

    def _normalize_signature(self, signature: str) -> str:
        return signature

    def _classify(self, event_type: str) -> EventKind:
        return self.EVENT_KINDS.get(event_type, EventKind.UNRECOGNIZED)

    # ------------------------------------------------------------------
    # Taxonomy
    # ------------------------------------------------------------------

    def map_activity_type(self, provider_code: object) -> str:
        """Map a provider activity code to an internal category (never raises)."""
        return self._activity_map.lookup(self.PROVIDER, provider_code)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        access_token: str | None = None,
        allow_missing: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Perform one provider HTTP call and decode the JSON body.

        Args:
            method:        HTTP method.
            url:           Full endpoint URL.
            access_token:  Bearer token, if the endpoint needs one.
            allow_missing: Return None on 404 instead of raising.

        Raises:
            ProviderUnavailable:   Network error, timeout, 429 or 5xx.
            ProviderRequestFailed: Any other non-2xx status, or a 2xx body
                that is not JSON.
        """
        headers = dict(kwargs.pop("headers", None) or {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method, url, headers=headers, timeout=self._timeout, **kwargs
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise ProviderUnavailable(
                self.PROVIDER, None, f"{self.DISPLAY_NAME} request timed out: {url}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(
                self.PROVIDER, None, f"{self.DISPLAY_NAME} request error: {exc}"
            ) from exc

        status = response.status_code
        if status == 404 and allow_missing:
            return None
        if status == 429 or status >= 500:
            raise ProviderUnavailable(self.PROVIDER, status)
        if not response.is_success:
            raise ProviderRequestFailed(self.PROVIDER, status)
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestFailed(
                self.PROVIDER, status, f"{self.DISPLAY_NAME} returned a non-JSON body: {url}"
            ) from exc

    def _require(self, data: Any, key: str) -> Any:
        """Return ``data[key]`` from a decoded 2xx body.

        Raises:
            ProviderRequestFailed: The body is not an object or lacks ``key``.
        """
        if not isinstance(data, dict) or data.get(key) is None:
            raise ProviderRequestFailed(
                self.PROVIDER, None, f"{self.DISPLAY_NAME} response missing {key!r}"
            )
        return data[key]

    @staticmethod
    def _safe_int(value: object) -> int | None:
        """Safely coerce a value to int (rounding floats), None on failure."""
        if value is None:
            return None
        try:
            return int(round(float(value)))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_float(value: object) -> float | None:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _parse_iso_datetime(value: str | None) -> datetime | None:
        """Parse an ISO-8601 string to an aware UTC datetime.

        Naive strings are assumed to be UTC.  Returns None if the value is
        None or unparseable.
        """
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except (ValueError, AttributeError):
            logger.warning("Could not parse datetime string: %r", value)
            return None
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    @staticmethod
    def _day_bounds(start_date: date, end_date: date) -> tuple[datetime, datetime]:
        """UTC [start 00:00, end+1 00:00) window for an inclusive date range."""
        start = datetime.combine(start_date, datetime.min.time(), tzinfo=timezone.utc)
        end = datetime.combine(
            end_date + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc
        )
        return start, end

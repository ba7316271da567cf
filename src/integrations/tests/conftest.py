"""Shared fixtures and fake provider for integration engine tests."""

from __future__ import annotations

import hashlib
import hmac
import json
import os
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import urlencode
from uuid import UUID

import pytest

# Settings() needs these before src.main builds the module-level app.
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-0123456789abcdef0123456789")
os.environ.setdefault("OAUTH_STATE_SECRET", "test-state-secret")
os.environ.setdefault("STORE_BACKEND", "memory")

from src.config import Settings  # noqa: E402
from src.integrations.adapters.whoop import WhoopAdapter  # noqa: E402
from src.integrations.base import OAuthTokens, ProviderWorkout, RecoverySnapshot  # noqa: E402
from src.integrations.records import IntegrationRecord  # noqa: E402
from src.integrations.runtime import IntegrationRuntime, build_runtime  # noqa: E402
from src.integrations.store.memory import InMemoryStore  # noqa: E402

# Fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

# Canonical test identities
TEST_USER_ID = UUID("12345678-1234-5678-1234-567812345678")
OTHER_USER_ID = UUID("87654321-4321-8765-4321-876543218765")
TEST_DATE = date(2026, 2, 23)
FIXED_NOW = datetime(2026, 2, 23, 18, 0, tzinfo=timezone.utc)
WHOOP_USER_ID = "10129"

JWT_SECRET = os.environ["SUPABASE_JWT_SECRET"]
STATE_SECRET = "test-state-secret"
WEBHOOK_SECRET = "whoop-webhook-secret"
STRAVA_VERIFY_TOKEN = "verify-me"


def fixed_clock() -> datetime:
    return FIXED_NOW


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Hex HMAC-SHA256, as Whoop sends it."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def load_fixture(name: str) -> dict:
    return json.loads((FIXTURES_DIR / name).read_text())


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeWhoopAdapter(WhoopAdapter):
    """WhoopAdapter with every network call replaced by in-memory data.

    Webhook parsing, signature checks and activity mapping stay real.
    """

    def __init__(
        self,
        workouts: list[ProviderWorkout] | None = None,
        recovery: RecoverySnapshot | None = None,
    ) -> None:
        super().__init__(client_id="test_client_id", client_secret="test_client_secret")
        self.workouts = list(workouts or [])
        self.recovery = recovery
        self.profile_id = WHOOP_USER_ID
        self.refresh_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.refresh_calls: list[str] = []
        self.fetch_calls: list[tuple[str, date, date]] = []
        self.exchanged: list[tuple[str, str]] = []

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        return "https://whoop.test/auth?" + urlencode(
            {"redirect_uri": redirect_uri, "state": state}
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        self.exchanged.append((code, redirect_uri))
        return OAuthTokens("access-from-code", "refresh-from-code", 3600)

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return OAuthTokens(f"access-refreshed-{len(self.refresh_calls)}", "refresh-rotated", 3600)

    async def fetch_profile(self, access_token: str) -> str:
        return self.profile_id

    async def fetch_workouts(
        self, access_token: str, start_date: date, end_date: date
    ) -> list[ProviderWorkout]:
        self.fetch_calls.append((access_token, start_date, end_date))
        if self.fetch_error is not None:
            raise self.fetch_error
        return [w for w in self.workouts if start_date <= w.start.date() <= end_date]

    async def fetch_recovery(self, access_token: str, day: date) -> RecoverySnapshot | None:
        return self.recovery


def make_workout(
    external_id: str,
    start: datetime | None = None,
    minutes: float | None = 45,
    sport_id: int = 0,
    adapter: WhoopAdapter | None = None,
) -> ProviderWorkout:
    """A decoded Whoop workout starting at ``start`` (default 07:30 UTC on TEST_DATE)."""
    start = start or datetime(2026, 2, 23, 7, 30, tzinfo=timezone.utc)
    adapter = adapter or FakeWhoopAdapter()
    return ProviderWorkout(
        provider="whoop",
        external_id=external_id,
        activity_code=sport_id,
        activity_type=adapter.map_activity_type(sport_id),
        start=start,
        end=start + timedelta(minutes=minutes) if minutes is not None else None,
        calories=420,
        average_hr=142,
        max_hr=171,
        strain_score=12.4,
    )


def seed_integration(
    store: InMemoryStore,
    user_id: UUID = TEST_USER_ID,
    provider: str = "whoop",
    expires_at: datetime | None = FIXED_NOW + timedelta(hours=1),
    refresh_token: str | None = "refresh-stored",
    external_user_id: str = WHOOP_USER_ID,
) -> IntegrationRecord:
    """Write an IntegrationRecord straight into the in-memory store."""
    record = IntegrationRecord(
        user_id=user_id,
        provider=provider,
        access_token="access-stored",
        refresh_token=refresh_token,
        token_expires_at=expires_at,
        external_user_id=external_user_id,
        connected_at=FIXED_NOW - timedelta(days=30),
    )
    store.integrations[(user_id, provider)] = record
    return record


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        supabase_jwt_secret=JWT_SECRET,
        oauth_state_secret=STATE_SECRET,
        store_backend="memory",
        whoop_webhook_secret=WEBHOOK_SECRET,
        strava_webhook_verify_token=STRAVA_VERIFY_TOKEN,
        webhook_ack_timeout_seconds=1.0,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def fake_whoop() -> FakeWhoopAdapter:
    return FakeWhoopAdapter()


@pytest.fixture
def runtime(
    settings: Settings, store: InMemoryStore, fake_whoop: FakeWhoopAdapter
) -> IntegrationRuntime:
    return build_runtime(settings, store, adapters={"whoop": fake_whoop}, clock=fixed_clock)

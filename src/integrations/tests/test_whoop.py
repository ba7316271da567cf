"""Tests for the Whoop adapter — decoding, paging, recovery and webhooks."""

from __future__ import annotations

from datetime import date, datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from src.integrations.adapters.whoop import WhoopAdapter
from src.integrations.base import EventKind
from src.integrations.errors import ProviderRequestFailed, ProviderUnavailable
from src.integrations.tests.conftest import TEST_DATE, WEBHOOK_SECRET, load_fixture, sign


def _adapter(handler) -> WhoopAdapter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WhoopAdapter(
        client_id="test_client_id",
        client_secret="test_client_secret",
        http_client=client,
    )


@pytest.fixture
def whoop_adapter() -> WhoopAdapter:
    """Whoop adapter with test credentials and no real HTTP client."""
    return WhoopAdapter(client_id="test_client_id", client_secret="test_client_secret")


@pytest.fixture
def whoop_workouts_raw() -> dict:
    return load_fixture("whoop_workouts.json")


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestWhoopWorkoutDecoding:
    def test_decode_running_workout(
        self, whoop_adapter: WhoopAdapter, whoop_workouts_raw: dict
    ) -> None:
        workout = whoop_adapter.decode_workout(whoop_workouts_raw["records"][0])
        assert workout is not None
        assert workout.provider == "whoop"
        assert workout.external_id == "ecfc6a15-4661-442f-a9a4-f160dd7afae8"
        assert workout.activity_type == "running"
        assert workout.start == datetime(2026, 2, 23, 7, 2, tzinfo=timezone.utc)
        assert workout.end == datetime(2026, 2, 23, 7, 48, 30, tzinfo=timezone.utc)

    def test_calories_converted_from_kilojoules(
        self, whoop_adapter: WhoopAdapter, whoop_workouts_raw: dict
    ) -> None:
        workout = whoop_adapter.decode_workout(whoop_workouts_raw["records"][0])
        # 1569.34 kJ / 4.184 ≈ 375 kcal
        assert workout.calories == 375

    def test_heart_rate_and_strain(
        self, whoop_adapter: WhoopAdapter, whoop_workouts_raw: dict
    ) -> None:
        workout = whoop_adapter.decode_workout(whoop_workouts_raw["records"][0])
        assert workout.average_hr == 123
        assert workout.max_hr == 146
        assert workout.strain_score == pytest.approx(8.2463)
        assert workout.distance_m == pytest.approx(5012.4)

    def test_weightlifting_maps_to_strength(
        self, whoop_adapter: WhoopAdapter, whoop_workouts_raw: dict
    ) -> None:
        workout = whoop_adapter.decode_workout(whoop_workouts_raw["records"][1])
        assert workout.activity_type == "strength_training"

    def test_unmapped_sport_id_is_other(self, whoop_adapter: WhoopAdapter) -> None:
        workout = whoop_adapter.decode_workout(
            {"id": "w1", "start": "2026-02-23T07:00:00Z", "sport_id": 4242}
        )
        assert workout.activity_type == "other"

    def test_missing_score_leaves_metrics_unset(self, whoop_adapter: WhoopAdapter) -> None:
        workout = whoop_adapter.decode_workout(
            {
                "id": "w1",
                "start": "2026-02-23T07:00:00Z",
                "sport_id": 0,
                "score_state": "PENDING_SCORE",
            }
        )
        assert workout.calories is None
        assert workout.average_hr is None
        assert workout.end is None

    def test_record_without_start_is_skipped(self, whoop_adapter: WhoopAdapter) -> None:
        assert whoop_adapter.decode_workout({"id": "w1", "sport_id": 0}) is None

    def test_record_without_id_is_skipped(self, whoop_adapter: WhoopAdapter) -> None:
        assert whoop_adapter.decode_workout({"start": "2026-02-23T07:00:00Z"}) is None


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


class TestWhoopFetchWorkouts:
    @pytest.mark.asyncio
    async def test_follows_next_token(self, whoop_workouts_raw: dict) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            params = dict(request.url.params)
            seen.append(params)
            assert request.headers["Authorization"] == "Bearer tok"
            if "nextToken" not in params:
                return httpx.Response(200, json=whoop_workouts_raw)
            return httpx.Response(
                200,
                json={
                    "records": [
                        {"id": "w3", "start": "2026-02-23T20:00:00.000Z", "sport_id": 63}
                    ],
                    "next_token": None,
                },
            )

        workouts = await _adapter(handler).fetch_workouts("tok", TEST_DATE, TEST_DATE)

        assert [w.external_id for w in workouts][-1] == "w3"
        assert len(workouts) == 3
        assert len(seen) == 2
        assert seen[1]["nextToken"] == "MTIzOjEyMzEyMw"
        assert seen[0]["start"] == "2026-02-23T00:00:00.000Z"
        assert seen[0]["end"] == "2026-02-24T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_404_means_no_data(self) -> None:
        workouts = await _adapter(lambda r: httpx.Response(404)).fetch_workouts(
            "tok", TEST_DATE, TEST_DATE
        )
        assert workouts == []

    @pytest.mark.asyncio
    async def test_401_raises_request_failed_with_status(self) -> None:
        with pytest.raises(ProviderRequestFailed) as exc_info:
            await _adapter(lambda r: httpx.Response(401)).fetch_workouts(
                "tok", TEST_DATE, TEST_DATE
            )
        assert exc_info.value.status_code == 401
        assert not isinstance(exc_info.value, ProviderUnavailable)

    @pytest.mark.asyncio
    async def test_5xx_raises_unavailable(self) -> None:
        with pytest.raises(ProviderUnavailable) as exc_info:
            await _adapter(lambda r: httpx.Response(503)).fetch_workouts(
                "tok", TEST_DATE, TEST_DATE
            )
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout_raises_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(ProviderUnavailable) as exc_info:
            await _adapter(handler).fetch_workouts("tok", TEST_DATE, TEST_DATE)
        assert exc_info.value.status_code is None


class TestWhoopOAuth:
    def test_authorization_url(self, whoop_adapter: WhoopAdapter) -> None:
        url = whoop_adapter.authorization_url("https://api.test/cb", "opaque-state")
        query = parse_qs(urlparse(url).query)
        assert url.startswith("https://api.prod.whoop.com/oauth/oauth2/auth?")
        assert query["state"] == ["opaque-state"]
        assert query["redirect_uri"] == ["https://api.test/cb"]
        assert "offline" in query["scope"][0].split()

    @pytest.mark.asyncio
    async def test_exchange_code_posts_form(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["authorization_code"]
            assert form["code"] == ["the-code"]
            return httpx.Response(
                200,
                json={"access_token": "a1", "refresh_token": "r1", "expires_in": 3600},
            )

        tokens = await _adapter(handler).exchange_code("the-code", "https://api.test/cb")
        assert tokens.access_token == "a1"
        assert tokens.refresh_token == "r1"
        assert tokens.expires_in == 3600

    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token_when_omitted(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["refresh_token"]
            assert form["scope"] == ["offline"]
            return httpx.Response(200, json={"access_token": "a2", "expires_in": 1800})

        tokens = await _adapter(handler).refresh("r-old")
        assert tokens.access_token == "a2"
        assert tokens.refresh_token == "r-old"
        assert tokens.expires_in == 1800

    @pytest.mark.asyncio
    async def test_token_answer_without_access_token_is_request_failed(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, json={"error": "weird"}))
        with pytest.raises(ProviderRequestFailed, match="access_token"):
            await adapter.exchange_code("the-code", "https://api.test/cb")

    @pytest.mark.asyncio
    async def test_non_json_2xx_is_request_failed(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(ProviderRequestFailed) as exc_info:
            await adapter.exchange_code("the-code", "https://api.test/cb")
        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_profile_without_user_id_is_request_failed(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, json={"email": "a@b.c"}))
        with pytest.raises(ProviderRequestFailed, match="user_id"):
            await adapter.fetch_profile("token")

    @pytest.mark.asyncio
    async def test_fetch_profile_returns_user_id_as_string(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, json={"user_id": 10129}))
        assert await adapter.fetch_profile("tok") == "10129"


class TestWhoopRecovery:
    @pytest.mark.asyncio
    async def test_combines_recovery_sleep_and_cycle(self) -> None:
        raw = load_fixture("whoop_recovery.json")

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if path.endswith("/v2/recovery"):
                return httpx.Response(200, json=raw["recovery"])
            if path.endswith("/v2/activity/sleep"):
                return httpx.Response(200, json=raw["sleep"])
            return httpx.Response(200, json=raw["cycle"])

        snapshot = await _adapter(handler).fetch_recovery("tok", TEST_DATE)
        assert snapshot.recovery_score == 72
        assert snapshot.sleep_performance == 88
        assert snapshot.hrv == pytest.approx(61.38)
        assert snapshot.resting_hr == 54
        assert snapshot.strain_score == pytest.approx(5.2951527)

    @pytest.mark.asyncio
    async def test_no_records_anywhere_returns_none(self) -> None:
        adapter = _adapter(lambda r: httpx.Response(200, json={"records": []}))
        assert await adapter.fetch_recovery("tok", date(2026, 2, 23)) is None


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class TestWhoopWebhook:
    def test_signature_over_raw_body_verifies(self, whoop_adapter: WhoopAdapter) -> None:
        body = b'{"user_id":10129,"id":"w1","type":"workout.updated"}'
        assert whoop_adapter.verify_webhook_signature(body, sign(body), WEBHOOK_SECRET)

    def test_tampered_body_fails(self, whoop_adapter: WhoopAdapter) -> None:
        body = b'{"user_id":10129,"id":"w1","type":"workout.updated"}'
        tampered = body.replace(b"10129", b"10130")
        assert not whoop_adapter.verify_webhook_signature(tampered, sign(body), WEBHOOK_SECRET)

    def test_wrong_secret_fails(self, whoop_adapter: WhoopAdapter) -> None:
        body = b'{"type":"workout.updated"}'
        assert not whoop_adapter.verify_webhook_signature(body, sign(body, "other"), WEBHOOK_SECRET)

    def test_uppercase_hex_accepted(self, whoop_adapter: WhoopAdapter) -> None:
        body = b'{"type":"recovery.updated"}'
        assert whoop_adapter.verify_webhook_signature(body, sign(body).upper(), WEBHOOK_SECRET)

    def test_parse_workout_event(self, whoop_adapter: WhoopAdapter) -> None:
        event = whoop_adapter.parse_webhook_event(
            {"user_id": 10129, "id": "w1", "type": "workout.created", "trace_id": "t"}
        )
        assert event.kind is EventKind.WORKOUT
        assert event.external_user_id == "10129"
        assert event.object_id == "w1"

    def test_parse_recovery_event(self, whoop_adapter: WhoopAdapter) -> None:
        event = whoop_adapter.parse_webhook_event({"user_id": 10129, "type": "recovery.updated"})
        assert event.kind is EventKind.RECOVERY

    def test_unknown_type_is_unrecognized(self, whoop_adapter: WhoopAdapter) -> None:
        event = whoop_adapter.parse_webhook_event({"user_id": 10129, "type": "sleep.deleted"})
        assert event.kind is EventKind.UNRECOGNIZED

    def test_missing_type_is_invalid(self, whoop_adapter: WhoopAdapter) -> None:
        assert whoop_adapter.parse_webhook_event({"user_id": 10129}) is None

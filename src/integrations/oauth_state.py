"""Signed OAuth ``state`` tokens.

The callback endpoint is a browser redirect with no bearer token, so the
user's identity rides along in ``state``: a base64url JSON payload plus an
HMAC-SHA256 signature, ``<payload_b64>.<sig_b64>``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from datetime import datetime
from typing import Callable
from uuid import UUID

from src.integrations.errors import InvalidOAuthState
from src.models.base import utc_now


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("utf-8"))


class OAuthStateSigner:
    """Creates and verifies expiring, tamper-proof state tokens."""

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = 600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("oauth_state_secret must not be empty")
        self._key = secret.encode("utf-8")
        self._ttl = ttl_seconds
        self._clock = clock

    def _sign(self, payload_b64: str) -> str:
        mac = hmac.new(self._key, payload_b64.encode("utf-8"), hashlib.sha256).digest()
        return _b64url_encode(mac)

    def create(self, user_id: UUID, provider: str) -> str:
        payload = {
            "uid": str(user_id),
            "provider": provider,
            "nonce": secrets.token_urlsafe(8),
            "iat": int(self._clock().timestamp()),
        }
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        payload_b64 = _b64url_encode(raw)
        return f"{payload_b64}.{self._sign(payload_b64)}"

    def verify(self, token: str, provider: str) -> UUID:
        """Return the user id bound to ``token``.

        Raises:
            InvalidOAuthState: Bad shape, bad signature, wrong provider or
                older than the TTL.
        """
        if not token or "." not in token:
            raise InvalidOAuthState("malformed state")
        payload_b64, sig = token.split(".", 1)
        if not payload_b64 or not sig:
            raise InvalidOAuthState("malformed state")
        if not hmac.compare_digest(sig, self._sign(payload_b64)):
            raise InvalidOAuthState("state signature mismatch")

        try:
            payload = json.loads(_b64url_decode(payload_b64))
            user_id = UUID(payload["uid"])
            iat = int(payload["iat"])
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidOAuthState("state payload unreadable") from exc

        if payload.get("provider") != provider:
            raise InvalidOAuthState("state issued for a different provider")

        age = int(self._clock().timestamp()) - iat
        if self._ttl > 0 and age > self._ttl:
            raise InvalidOAuthState("state expired")
        return user_id

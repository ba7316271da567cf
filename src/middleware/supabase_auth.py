"""Supabase JWT verification middleware for FastAPI.

Validates the Bearer token on every request (except public routes),
extracts claims, and sets ``request.state.auth`` with the authenticated
user context that downstream route handlers consume via ``get_current_user``.

Supabase signs access tokens with the project's HS256 JWT secret, so
verification is local; no network round-trip per request.
"""

from __future__ import annotations

import logging
import re
import uuid
from typing import Any

import jwt as pyjwt
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.config import Settings, get_settings
from src.dependencies import AuthContext

logger = logging.getLogger("ritual.auth")

# Paths that do not require authentication
PUBLIC_PATHS: set[str] = {
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}

# Provider webhooks carry their own HMAC; the OAuth callback is a browser
# redirect whose identity rides in the signed ``state``.
_PUBLIC_PATTERNS = (
    re.compile(r"^/api/v1/webhooks/[^/]+$"),
    re.compile(r"^/api/v1/integrations/[^/]+/callback$"),
)


def _is_public(path: str) -> bool:
    if path in PUBLIC_PATHS or path.startswith("/docs") or path.startswith("/redoc"):
        return True
    return any(p.match(path) for p in _PUBLIC_PATTERNS)


def _unauthorized(detail: str) -> Response:
    return Response(
        content=f'{{"detail":"{detail}"}}',
        status_code=401,
        media_type="application/json",
    )


class SupabaseAuthMiddleware(BaseHTTPMiddleware):
    """Verify Supabase-issued JWTs and populate request.state.auth."""

    def __init__(self, app: Any, settings: Settings | None = None) -> None:
        super().__init__(app)
        self._settings = settings or get_settings()

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if _is_public(request.url.path):
            return await call_next(request)

        # OPTIONS requests pass through (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return _unauthorized("Missing or invalid Authorization header")

        token = auth_header.removeprefix("Bearer ").strip()

        try:
            payload = pyjwt.decode(
                token,
                self._settings.supabase_jwt_secret,
                algorithms=["HS256"],
                audience=self._settings.supabase_jwt_audience,
            )
        except pyjwt.ExpiredSignatureError:
            return _unauthorized("Token expired")
        except pyjwt.InvalidTokenError as exc:
            logger.warning("JWT validation failed: %s", exc)
            return _unauthorized("Invalid token")

        try:
            user_id = uuid.UUID(payload.get("sub", ""))
        except (AttributeError, TypeError, ValueError):
            logger.warning("JWT sub is not a UUID: %r", payload.get("sub"))
            return _unauthorized("Invalid token subject")

        request.state.auth = AuthContext(
            user_id=user_id,
            email=payload.get("email"),
            role=payload.get("role"),
            session_id=payload.get("session_id"),
        )

        return await call_next(request)

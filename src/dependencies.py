"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.integrations.runtime import IntegrationRuntime


@dataclass(frozen=True)
class AuthContext:
    """Authenticated user context extracted from a Supabase JWT."""

    user_id: uuid.UUID  # auth.users.id (the token's ``sub``)
    email: str | None = None
    role: str | None = None
    session_id: str | None = None


async def get_current_user(request: Request) -> AuthContext:
    """Extract the authenticated user from the request state.

    The Supabase auth middleware sets ``request.state.auth`` before routes run.
    """
    auth: AuthContext | None = getattr(request.state, "auth", None)
    if auth is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return auth


def get_runtime(request: Request) -> IntegrationRuntime:
    runtime: IntegrationRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Integration runtime not ready")
    return runtime


# Annotated shortcuts for route signatures
CurrentUser = Annotated[AuthContext, Depends(get_current_user)]
Runtime = Annotated[IntegrationRuntime, Depends(get_runtime)]

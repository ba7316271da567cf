"""Provider connection, sync and recovery endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, NoReturn

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import RedirectResponse

from src.dependencies import CurrentUser, Runtime
from src.integrations.errors import (
    AuthExpired,
    IntegrationError,
    InvalidOAuthState,
    InvalidSyncRange,
    NotConnected,
    ProviderRequestFailed,
    SequenceConflict,
    UnknownProvider,
)
from src.models.base import APIResponse
from src.models.integrations import ConnectRequest, SyncRequest, SyncResult

router = APIRouter(prefix="/integrations", tags=["integrations"])
logger = logging.getLogger("ritual.routers.integrations")

# Order matters: ProviderUnavailable is a ProviderRequestFailed.
_STATUS_FOR: list[tuple[type[Exception], int]] = [
    (UnknownProvider, 404),
    (NotConnected, 400),
    (InvalidSyncRange, 400),
    (InvalidOAuthState, 400),
    (AuthExpired, 409),
    (SequenceConflict, 409),
    (ProviderRequestFailed, 502),
]


def _raise_http(exc: IntegrationError) -> NoReturn:
    for exc_type, status in _STATUS_FOR:
        if isinstance(exc, exc_type):
            raise HTTPException(status_code=status, detail=str(exc)) from exc
    logger.exception("Unhandled integration error")
    raise HTTPException(status_code=500, detail="Integration error") from exc


# ---------- Connections ----------

@router.get("", response_model=APIResponse)
async def list_integrations(user: CurrentUser, runtime: Runtime) -> Any:
    statuses = await runtime.connections.list_integrations(user.user_id)
    return APIResponse(data=[s.model_dump(mode="json") for s in statuses])


@router.get("/{provider}/auth-url", response_model=APIResponse)
async def get_auth_url(provider: str, user: CurrentUser, runtime: Runtime) -> Any:
    try:
        result = runtime.connections.authorization_url(user.user_id, provider)
    except IntegrationError as exc:
        _raise_http(exc)
    return APIResponse(data=result.model_dump())


@router.post("/{provider}/connect", response_model=APIResponse)
async def connect(
    provider: str, body: ConnectRequest, user: CurrentUser, runtime: Runtime
) -> Any:
    try:
        record = await runtime.connections.connect_with_code(
            user.user_id, provider, body.code, body.redirect_uri
        )
    except IntegrationError as exc:
        _raise_http(exc)
    return APIResponse(
        data={
            "provider": record.provider,
            "connected": True,
            "connected_at": record.connected_at.isoformat(),
            "external_user_id": record.external_user_id,
        },
        message=f"{provider} connected",
    )


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    runtime: Runtime,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> RedirectResponse:
    """Browser redirect target; always answers with a deep-link redirect."""
    connections = runtime.connections
    if error or not code or not state:
        reason = error or "missing code or state"
        logger.warning("OAuth callback for %s without a usable code: %s", provider, reason)
        return RedirectResponse(connections.deep_link(provider, False, reason), status_code=302)

    try:
        await connections.complete_authorization(provider, code, state)
    except IntegrationError as exc:
        logger.warning("OAuth callback for %s failed: %s", provider, exc)
        return RedirectResponse(connections.deep_link(provider, False, str(exc)), status_code=302)
    except Exception:
        # The browser only ever sees the deep link.
        logger.exception("OAuth callback for %s crashed", provider)
        return RedirectResponse(
            connections.deep_link(provider, False, "Connection failed"), status_code=302
        )
    return RedirectResponse(connections.deep_link(provider, True), status_code=302)


@router.delete("/{provider}", response_model=APIResponse)
async def disconnect(provider: str, user: CurrentUser, runtime: Runtime) -> Any:
    try:
        await runtime.connections.disconnect(user.user_id, provider)
    except NotConnected as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except IntegrationError as exc:
        _raise_http(exc)
    return APIResponse(message=f"{provider} disconnected")


# ---------- Sync ----------

@router.post("/{provider}/sync", response_model=APIResponse)
async def sync(
    provider: str,
    user: CurrentUser,
    runtime: Runtime,
    body: SyncRequest | None = None,
) -> Any:
    body = body or SyncRequest()
    try:
        summary = await runtime.sync.sync_range(
            user.user_id, provider, body.start_date, body.end_date
        )
    except IntegrationError as exc:
        _raise_http(exc)

    result = SyncResult(
        provider=summary.provider,
        start_date=summary.start_date,
        end_date=summary.end_date,
        workouts_found=summary.found,
        workouts_imported=summary.imported,
        already_imported=summary.already_imported,
        imported_ids=summary.imported_ids,
        errors=summary.errors,
    )
    return APIResponse(
        data=result.model_dump(mode="json"),
        message=f"Imported {summary.imported} of {summary.found} workouts",
    )


# ---------- Recovery ----------

@router.get("/{provider}/recovery", response_model=APIResponse)
async def recovery(
    provider: str,
    user: CurrentUser,
    runtime: Runtime,
    day: date | None = Query(default=None, alias="date"),
) -> Any:
    try:
        summary = await runtime.connections.recovery_summary(user.user_id, provider, day)
    except IntegrationError as exc:
        _raise_http(exc)
    return APIResponse(data=summary.model_dump(mode="json"))

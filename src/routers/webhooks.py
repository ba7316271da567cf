"""Provider webhook endpoints.

Public (no bearer token): each delivery is authenticated by the
provider's HMAC signature header instead.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from src.dependencies import Runtime
from src.integrations.adapters.strava import StravaAdapter
from src.integrations.errors import UnknownProvider

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger("ritual.webhooks")


@router.get("/strava")
async def strava_subscription_handshake(
    runtime: Runtime,
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> dict:
    """Answer Strava's push-subscription validation request."""
    challenge = StravaAdapter.verify_subscription(
        hub_mode,
        hub_verify_token,
        hub_challenge,
        runtime.settings.strava_webhook_verify_token,
    )
    if challenge is None:
        logger.warning("Strava subscription handshake rejected (mode=%s)", hub_mode)
        raise HTTPException(status_code=403, detail="Verification failed")
    logger.info("Strava subscription handshake accepted")
    return {"hub.challenge": challenge}


@router.post("/{provider}")
async def provider_webhook(provider: str, request: Request, runtime: Runtime) -> JSONResponse:
    """Receive a provider event.

    401 on signature failure, 400 on an unreadable payload, otherwise 200
    with ``{"received": true}`` whatever happens downstream.
    """
    adapter = runtime.adapters.get(provider)
    if adapter is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider: {provider}")

    body = await request.body()
    signature = request.headers.get(adapter.SIGNATURE_HEADER)

    try:
        ack = await runtime.gateway.receive(provider, body, signature)
    except UnknownProvider as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(status_code=ack.status_code, content=ack.body)


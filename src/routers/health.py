"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.services.supabase import ping

router = APIRouter(tags=["system"])
logger = logging.getLogger("ritual.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight DB connectivity check when running on Postgres.
    """
    runtime = getattr(request.app.state, "runtime", None)
    settings = runtime.settings if runtime else None

    if settings is not None and settings.store_backend == "memory":
        database = "memory"
        healthy = True
    else:
        healthy = False
        try:
            healthy = await ping()
        except Exception as exc:
            logger.warning("Health check DB probe failed: %s", exc)
        database = "connected" if healthy else "unreachable"

    return {
        "status": "healthy" if healthy else "degraded",
        "version": settings.app_version if settings else None,
        "environment": settings.environment if settings else None,
        "database": database,
        "providers": sorted(runtime.adapters) if runtime else [],
        "pending_webhooks": runtime.gateway.pending if runtime else 0,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

"""Daily Ritual API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import Settings, get_settings
from src.integrations.runtime import IntegrationRuntime, build_runtime
from src.integrations.store import InMemoryStore, PostgresStore
from src.middleware.supabase_auth import SupabaseAuthMiddleware
from src.routers import health, integrations, webhooks
from src.services.supabase import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("ritual")


# ---------- App factory ----------

def create_app(
    settings: Settings | None = None,
    runtime: IntegrationRuntime | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Overrides ``get_settings()`` (tests).
        runtime:  Pre-built integration runtime (tests); when given, the
                  lifespan hook opens no pool and no HTTP client.
    """
    settings = settings or (runtime.settings if runtime else get_settings())
    logging.getLogger().setLevel(settings.log_level.upper())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup / shutdown hooks."""
        logger.info(
            "Starting %s API v%s [%s, store=%s]",
            settings.app_name,
            settings.app_version,
            settings.environment,
            settings.store_backend,
        )
        if runtime is not None:
            app.state.runtime = runtime
            yield
            await runtime.gateway.drain()
            return

        if settings.store_backend == "postgres":
            store = PostgresStore(await init_pool(settings))
        else:
            logger.warning("Using in-memory store; data is lost on restart")
            store = InMemoryStore()

        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
            app.state.runtime = build_runtime(settings, store, http_client=client)
            try:
                yield
            finally:
                await app.state.runtime.gateway.drain()
                if settings.store_backend == "postgres":
                    await close_pool()
        logger.info("%s API shut down", settings.app_name)

    app = FastAPI(
        title=f"{settings.app_name} API",
        description=(
            "Fitness integration sync: provider OAuth, webhook ingestion and "
            "workout import into the training schedule and reflections."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (the last one added runs outermost) ----------

    # Supabase JWT authentication
    app.add_middleware(SupabaseAuthMiddleware, settings=settings)

    # CORS is added last so it wraps auth and answers preflight (and 401s) with CORS headers
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(webhooks.router, prefix=v1_prefix)
    app.include_router(integrations.router, prefix=v1_prefix)

    return app


app = create_app()

"""Sanitas Sync API: FastAPI application entry point.

Run locally:
    uvicorn src.main:app --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI

from src.config import Settings, get_settings
from src.routers import health, sync
from src.sanitas.base import HealthStore
from src.sanitas.stores import (
    CredentialStore,
    InMemoryHealthStore,
    JsonFileKeyValueStore,
    PostgresHealthStore,
)
from src.sanitas.sync.orchestrator import SyncOrchestrator
from src.sanitas.sync.scheduler import SyncScheduler
from src.services.database import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("sanitas")


async def _build_health_store(settings: Settings) -> HealthStore:
    if not settings.database_url:
        logger.info("DATABASE_URL not set; health records kept in memory")
        return InMemoryHealthStore()
    await init_pool(settings)
    store = PostgresHealthStore()
    await store.ensure_schema()
    return store


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings: Settings = app.state.settings
    logging.getLogger("sanitas").setLevel(settings.log_level.upper())
    logger.info(
        "Starting Sanitas Sync v%s [%s]",
        settings.app_version,
        settings.environment,
    )

    credential_store = CredentialStore(JsonFileKeyValueStore(settings.state_path))
    await credential_store.ensure_device_id()
    health_store = await _build_health_store(settings)
    http_client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    orchestrator = SyncOrchestrator.from_settings(
        settings, credential_store, health_store, http_client=http_client
    )
    scheduler = SyncScheduler(orchestrator, interval_minutes=settings.sync_interval_minutes)

    app.state.credential_store = credential_store
    app.state.health_store = health_store
    app.state.orchestrator = orchestrator
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        scheduler.start()

    yield

    await scheduler.stop()
    await http_client.aclose()
    await close_pool()
    logger.info("Sanitas Sync shut down")


# ---------- App factory ----------

def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Sanitas Sync API",
        description=(
            "Synchronizes Sanitas scale measurements (weight, body fat, bone, "
            "lean and water mass) into a local health-record store."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(sync.router, prefix="/api/v1")

    return app


app = create_app()

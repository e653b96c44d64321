"""Health check endpoint. Public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.dependencies import AppSettings, Orchestrator, Scheduler
from src.services import database

router = APIRouter(tags=["system"])
logger = logging.getLogger("sanitas.health")


@router.get("/health")
async def health_check(settings: AppSettings, orchestrator: Orchestrator, scheduler: Scheduler) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    Also performs a lightweight DB connectivity check when the Postgres
    health store is configured.
    """
    db_status = "not_configured"
    if database.is_initialized():
        try:
            pool = database.get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            db_status = "connected"
        except Exception as exc:
            logger.warning("Health check DB probe failed: %s", exc)
            db_status = "unreachable"

    return {
        "status": "degraded" if db_status == "unreachable" else "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": db_status,
        "scheduler": "running" if scheduler.is_running else "stopped",
        "sync_in_progress": orchestrator.is_running,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

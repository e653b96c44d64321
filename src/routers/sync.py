"""Sync control endpoints: credentials, manual sync, status, scheduler toggle."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from src.dependencies import CredentialStoreDep, Orchestrator, Scheduler, require_api_token
from src.models.base import ErrorDetail
from src.models.sync import (
    CredentialsRead,
    CredentialsUpdate,
    SchedulerStatusRead,
    SyncRequest,
    SyncResultRead,
    SyncStatusRead,
)
from src.sanitas.sync.scheduler import SyncScheduler

router = APIRouter(
    tags=["sync"],
    dependencies=[Depends(require_api_token)],
    responses={401: {"model": ErrorDetail}},
)
logger = logging.getLogger("sanitas.api")


def _scheduler_status(scheduler: SyncScheduler) -> SchedulerStatusRead:
    return SchedulerStatusRead(
        running=scheduler.is_running,
        interval_minutes=scheduler.interval.total_seconds() / 60,
        last_tick_at=scheduler.last_tick_at,
        next_tick_at=scheduler.next_tick_at,
    )


# ---------- Credentials ----------

@router.get("/credentials", response_model=CredentialsRead)
async def get_credentials(store: CredentialStoreDep) -> CredentialsRead:
    credentials = await store.load_credentials()
    if credentials is None:
        return CredentialsRead(configured=False)
    return CredentialsRead(
        configured=True,
        email=credentials.email,
        device_id=credentials.device_id,
    )


@router.put("/credentials", response_model=CredentialsRead)
async def save_credentials(body: CredentialsUpdate, store: CredentialStoreDep) -> CredentialsRead:
    credentials = await store.save_credentials(body.email, body.password)
    logger.info("Credentials saved for %s", credentials.email)
    return CredentialsRead(
        configured=True,
        email=credentials.email,
        device_id=credentials.device_id,
    )


# ---------- Sync ----------

@router.post("/sync", response_model=SyncResultRead)
async def trigger_sync(orchestrator: Orchestrator, body: SyncRequest | None = None) -> SyncResultRead:
    """Run a sync now and return its result (manual runs by default)."""
    is_automatic = body.is_automatic if body else False
    result = await orchestrator.run_sync(is_automatic=is_automatic)
    return SyncResultRead.model_validate(result)


@router.get("/sync/status", response_model=SyncStatusRead)
async def sync_status(
    orchestrator: Orchestrator, scheduler: Scheduler, store: CredentialStoreDep
) -> SyncStatusRead:
    last = orchestrator.last_result
    return SyncStatusRead(
        last_sync_at=await store.load_cursor(),
        sync_in_progress=orchestrator.is_running,
        last_result=SyncResultRead.model_validate(last) if last else None,
        scheduler=_scheduler_status(scheduler),
    )


@router.post(
    "/sync/scheduler/start",
    response_model=SchedulerStatusRead,
    responses={400: {"model": ErrorDetail}},
)
async def start_scheduler(scheduler: Scheduler, store: CredentialStoreDep) -> SchedulerStatusRead:
    if await store.load_credentials() is None:
        raise HTTPException(status_code=400, detail="Configure credentials first")
    scheduler.start()
    return _scheduler_status(scheduler)


@router.post("/sync/scheduler/stop", response_model=SchedulerStatusRead)
async def stop_scheduler(scheduler: Scheduler) -> SchedulerStatusRead:
    await scheduler.stop()
    return _scheduler_status(scheduler)

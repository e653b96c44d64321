"""Pydantic models for the sync control API: credentials, results, status."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import ConfigDict, EmailStr, Field

from src.models.base import SanitasBase
from src.sanitas.base import RecordKind, SyncStage


# ---------- Credentials ----------

class CredentialsUpdate(SanitasBase):
    # Passwords are stored exactly as typed
    model_config = ConfigDict(str_strip_whitespace=False)

    email: EmailStr
    password: str = Field(min_length=1)


class CredentialsRead(SanitasBase):
    configured: bool
    email: str | None = None
    device_id: uuid.UUID | None = None


# ---------- Sync ----------

class SyncRequest(SanitasBase):
    is_automatic: bool = False


class SyncResultRead(SanitasBase):
    success: bool
    record_count: int
    message: str
    stage: SyncStage
    is_automatic: bool
    dedup_degraded: bool = False
    failed_kinds: list[RecordKind] = Field(default_factory=list)
    cursor: datetime | None = None
    finished_at: datetime


class SchedulerStatusRead(SanitasBase):
    running: bool
    interval_minutes: float
    last_tick_at: datetime | None = None
    next_tick_at: datetime | None = None


class SyncStatusRead(SanitasBase):
    last_sync_at: datetime | None = None
    sync_in_progress: bool
    last_result: SyncResultRead | None = None
    scheduler: SchedulerStatusRead

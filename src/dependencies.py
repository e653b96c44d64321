"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings
from src.sanitas.stores import CredentialStore
from src.sanitas.sync.orchestrator import SyncOrchestrator
from src.sanitas.sync.scheduler import SyncScheduler


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


def get_credential_store(request: Request) -> CredentialStore:
    return request.app.state.credential_store


async def require_api_token(request: Request) -> None:
    """Reject requests without the configured bearer token.

    Open access when ``API_TOKEN`` is unset (local single-user deployments).
    """
    expected = get_app_settings(request).api_token
    if not expected:
        return
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    token = auth_header.removeprefix("Bearer ").strip()
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Invalid token")


# Annotated shortcuts for route signatures
AppSettings = Annotated[Settings, Depends(get_app_settings)]
Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
Scheduler = Annotated[SyncScheduler, Depends(get_scheduler)]
CredentialStoreDep = Annotated[CredentialStore, Depends(get_credential_store)]

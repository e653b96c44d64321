"""End-to-end sync run for one device/user pair.

Stages, each short-circuiting to a failed ``SyncResult``:

1. load_state      — credentials + cursor from the key-value store
2. authenticate    — vendor login
3. download        — encrypted download of every scale measurement
4. dedup           — cursor filter, then exact-time match against stored Weight
5. transform       — vendor measurement → canonical records
6. persist         — one batch write per record kind, failures isolated per kind
7. advance_cursor  — cursor := max(now, previous cursor)

``run_sync`` never raises.  At most one run is in flight; a concurrent call
returns "sync already in progress" immediately.  The whole run is bounded by
a wall-clock budget; on expiry the partial write count is reported and the
cursor is left alone unless it had already been committed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable
from uuid import UUID

import httpx

from src.config import Settings
from src.sanitas.base import (
    DeviceMetadata,
    HealthRecord,
    HealthStore,
    RecordKind,
    SyncResult,
    SyncStage,
    VendorMeasurement,
)
from src.sanitas.client import SanitasClient
from src.sanitas.crypto import CryptoEngine, load_public_key
from src.sanitas.errors import (
    MissingCredentialsError,
    SanitasSyncError,
    StoreReadError,
    StoreWriteError,
    SyncTimeoutError,
)
from src.sanitas.stores import CredentialStore
from src.sanitas.sync.dedup import dedup_window, drop_existing, filter_since_cursor
from src.sanitas.transformer import group_by_kind, transform

logger = logging.getLogger("sanitas.sync.orchestrator")

SYNC_IN_PROGRESS = "sync already in progress"

CryptoFactory = Callable[[], CryptoEngine]
DeviceFactory = Callable[[UUID], DeviceMetadata]
ClientFactory = Callable[[CryptoEngine, DeviceMetadata], SanitasClient]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _RunState:
    """Mutable progress of one run, readable after a timeout."""

    is_automatic: bool
    stage: SyncStage = SyncStage.load_state
    cursor: datetime | None = None
    written: int = 0
    failed_kinds: list[RecordKind] = field(default_factory=list)
    dedup_degraded: bool = False


class SyncOrchestrator:
    """Drive one sync run at a time against the vendor and the health store.

    Usage::

        orchestrator = SyncOrchestrator(credential_store, health_store)
        result = await orchestrator.run_sync(is_automatic=False)

    Args:
        credential_store: Credentials and cursor access.
        health_store:     Target store for canonical records.
        crypto_factory:   Builds a fresh ``CryptoEngine`` per run.  Defaults to
                          the vendor key with the vendor-compatible generator.
        device_factory:   Builds the phone identity for a device id.
        client_factory:   Builds the protocol client for a run.
        http_client:      Optional shared httpx client for the default client factory.
        timeout_seconds:  Wall-clock budget for a whole run.
        http_timeout_seconds: Per-request timeout for the default client factory.
        device_tz:        Zone for naive vendor timestamps.
        clock:            Source of "now" for the cursor.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        health_store: HealthStore,
        crypto_factory: CryptoFactory | None = None,
        device_factory: DeviceFactory | None = None,
        client_factory: ClientFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 25.0,
        http_timeout_seconds: float = 15.0,
        device_tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._credentials = credential_store
        self._health_store = health_store
        self._crypto_factory = crypto_factory or self._default_crypto
        self._device_factory = device_factory or (lambda device_id: DeviceMetadata(device_id=device_id))
        self._client_factory = client_factory or self._default_client
        self._http_client = http_client
        self._timeout = timeout_seconds
        self._http_timeout = http_timeout_seconds
        self._device_tz = device_tz
        self._clock = clock
        self._lock = asyncio.Lock()
        self._public_key = None
        self.last_result: SyncResult | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        credential_store: CredentialStore,
        health_store: HealthStore,
        **kwargs: Any,
    ) -> SyncOrchestrator:
        """Build an orchestrator whose device identity and budgets come from ``settings``."""
        from zoneinfo import ZoneInfo

        def device_factory(device_id: UUID) -> DeviceMetadata:
            return DeviceMetadata(
                device_id=device_id,
                os_version=settings.device_os_version,
                phone_model=settings.device_model,
                device_name=settings.device_name,
                brand=settings.device_brand,
                timezone=settings.device_timezone,
                app_culture=settings.app_culture,
            )

        kwargs.setdefault("device_factory", device_factory)
        kwargs.setdefault("timeout_seconds", settings.sync_timeout_seconds)
        kwargs.setdefault("http_timeout_seconds", settings.http_timeout_seconds)
        kwargs.setdefault("device_tz", ZoneInfo(settings.device_timezone))
        return cls(credential_store, health_store, **kwargs)

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run_sync(self, is_automatic: bool = True) -> SyncResult:
        """Run the full pipeline once.  Always returns a result."""
        if self._lock.locked():
            logger.info("Sync requested (automatic=%s) while another run is in flight", is_automatic)
            return SyncResult(success=False, message=SYNC_IN_PROGRESS, is_automatic=is_automatic)

        async with self._lock:
            run = _RunState(is_automatic=is_automatic)
            logger.info("Sync run starting (automatic=%s)", is_automatic)
            try:
                result = await asyncio.wait_for(self._run(run), timeout=self._timeout)
            except asyncio.TimeoutError:
                timeout = SyncTimeoutError(f"sync timed out during {run.stage.value}")
                logger.warning(
                    "Sync run exceeded %.1fs budget during %s (%d records written)",
                    self._timeout, run.stage.value, run.written,
                )
                result = self._failed(run, str(timeout))
            except SanitasSyncError as exc:
                logger.warning("Sync run failed during %s: %s", run.stage.value, exc)
                result = self._failed(run, str(exc))
            except Exception as exc:
                logger.exception("Unexpected error during %s", run.stage.value)
                result = self._failed(run, f"unexpected error: {exc}")

            self.last_result = result
            logger.info(
                "Sync run finished: success=%s records=%d stage=%s message=%r",
                result.success, result.record_count, result.stage.value, result.message,
            )
            return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, run: _RunState) -> SyncResult:
        credentials = await self._credentials.load_credentials()
        if credentials is None:
            raise MissingCredentialsError()
        cursor = await self._credentials.load_cursor()
        run.cursor = cursor

        run.stage = SyncStage.authenticate
        crypto = self._crypto_factory()
        client = self._client_factory(crypto, self._device_factory(credentials.device_id))
        session = await client.login(credentials)

        run.stage = SyncStage.download
        raw_measurements = await client.download(session, run.is_automatic)
        measurements = self._parse(raw_measurements)

        run.stage = SyncStage.dedup
        candidates = filter_since_cursor(measurements, cursor)
        candidates = await self._dedup(run, candidates)

        run.stage = SyncStage.transform
        records = [
            record
            for measurement in candidates
            if not measurement.is_deleted
            for record in transform(measurement)
        ]

        run.stage = SyncStage.persist
        batches = group_by_kind(records)
        await self._persist(run, batches)

        run.stage = SyncStage.advance_cursor
        new_cursor = self._clock()
        if cursor is not None and cursor > new_cursor:
            new_cursor = cursor
        await self._credentials.save_cursor(new_cursor)
        run.cursor = new_cursor

        run.stage = SyncStage.done
        all_failed = bool(batches) and len(run.failed_kinds) == len(batches)
        return SyncResult(
            success=not all_failed,
            record_count=run.written,
            message=self._summary(run),
            stage=run.stage,
            is_automatic=run.is_automatic,
            dedup_degraded=run.dedup_degraded,
            failed_kinds=list(run.failed_kinds),
            cursor=run.cursor,
        )

    def _parse(self, raw_measurements: list[dict[str, Any]]) -> list[VendorMeasurement]:
        measurements = []
        for raw in raw_measurements:
            measurement = VendorMeasurement.from_vendor(raw, self._device_tz)
            if measurement is None:
                logger.warning("Skipping vendor measurement without a usable timestamp")
                continue
            measurements.append(measurement)
        return measurements

    async def _dedup(
        self, run: _RunState, candidates: list[VendorMeasurement]
    ) -> list[VendorMeasurement]:
        window = dedup_window(candidates)
        if window is None:
            logger.info("No measurements newer than cursor %s", run.cursor)
            return []
        try:
            existing = await self._health_store.read(RecordKind.weight, *window)
        except StoreReadError as exc:
            run.dedup_degraded = True
            logger.warning(
                "Dedup degraded: health store read failed (%s); writing %d measurements without dedup",
                exc, len(candidates),
            )
            return candidates
        return drop_existing(candidates, existing)

    async def _persist(
        self, run: _RunState, batches: dict[RecordKind, list[HealthRecord]]
    ) -> None:
        for kind, batch in batches.items():
            try:
                inserted = await self._health_store.write(kind, batch)
            except StoreWriteError as exc:
                run.failed_kinds.append(kind)
                logger.error("Write of %d %s records failed: %s", len(batch), kind.value, exc)
                continue
            run.written += inserted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _default_crypto(self) -> CryptoEngine:
        if self._public_key is None:
            self._public_key = load_public_key()
        return CryptoEngine(public_key=self._public_key)

    def _default_client(self, crypto: CryptoEngine, device: DeviceMetadata) -> SanitasClient:
        return SanitasClient(
            crypto,
            device,
            http_client=self._http_client,
            timeout_seconds=self._http_timeout,
        )

    @staticmethod
    def _summary(run: _RunState) -> str:
        message = f"{run.written} records written" if run.written else "no new measurements"
        if run.failed_kinds:
            message += "; failed to write " + ", ".join(k.value for k in run.failed_kinds)
        if run.dedup_degraded:
            message += " (dedup skipped)"
        return message

    @staticmethod
    def _failed(run: _RunState, message: str) -> SyncResult:
        return SyncResult(
            success=False,
            record_count=run.written,
            message=message,
            stage=run.stage,
            is_automatic=run.is_automatic,
            dedup_degraded=run.dedup_degraded,
            failed_kinds=list(run.failed_kinds),
            cursor=run.cursor,
        )

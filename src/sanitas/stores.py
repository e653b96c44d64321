"""Key-value and health-record store implementations.

Key-value stores hold the vendor credentials, the install device id and the
sync cursor as plain strings.  ``CredentialStore`` is the typed facade the
orchestrator and the control API use on top of them.

Health stores:
    InMemoryHealthStore — process-local, used in development and tests
    PostgresHealthStore — ``health_records`` table via the asyncpg pool
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path

import asyncpg

from src.sanitas.base import (
    Credentials,
    HealthRecord,
    HealthStore,
    KeyValueStore,
    RecordKind,
    Unit,
)
from src.sanitas.errors import StoreReadError, StoreWriteError
from src.services import database

logger = logging.getLogger("sanitas.stores")

# Connection-level failures from the pool, the driver or the server
_DB_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    RuntimeError,
    asyncio.TimeoutError,
)

EMAIL_KEY = "sanitas_email"
PASSWORD_KEY = "sanitas_password"
DEVICE_ID_KEY = "sanitas_device_id"
LAST_SYNC_KEY = "sanitas_last_sync"


# ---------------------------------------------------------------------------
# Key-value stores
# ---------------------------------------------------------------------------


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileKeyValueStore(KeyValueStore):
    """Key-value store persisted as one JSON object on disk.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a crash never leaves a half-written file.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read)
            data[key] = value
            await asyncio.to_thread(self._write, data)

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError:
                logger.warning("State file %s is corrupt; starting empty", self._path)
                return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise


class CredentialStore:
    """Typed access to credentials and the sync cursor.

    Usage::

        creds = CredentialStore(JsonFileKeyValueStore("~/.sanitas/state.json"))
        await creds.save_credentials("me@example.com", "secret")
        cursor = await creds.load_cursor()
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def load_credentials(self) -> Credentials | None:
        """Return stored credentials, or None if any part is missing."""
        email = await self._kv.get(EMAIL_KEY)
        password = await self._kv.get(PASSWORD_KEY)
        device_id = await self._kv.get(DEVICE_ID_KEY)
        if not email or not password or not device_id:
            return None
        try:
            parsed_id = uuid.UUID(device_id)
        except ValueError:
            logger.warning("Stored device id %r is not a UUID", device_id)
            return None
        return Credentials(email=email, password=password, device_id=parsed_id)

    async def ensure_device_id(self) -> uuid.UUID:
        """Return the install device id, generating it on first use only."""
        existing = await self._kv.get(DEVICE_ID_KEY)
        if existing:
            try:
                return uuid.UUID(existing)
            except ValueError:
                logger.warning("Replacing malformed stored device id %r", existing)
        device_id = uuid.uuid4()
        await self._kv.set(DEVICE_ID_KEY, str(device_id))
        logger.info("Generated new device id %s", device_id)
        return device_id

    async def save_credentials(self, email: str, password: str) -> Credentials:
        device_id = await self.ensure_device_id()
        await self._kv.set(EMAIL_KEY, email)
        await self._kv.set(PASSWORD_KEY, password)
        return Credentials(email=email, password=password, device_id=device_id)

    async def load_cursor(self) -> datetime | None:
        raw = await self._kv.get(LAST_SYNC_KEY)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Ignoring unparseable sync cursor %r (full sync)", raw)
            return None

    async def save_cursor(self, value: datetime) -> None:
        await self._kv.set(LAST_SYNC_KEY, value.isoformat())


# ---------------------------------------------------------------------------
# Health stores
# ---------------------------------------------------------------------------


class InMemoryHealthStore(HealthStore):
    """Process-local health store keyed by ``(kind, time)``."""

    def __init__(self) -> None:
        self._records: dict[tuple[RecordKind, datetime], HealthRecord] = {}

    async def read(
        self, kind: RecordKind, start: datetime, end: datetime
    ) -> list[HealthRecord]:
        return sorted(
            (r for (k, t), r in self._records.items() if k == kind and start <= t <= end),
            key=lambda r: r.time,
        )

    async def write(self, kind: RecordKind, records: list[HealthRecord]) -> int:
        for record in records:
            if record.kind != kind:
                raise StoreWriteError(kind.value, f"batch contains a {record.kind.value} record")
        inserted = 0
        for record in records:
            key = (record.kind, record.time)
            if key not in self._records:
                self._records[key] = record
                inserted += 1
        return inserted

    def all_records(self) -> list[HealthRecord]:
        return sorted(self._records.values(), key=lambda r: (r.time, r.kind.value))


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS health_records (
    kind        TEXT        NOT NULL,
    recorded_at TIMESTAMPTZ NOT NULL,
    value       DOUBLE PRECISION NOT NULL,
    unit        TEXT        NOT NULL,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (kind, recorded_at)
)
"""

# RETURNING yields only the rows actually inserted
_INSERT_BATCH = """
INSERT INTO health_records (kind, recorded_at, value, unit)
SELECT $1, r.recorded_at, r.value, r.unit
FROM unnest($2::timestamptz[], $3::float8[], $4::text[]) AS r(recorded_at, value, unit)
ON CONFLICT (kind, recorded_at) DO NOTHING
RETURNING recorded_at
"""


class PostgresHealthStore(HealthStore):
    """Health records in Postgres, one row per ``(kind, recorded_at)``.

    Inserts use ``ON CONFLICT DO NOTHING`` so a degraded (no-dedup) run can
    never create duplicate rows here.
    """

    async def ensure_schema(self) -> None:
        await database.execute(_CREATE_TABLE)
        logger.info("health_records table ready")

    async def read(
        self, kind: RecordKind, start: datetime, end: datetime
    ) -> list[HealthRecord]:
        try:
            rows = await database.fetch(
                "SELECT kind, recorded_at, value, unit FROM health_records "
                "WHERE kind = $1 AND recorded_at BETWEEN $2 AND $3 ORDER BY recorded_at",
                kind.value,
                start,
                end,
            )
        except _DB_ERRORS as exc:
            raise StoreReadError(f"Could not read {kind.value} records: {exc}") from exc
        return [
            HealthRecord(
                kind=RecordKind(row["kind"]),
                time=row["recorded_at"],
                value=float(row["value"]),
                unit=Unit(row["unit"]),
            )
            for row in rows
        ]

    async def write(self, kind: RecordKind, records: list[HealthRecord]) -> int:
        if not records:
            return 0
        try:
            async with database.get_connection() as conn:
                rows = await conn.fetch(
                    _INSERT_BATCH,
                    kind.value,
                    [r.time for r in records],
                    [r.value for r in records],
                    [r.unit.value for r in records],
                )
        except _DB_ERRORS as exc:
            raise StoreWriteError(kind.value, str(exc)) from exc
        skipped = len(records) - len(rows)
        if skipped:
            logger.info("Skipped %d %s records already stored", skipped, kind.value)
        return len(rows)

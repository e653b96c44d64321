"""Domain types and store interfaces for the Sanitas sync pipeline.

The vendor delivers one ``VendorMeasurement`` per scale reading.  The
transformer turns each into zero to five ``HealthRecord`` entries, which are
the only shape the health store ever sees.  ``KeyValueStore`` and
``HealthStore`` are the two external collaborators the orchestrator talks to.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any
from uuid import UUID

logger = logging.getLogger("sanitas")


# ---------------------------------------------------------------------------
# Credentials / session
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Credentials:
    """Vendor account credentials plus the stable install identity.

    Attributes:
        email:     Vendor account login.
        password:  Vendor account password (never logged).
        device_id: UUIDv4 generated once per install.
    """

    email: str
    password: str
    device_id: UUID

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, device_id={self.device_id})"


@dataclass(frozen=True)
class SessionToken:
    """Ephemeral login result, used once to authorize the download call."""

    final_identifier: str
    user_access_token: str

    @property
    def authorization(self) -> str:
        return f"Android#{self.final_identifier}#{self.user_access_token}"

    def __repr__(self) -> str:
        return f"SessionToken(final_identifier={self.final_identifier!r})"


@dataclass(frozen=True)
class DeviceMetadata:
    """Phone identity fields sent with the login and download requests.

    Attributes:
        device_id:   Install UUID from the credential store.
        os_version:  Android version string (e.g. "14").
        phone_model: Device model (e.g. "Pixel 7").
        device_name: User-visible device name.
        brand:       Manufacturer (e.g. "Google").
        timezone:    IANA timezone name of the device.
        app_culture: App locale reported to the vendor.
    """

    device_id: UUID
    os_version: str = "14"
    phone_model: str = "Pixel 7"
    device_name: str = "Pixel 7"
    brand: str = "Google"
    timezone: str = "UTC"
    app_culture: str = "fr-FR"

    @property
    def device_info(self) -> str:
        """Legacy ``DeviceInfo`` string expected by the download endpoint."""
        return (
            f"Manufacturer:{self.brand}#Model:{self.phone_model}"
            f"#Android Version:{self.os_version}#App Culture:{self.app_culture}"
            f"#Device Culture:{self.timezone}#Wi-fi:true#Mobile Data:false"
        )


# ---------------------------------------------------------------------------
# Measurements / canonical records
# ---------------------------------------------------------------------------


class RecordKind(str, Enum):
    weight = "Weight"
    body_fat = "BodyFat"
    bone_mass = "BoneMass"
    lean_body_mass = "LeanBodyMass"
    body_water_mass = "BodyWaterMass"


class Unit(str, Enum):
    kilograms = "kg"
    percent = "%"


def _safe_float(value: object) -> float | None:
    """Coerce a vendor numeric field; None, zero and garbage count as absent."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number or None


def parse_vendor_time(value: str | None, tz: tzinfo = timezone.utc) -> datetime | None:
    """Parse a vendor timestamp into an aware UTC datetime.

    Naive timestamps are interpreted in ``tz`` (the phone's local zone, as the
    vendor app reports wall-clock times).  Returns None when unparseable.
    """
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        logger.warning("Could not parse vendor timestamp: %r", value)
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class VendorMeasurement:
    """One scale reading as delivered by the vendor.

    Any numeric field may be None; a missing field suppresses the record
    kinds derived from it.
    """

    measurement_time: datetime
    weight_kg: float | None = None
    body_fat_pct: float | None = None
    bone_mass_kg: float | None = None
    muscle_pct: float | None = None
    water_pct: float | None = None
    is_deleted: bool = False

    @classmethod
    def from_vendor(
        cls, raw: dict[str, Any], tz: tzinfo = timezone.utc
    ) -> VendorMeasurement | None:
        """Build from a ``scaleMeasurement`` entry; None if it has no usable time."""
        measured_at = parse_vendor_time(raw.get("MeasurementTimeWithDate"), tz)
        if measured_at is None:
            return None
        return cls(
            measurement_time=measured_at,
            weight_kg=_safe_float(raw.get("WeightKg")),
            body_fat_pct=_safe_float(raw.get("BodyFatPct")),
            bone_mass_kg=_safe_float(raw.get("BoneMassKg")),
            muscle_pct=_safe_float(raw.get("MusclePct")),
            water_pct=_safe_float(raw.get("WaterPct")),
            is_deleted=bool(raw.get("IsDeleted", False)),
        )


@dataclass(frozen=True)
class HealthRecord:
    """Canonical body-composition entry written to the health store.

    Attributes:
        kind:  One of the five record kinds.
        time:  Aware UTC timestamp of the scale reading.
        value: Numeric value in ``unit``.
        unit:  ``kg`` for masses, ``%`` for body fat.
    """

    kind: RecordKind
    time: datetime
    value: float
    unit: Unit

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "time": self.time.isoformat(),
            "value": self.value,
            "unit": self.unit.value,
        }


# ---------------------------------------------------------------------------
# Sync result
# ---------------------------------------------------------------------------


class SyncStage(str, Enum):
    load_state = "load_state"
    authenticate = "authenticate"
    download = "download"
    dedup = "dedup"
    transform = "transform"
    persist = "persist"
    advance_cursor = "advance_cursor"
    done = "done"


@dataclass
class SyncResult:
    """Terminal outcome of one sync run.  Always returned, never raised.

    Attributes:
        success:        True when the download+transform phase succeeded.
        record_count:   Records actually written across successful kinds.
        message:        Human-readable status for the control surface.
        stage:          Last stage reached.
        is_automatic:   True for scheduler-triggered runs.
        dedup_degraded: True when the health-store read failed and dedup was skipped.
        failed_kinds:   Record kinds whose batch write failed.
        cursor:         Cursor value after the run (None if never synced).
        finished_at:    UTC completion time.
    """

    success: bool
    record_count: int = 0
    message: str = ""
    stage: SyncStage = SyncStage.done
    is_automatic: bool = False
    dedup_degraded: bool = False
    failed_kinds: list[RecordKind] = field(default_factory=list)
    cursor: datetime | None = None
    finished_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class KeyValueStore(ABC):
    """Opaque string key-value store holding credentials and the sync cursor."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the stored value or None."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""


class HealthStore(ABC):
    """Target health-data store.

    Implementations raise ``StoreReadError`` / ``StoreWriteError`` so the
    orchestrator can apply its degrade and per-kind isolation rules.
    """

    @abstractmethod
    async def read(
        self, kind: RecordKind, start: datetime, end: datetime
    ) -> list[HealthRecord]:
        """Return records of ``kind`` with ``start <= time <= end``."""

    @abstractmethod
    async def write(self, kind: RecordKind, records: list[HealthRecord]) -> int:
        """Persist one batch of records, all of the same ``kind``.

        Records whose ``(kind, time)`` is already stored are skipped.

        Returns:
            Number of records actually inserted.
        """

"""Client-side deduplication for vendor measurements.

The vendor always returns the full history and the health store has no
upsert, so duplicates are prevented here:

1. drop measurements at or before the sync cursor
2. read existing Weight records in the candidates' time range ±1 minute
3. drop candidates whose timestamp exactly matches an existing record
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from src.sanitas.base import HealthRecord, VendorMeasurement

logger = logging.getLogger("sanitas.sync.dedup")

DEDUP_WINDOW_FUZZ = timedelta(minutes=1)


def filter_since_cursor(
    measurements: Iterable[VendorMeasurement], cursor: datetime | None
) -> list[VendorMeasurement]:
    """Keep measurements strictly newer than ``cursor`` (all of them if None)."""
    if cursor is None:
        return list(measurements)
    return [m for m in measurements if m.measurement_time > cursor]


def dedup_window(
    measurements: list[VendorMeasurement],
    fuzz: timedelta = DEDUP_WINDOW_FUZZ,
) -> tuple[datetime, datetime] | None:
    """Return the ``(start, end)`` range to query, or None for no candidates."""
    if not measurements:
        return None
    times = [m.measurement_time for m in measurements]
    return min(times) - fuzz, max(times) + fuzz


def drop_existing(
    measurements: list[VendorMeasurement], existing: Iterable[HealthRecord]
) -> list[VendorMeasurement]:
    """Drop measurements whose timestamp equals an existing record's."""
    seen = {record.time for record in existing}
    kept = [m for m in measurements if m.measurement_time not in seen]
    dropped = len(measurements) - len(kept)
    if dropped:
        logger.debug("Dedup dropped %d already-stored measurements", dropped)
    return kept

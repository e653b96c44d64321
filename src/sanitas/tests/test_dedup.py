"""Tests for cursor filtering and exact-timestamp dedup."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from src.sanitas.base import HealthRecord, RecordKind, Unit, VendorMeasurement
from src.sanitas.sync.dedup import (
    DEDUP_WINDOW_FUZZ,
    dedup_window,
    drop_existing,
    filter_since_cursor,
)

T0 = datetime(2024, 3, 1, 7, 30, tzinfo=timezone.utc)
T1 = datetime(2024, 3, 2, 7, 45, tzinfo=timezone.utc)


def _m(when: datetime) -> VendorMeasurement:
    return VendorMeasurement(measurement_time=when, weight_kg=70.0)


class TestFilterSinceCursor:
    def test_no_cursor_keeps_everything(self) -> None:
        assert filter_since_cursor([_m(T0), _m(T1)], None) == [_m(T0), _m(T1)]

    def test_strictly_newer_only(self) -> None:
        kept = filter_since_cursor([_m(T0), _m(T1)], T0)
        assert kept == [_m(T1)]

    def test_cursor_after_everything(self) -> None:
        assert filter_since_cursor([_m(T0), _m(T1)], T1 + timedelta(seconds=1)) == []


class TestDedupWindow:
    def test_empty(self) -> None:
        assert dedup_window([]) is None

    def test_spans_candidates_with_fuzz(self) -> None:
        start, end = dedup_window([_m(T1), _m(T0)])
        assert start == T0 - DEDUP_WINDOW_FUZZ
        assert end == T1 + DEDUP_WINDOW_FUZZ
        assert DEDUP_WINDOW_FUZZ == timedelta(minutes=1)


class TestDropExisting:
    def test_exact_match_dropped(self) -> None:
        existing = [HealthRecord(RecordKind.weight, T0, 70.0, Unit.kilograms)]
        assert drop_existing([_m(T0), _m(T1)], existing) == [_m(T1)]

    def test_near_match_kept(self) -> None:
        existing = [HealthRecord(RecordKind.weight, T0 + timedelta(seconds=30), 70.0, Unit.kilograms)]
        assert drop_existing([_m(T0)], existing) == [_m(T0)]

    def test_nothing_existing(self) -> None:
        assert drop_existing([_m(T0)], []) == [_m(T0)]

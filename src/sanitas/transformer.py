"""Vendor measurement → canonical health record conversion.

Pure functions only: no I/O, no clock, no logging side effects.

Derivation table (one row per produced kind):

    Weight         weight_kg                      kg
    BodyFat        body_fat_pct                   %
    BoneMass       bone_mass_kg                   kg
    LeanBodyMass   weight_kg * muscle_pct / 100   kg, 2 decimals
    BodyWaterMass  weight_kg * water_pct / 100    kg, 2 decimals

Deleted measurements produce nothing.
"""

from __future__ import annotations

from typing import Iterable

from src.sanitas.base import HealthRecord, RecordKind, Unit, VendorMeasurement

KIND_ORDER: tuple[RecordKind, ...] = (
    RecordKind.weight,
    RecordKind.body_fat,
    RecordKind.bone_mass,
    RecordKind.lean_body_mass,
    RecordKind.body_water_mass,
)


def derived_mass(weight_kg: float, pct: float) -> float:
    """Mass share of total weight, rounded to 2 decimals."""
    return round(weight_kg * pct / 100, 2)


def transform(measurement: VendorMeasurement) -> list[HealthRecord]:
    """Convert one vendor measurement into 0–5 health records.

    Args:
        measurement: Parsed vendor reading.

    Returns:
        Records in ``KIND_ORDER``; empty for deleted readings.
    """
    if measurement.is_deleted:
        return []

    time = measurement.measurement_time
    weight = measurement.weight_kg
    records: list[HealthRecord] = []

    if weight is not None:
        records.append(HealthRecord(RecordKind.weight, time, weight, Unit.kilograms))
    if measurement.body_fat_pct is not None:
        records.append(
            HealthRecord(RecordKind.body_fat, time, measurement.body_fat_pct, Unit.percent)
        )
    if measurement.bone_mass_kg is not None:
        records.append(
            HealthRecord(RecordKind.bone_mass, time, measurement.bone_mass_kg, Unit.kilograms)
        )
    if weight is not None and measurement.muscle_pct is not None:
        records.append(
            HealthRecord(
                RecordKind.lean_body_mass,
                time,
                derived_mass(weight, measurement.muscle_pct),
                Unit.kilograms,
            )
        )
    if weight is not None and measurement.water_pct is not None:
        records.append(
            HealthRecord(
                RecordKind.body_water_mass,
                time,
                derived_mass(weight, measurement.water_pct),
                Unit.kilograms,
            )
        )
    return records


def group_by_kind(records: Iterable[HealthRecord]) -> dict[RecordKind, list[HealthRecord]]:
    """Group records per kind, keeping ``KIND_ORDER`` and dropping empty kinds."""
    grouped: dict[RecordKind, list[HealthRecord]] = {kind: [] for kind in KIND_ORDER}
    for record in records:
        grouped[record.kind].append(record)
    return {kind: batch for kind, batch in grouped.items() if batch}

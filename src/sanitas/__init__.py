"""Sanitas scale → health store synchronization.

Subpackages:
    sync/  — Orchestrator, scheduler, client-side deduplication

Core modules:
    base        — Domain dataclasses and store interfaces
    crypto      — OpenSSL-compatible salted AES + RSA key wrap
    client      — Vendor login/download protocol
    transformer — Vendor measurement → canonical health records
    stores      — Key-value and health-record store implementations
    errors      — Exception taxonomy
"""

from src.sanitas.base import (
    Credentials,
    HealthRecord,
    HealthStore,
    KeyValueStore,
    RecordKind,
    SyncResult,
    VendorMeasurement,
)
from src.sanitas.crypto import CryptoEngine, DecryptionFailure
from src.sanitas.transformer import transform

__all__ = [
    "Credentials",
    "CryptoEngine",
    "DecryptionFailure",
    "HealthRecord",
    "HealthStore",
    "KeyValueStore",
    "RecordKind",
    "SyncResult",
    "VendorMeasurement",
    "transform",
]

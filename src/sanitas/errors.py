"""Exception taxonomy for the Sanitas sync pipeline.

Every failure is raised at its origin as one of these types and converted
into a ``SyncResult`` at the orchestrator boundary.  Only ``StoreReadError``
(dedup degrades) and ``StoreWriteError`` (per record kind) are non-fatal to
a run.
"""

from __future__ import annotations


class SanitasSyncError(Exception):
    """Base class for all sync pipeline errors."""


class MissingCredentialsError(SanitasSyncError):
    """Email, password or device id is not stored yet."""

    def __init__(self, message: str = "missing credentials") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------


class CryptoError(SanitasSyncError):
    """Base class for crypto layer failures."""


class KeyLoadError(CryptoError):
    """The embedded vendor RSA public key could not be parsed."""


class EncryptionError(CryptoError):
    """RSA wrapping or AES encryption failed."""


class CryptoCompositionError(CryptoError):
    """Building the encrypted request envelope failed."""


# ---------------------------------------------------------------------------
# Vendor protocol
# ---------------------------------------------------------------------------


class ProtocolStateError(SanitasSyncError):
    """A protocol call was issued out of order (e.g. download before login)."""


class AuthError(SanitasSyncError):
    """The vendor rejected the login or the login call could not complete.

    Attributes:
        reason: Server-provided ``UserStatus`` or a transport description.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Auth error: {reason}")


class TransportError(SanitasSyncError):
    """The download call failed at the HTTP layer.

    Attributes:
        status: HTTP status code, or None when no response was received.
    """

    def __init__(self, status: int | None, detail: str = "") -> None:
        self.status = status
        self.detail = detail
        if status is None:
            message = f"Download transport error: {detail or 'no response'}"
        else:
            message = f"Download HTTP error {status}"
        super().__init__(message)


class DecryptionError(SanitasSyncError):
    """The download response could not be decrypted or decoded."""

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__(f"Decryption error: {reason}" if reason else "Decryption error")


# ---------------------------------------------------------------------------
# Stores / run
# ---------------------------------------------------------------------------


class StoreReadError(SanitasSyncError):
    """Reading existing records from the health store failed."""


class StoreWriteError(SanitasSyncError):
    """Writing one record kind's batch to the health store failed."""

    def __init__(self, kind: str, detail: str = "") -> None:
        self.kind = kind
        super().__init__(f"Failed to write {kind} records: {detail}" if detail else f"Failed to write {kind} records")


class SyncTimeoutError(SanitasSyncError):
    """The run exceeded its wall-clock budget."""

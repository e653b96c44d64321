"""Sanitas cloud protocol client.

Two calls, both fixed by the vendor's Android app:

    POST /auth/login/                      — plain JSON, returns a session
    POST /synchronization/downloadData/    — crypto envelope in, salted armor out

The download request always asks for everything since 1990 with every
``*LastCount`` counter at zero.  The server has no real incremental
download, so all filtering happens client side; the request shape must stay
identical to the vendor client's.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx

from src.sanitas.base import Credentials, DeviceMetadata, SessionToken
from src.sanitas.crypto import SOURCE_PLATFORM, VERSION_NUMBER, CryptoEngine, DecryptionFailure
from src.sanitas.errors import (
    AuthError,
    DecryptionError,
    ProtocolStateError,
    TransportError,
)

logger = logging.getLogger("sanitas.client")

SANITAS_API_BASE = "https://sync.connect-sanitas-online.de"
LOGIN_URL = f"{SANITAS_API_BASE}/auth/login/"
DOWNLOAD_URL = f"{SANITAS_API_BASE}/synchronization/downloadData/"

LEGACY_SYNC_FLOOR = "1990-01-01T00:00:00.000"

# Every table counter the vendor client sends; the server ignores most of them.
_LAST_COUNT_FIELDS = (
    "ASSettingsLastCount",
    "DeviceClassDurationSettingsLastCount",
    "GlucoseMeasurementLastCount",
    "GlucoseSettingsLastCount",
    "MeasurementMedicationRefLastCount",
    "MeasurementsLastCount",
    "MedicationLastCount",
    "ScaleMeasurementLastCount",
    "UserLastCount",
    "SettingsLastCount",
    "UserDevicesLastCount",
    "UserTargetWeightLastCount",
    "UserWHRManagementLastCount",
    "DeviceClientDetailsLastCount",
    "DeviceClientRelationshipLastCount",
    "ASMeasurementsLastCount",
    "ASMeasurementDetailsLastCount",
    "SleepDetailsLastCount",
    "SleepMasterLastCount",
    "WeightSettingsLastCount",
    "PdfExportStatisticsLastCount",
    "UserProfilePicLastCount",
    "UserDeviceLoginHistoryLastCount",
    "DeviceLastCount",
)


class ClientState(str, Enum):
    idle = "idle"
    authenticated = "authenticated"
    downloaded = "downloaded"
    failed = "failed"


def build_login_body(credentials: Credentials, device: DeviceMetadata) -> dict[str, Any]:
    return {
        "SourcePlatform": SOURCE_PLATFORM,
        "PhoneModel": device.phone_model,
        "password": credentials.password,
        "OS": "Android",
        "DeviceId": str(credentials.device_id),
        "OsVersion": device.os_version,
        "timeZone": device.timezone,
        "PlatForm": "Android",
        "userName": credentials.email,
        "VersionNumber": VERSION_NUMBER,
        "Name": device.device_name,
    }


def build_download_body(
    session: SessionToken,
    device: DeviceMetadata,
    is_automatic: bool,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the fixed-shape download request object.

    Args:
        session:      Login result.
        device:       Phone identity fields.
        is_automatic: True for scheduler-triggered runs.
        now:          Client clock override (tests).

    Returns:
        Plain dict, JSON-encoded and encrypted by the caller.
    """
    client_time = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    body: dict[str, Any] = {name: 0 for name in _LAST_COUNT_FIELDS}
    body.update(
        {
            "SourcePlateform": SOURCE_PLATFORM,
            "LastSyncDateForDownlaodTables": LEGACY_SYNC_FLOOR,
            "CurrentPlateformVersions": f"AN{VERSION_NUMBER}",
            "SourcePrefix": "AN000******",
            "VersionNumber": VERSION_NUMBER,
            "ImageDownloadSource": "IPhone",
            "FinalIdentifier": session.final_identifier,
            "IsAutomaticSync": 1 if is_automatic else 0,
            "ClientDateTime": client_time.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "exception_log": "",
            "DeviceInfo": device.device_info,
        }
    )
    return body


class SanitasClient:
    """Stateful client for one sync run: ``idle → authenticated → downloaded``.

    Args:
        crypto:          Per-run crypto engine.
        device:          Phone identity fields.
        http_client:     Optional pre-configured httpx client (for testing).
        timeout_seconds: Per-request timeout when no client is injected.
    """

    def __init__(
        self,
        crypto: CryptoEngine,
        device: DeviceMetadata,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        self._crypto = crypto
        self._device = device
        self._http_client = http_client
        self._timeout = timeout_seconds
        self.state = ClientState.idle

    async def login(self, credentials: Credentials) -> SessionToken:
        """Authenticate against the vendor.

        Raises:
            AuthError: On transport failure, non-2xx, or an invalid user.
        """
        logger.info("Sanitas: logging in (device %s)", credentials.device_id)
        try:
            response = await self._post(
                LOGIN_URL,
                content=json.dumps(build_login_body(credentials, self._device)),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as exc:
            self.state = ClientState.failed
            raise AuthError(f"login request failed: {exc.__class__.__name__}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success or data.get("IsValidUser") is not True:
            self.state = ClientState.failed
            reason = data.get("UserStatus") or f"HTTP {response.status_code}"
            logger.warning("Sanitas: login rejected (%s)", reason)
            raise AuthError(str(reason))

        final_identifier = data.get("FinalIdentifier")
        access_token = data.get("UserAccessToken")
        if not final_identifier or not access_token:
            self.state = ClientState.failed
            raise AuthError("login response missing session identifiers")

        session = SessionToken(
            final_identifier=str(final_identifier),
            user_access_token=str(access_token),
        )
        self.state = ClientState.authenticated
        return session

    async def download(
        self, session: SessionToken, is_automatic: bool
    ) -> list[dict[str, Any]]:
        """Download all scale measurements for the logged-in user.

        The cursor plays no part in the request; the server always returns
        the full history and the orchestrator filters locally.

        Raises:
            ProtocolStateError: If called before a successful login.
            TransportError:     On transport failure or non-2xx status.
            DecryptionError:    If the response cannot be decrypted or parsed.
        """
        if self.state is not ClientState.authenticated:
            raise ProtocolStateError(f"download() requires login, client is {self.state.value}")

        body = build_download_body(session, self._device, is_automatic)
        envelope = self._crypto.build_encrypted_request(json.dumps(body))

        try:
            response = await self._post(
                DOWNLOAD_URL,
                content=json.dumps(envelope),
                headers={
                    "Authorization": session.authorization,
                    "Content-Type": "application/json; charset=UTF-8",
                },
            )
        except httpx.HTTPError as exc:
            self.state = ClientState.failed
            raise TransportError(None, exc.__class__.__name__) from exc

        if not response.is_success:
            self.state = ClientState.failed
            logger.error(
                "Sanitas: download HTTP %d, body starts with %r",
                response.status_code,
                response.text[:200],
            )
            raise TransportError(response.status_code)

        plaintext = self._crypto.decrypt_response(response.text.strip())
        if isinstance(plaintext, DecryptionFailure):
            self.state = ClientState.failed
            raise DecryptionError(plaintext.reason)

        try:
            payload = json.loads(plaintext)
        except ValueError as exc:
            self.state = ClientState.failed
            raise DecryptionError("decrypted body is not JSON") from exc
        if not isinstance(payload, dict):
            self.state = ClientState.failed
            raise DecryptionError("decrypted body is not a JSON object")

        measurements = payload.get("scaleMeasurement") or []
        if not isinstance(measurements, list):
            self.state = ClientState.failed
            raise DecryptionError("scaleMeasurement is not a list")
        self.state = ClientState.downloaded
        logger.info("Sanitas: downloaded %d scale measurements", len(measurements))
        return [m for m in measurements if isinstance(m, dict)]

    # ------------------------------------------------------------------
    # Private HTTP helper
    # ------------------------------------------------------------------

    async def _post(self, url: str, content: str, headers: dict[str, str]) -> httpx.Response:
        if self._http_client:
            return await self._http_client.post(url, content=content, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, content=content, headers=headers)

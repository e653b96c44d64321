"""Tests for the Sanitas protocol client against the mock cloud."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from src.sanitas.client import (
    DOWNLOAD_URL,
    LEGACY_SYNC_FLOOR,
    LOGIN_URL,
    ClientState,
    SanitasClient,
    build_download_body,
    build_login_body,
)
from src.sanitas.crypto import CryptoEngine
from src.sanitas.errors import AuthError, DecryptionError, ProtocolStateError, TransportError
from src.sanitas.tests.conftest import (
    TEST_ACCESS_TOKEN,
    TEST_DEVICE_ID,
    TEST_EMAIL,
    TEST_FINAL_IDENTIFIER,
    TEST_PASSWORD,
    WEIGH_IN_1,
    WEIGH_IN_2,
)


@pytest.fixture
def engine(rsa_public_key) -> CryptoEngine:
    return CryptoEngine(public_key=rsa_public_key)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class TestRequestBodies:
    def test_login_body(self, credentials, device) -> None:
        body = build_login_body(credentials, device)
        assert body["userName"] == TEST_EMAIL
        assert body["password"] == TEST_PASSWORD
        assert body["DeviceId"] == str(TEST_DEVICE_ID)
        assert body["SourcePlatform"] == "Android"
        assert body["VersionNumber"] == 190
        assert body["PhoneModel"] == "Pixel 7"

    def test_download_body_is_fixed_full_history(self, session_token, device) -> None:
        now = datetime(2024, 6, 1, 14, 0, 5, tzinfo=timezone.utc)
        body = build_download_body(session_token, device, is_automatic=True, now=now)
        last_counts = {k: v for k, v in body.items() if k.endswith("LastCount")}
        assert len(last_counts) == 24
        assert set(last_counts.values()) == {0}
        assert body["LastSyncDateForDownlaodTables"] == LEGACY_SYNC_FLOOR
        assert body["FinalIdentifier"] == TEST_FINAL_IDENTIFIER
        assert body["IsAutomaticSync"] == 1
        assert body["ClientDateTime"] == "2024-06-01T14:00:05Z"
        assert body["CurrentPlateformVersions"] == "AN190"
        assert body["DeviceInfo"].startswith("Manufacturer:Google#Model:Pixel 7")

    def test_manual_sync_flag(self, session_token, device) -> None:
        body = build_download_body(session_token, device, is_automatic=False)
        assert body["IsAutomaticSync"] == 0


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_returns_session(self, vendor, engine, device, credentials) -> None:
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)

        assert session.final_identifier == TEST_FINAL_IDENTIFIER
        assert session.user_access_token == TEST_ACCESS_TOKEN
        assert client.state is ClientState.authenticated
        sent = json.loads(vendor.requests[0].content)
        assert sent["userName"] == TEST_EMAIL

    @pytest.mark.asyncio
    async def test_invalid_user_carries_status(self, vendor, engine, device, credentials) -> None:
        vendor.login_response = {"IsValidUser": False, "UserStatus": "InvalidPassword"}
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            with pytest.raises(AuthError) as exc_info:
                await client.login(credentials)

        assert exc_info.value.reason == "InvalidPassword"
        assert str(exc_info.value) == "Auth error: InvalidPassword"
        assert client.state is ClientState.failed

    @pytest.mark.asyncio
    async def test_http_error_status(self, vendor, engine, device, credentials) -> None:
        vendor.login_status = 503
        vendor.login_response = {}
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            with pytest.raises(AuthError, match="HTTP 503"):
                await client.login(credentials)

    @pytest.mark.asyncio
    async def test_missing_identifiers(self, vendor, engine, device, credentials) -> None:
        vendor.login_response = {"IsValidUser": True, "UserStatus": "Active"}
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            with pytest.raises(AuthError):
                await client.login(credentials)

    @pytest.mark.asyncio
    async def test_transport_failure(self, engine, device, credentials) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as http:
            client = SanitasClient(engine, device, http_client=http)
            with pytest.raises(AuthError, match="ConnectError"):
                await client.login(credentials)


# ---------------------------------------------------------------------------
# Download
# ---------------------------------------------------------------------------


class TestDownload:
    @pytest.mark.asyncio
    async def test_download_before_login(self, engine, device, session_token) -> None:
        client = SanitasClient(engine, device)
        with pytest.raises(ProtocolStateError):
            await client.download(session_token, is_automatic=False)

    @pytest.mark.asyncio
    async def test_download_returns_measurements(self, vendor, engine, device, credentials) -> None:
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            measurements = await client.download(session, is_automatic=True)

        assert measurements == [WEIGH_IN_1, WEIGH_IN_2]
        assert client.state is ClientState.downloaded

    @pytest.mark.asyncio
    async def test_download_request_shape(self, vendor, engine, device, credentials) -> None:
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            await client.download(session, is_automatic=False)

        request = vendor.requests[-1]
        assert str(request.url) == DOWNLOAD_URL
        assert request.headers["Authorization"] == (
            f"Android#{TEST_FINAL_IDENTIFIER}#{TEST_ACCESS_TOKEN}"
        )
        envelope = json.loads(request.content)
        assert envelope["VersionNumber"] == 190
        assert envelope["SourcePlatform"] == "Android"

        body = vendor.download_requests[-1]
        assert body["ScaleMeasurementLastCount"] == 0
        assert body["LastSyncDateForDownlaodTables"] == "1990-01-01T00:00:00.000"
        assert body["IsAutomaticSync"] == 0

    @pytest.mark.asyncio
    async def test_empty_history(self, vendor, engine, device, credentials) -> None:
        vendor.measurements = []
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            assert await client.download(session, is_automatic=True) == []

    @pytest.mark.asyncio
    async def test_http_error(self, vendor, engine, device, credentials) -> None:
        vendor.download_status = 500
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            with pytest.raises(TransportError) as exc_info:
                await client.download(session, is_automatic=True)

        assert exc_info.value.status == 500
        assert client.state is ClientState.failed

    @pytest.mark.asyncio
    async def test_transport_failure(self, engine, device, credentials) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url) == LOGIN_URL:
                return httpx.Response(
                    200,
                    json={"IsValidUser": True, "FinalIdentifier": "F", "UserAccessToken": "T"},
                )
            raise httpx.ReadTimeout("timed out", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            with pytest.raises(TransportError) as exc_info:
                await client.download(session, is_automatic=True)

        assert exc_info.value.status is None

    @pytest.mark.asyncio
    async def test_undecryptable_body(self, vendor, engine, device, credentials) -> None:
        vendor.download_body = "<html>maintenance</html>"
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            with pytest.raises(DecryptionError):
                await client.download(session, is_automatic=True)

    @pytest.mark.asyncio
    async def test_non_json_plaintext(self, vendor, engine, device, credentials) -> None:
        vendor.download_body = engine.encrypt_payload("definitely not json")
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            with pytest.raises(DecryptionError, match="not JSON"):
                await client.download(session, is_automatic=True)

    @pytest.mark.asyncio
    async def test_measurements_not_a_list(self, vendor, engine, device, credentials) -> None:
        vendor.download_body = engine.encrypt_payload(json.dumps({"scaleMeasurement": 5}))
        async with vendor.client() as http:
            client = SanitasClient(engine, device, http_client=http)
            session = await client.login(credentials)
            with pytest.raises(DecryptionError, match="not a list"):
                await client.download(session, is_automatic=True)

        assert client.state is ClientState.failed

"""Shared fixtures and a mock Sanitas cloud for sync pipeline tests."""

from __future__ import annotations

import base64
import json
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric import rsa

from src.sanitas.base import Credentials, DeviceMetadata, SessionToken
from src.sanitas.client import DOWNLOAD_URL, LOGIN_URL
from src.sanitas.crypto import CryptoEngine
from src.sanitas.stores import (
    DEVICE_ID_KEY,
    EMAIL_KEY,
    PASSWORD_KEY,
    CredentialStore,
    InMemoryHealthStore,
    InMemoryKeyValueStore,
)

TEST_DEVICE_ID = UUID("12345678-1234-4678-9234-567812345678")
TEST_EMAIL = "user@example.com"
TEST_PASSWORD = "hunter2"
TEST_FINAL_IDENTIFIER = "FI-0042"
TEST_ACCESS_TOKEN = "token-abc"

# 65 lowercase hex chars, the shape the vendor expects for the AES password
FIXED_HEX_KEY = "0123456789abcdef" * 4 + "0"
FIXED_SALT = bytes.fromhex("0102030405060708")

TEST_NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

# Two readings in the vendor's naive local-time format
WEIGH_IN_1 = {
    "MeasurementTimeWithDate": "2024-03-01T07:30:00",
    "WeightKg": 70.0,
    "BodyFatPct": 20.0,
    "IsDeleted": False,
}
WEIGH_IN_2 = {
    "MeasurementTimeWithDate": "2024-03-02T07:45:00",
    "WeightKg": 80.0,
    "BodyFatPct": 22.5,
    "BoneMassKg": 3.2,
    "MusclePct": 35.0,
    "WaterPct": 48.125,
    "IsDeleted": False,
}


# ---------------------------------------------------------------------------
# Crypto fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """Throwaway keypair standing in for the vendor's server key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_public_key(rsa_private_key: rsa.RSAPrivateKey) -> rsa.RSAPublicKey:
    return rsa_private_key.public_key()


@pytest.fixture
def fixed_engine(rsa_public_key: rsa.RSAPublicKey) -> CryptoEngine:
    """Deterministic engine: fixed password and salt."""
    return CryptoEngine(
        public_key=rsa_public_key,
        key_generator=lambda: FIXED_HEX_KEY,
        salt_factory=lambda: FIXED_SALT,
    )


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(email=TEST_EMAIL, password=TEST_PASSWORD, device_id=TEST_DEVICE_ID)


@pytest.fixture
def device() -> DeviceMetadata:
    return DeviceMetadata(device_id=TEST_DEVICE_ID)


@pytest.fixture
def session_token() -> SessionToken:
    return SessionToken(final_identifier=TEST_FINAL_IDENTIFIER, user_access_token=TEST_ACCESS_TOKEN)


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    """Key-value store already holding a full set of credentials."""
    return InMemoryKeyValueStore(
        {
            EMAIL_KEY: TEST_EMAIL,
            PASSWORD_KEY: TEST_PASSWORD,
            DEVICE_ID_KEY: str(TEST_DEVICE_ID),
        }
    )


@pytest.fixture
def credential_store(kv_store: InMemoryKeyValueStore) -> CredentialStore:
    return CredentialStore(kv_store)


@pytest.fixture
def health_store() -> InMemoryHealthStore:
    return InMemoryHealthStore()


# ---------------------------------------------------------------------------
# Mock vendor
# ---------------------------------------------------------------------------


class MockSanitasCloud:
    """In-process stand-in for the vendor's login and download endpoints.

    The download handler unwraps the RSA-wrapped password with the test
    private key, decrypts the request body, and answers with salted armor
    encrypted under the same password, exactly like the real server.

    Attributes:
        measurements:     ``scaleMeasurement`` entries returned on download.
        login_response:   JSON body returned by the login endpoint.
        login_status:     HTTP status of the login endpoint.
        download_status:  HTTP status of the download endpoint.
        download_body:    Raw body override for the download endpoint.
        requests:         Every request received, in order.
        download_requests: Decrypted download request bodies.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey) -> None:
        self._private_key = private_key
        self.measurements: list[dict[str, Any]] = []
        self.login_response: dict[str, Any] = {
            "IsValidUser": True,
            "UserStatus": "Active",
            "FinalIdentifier": TEST_FINAL_IDENTIFIER,
            "UserAccessToken": TEST_ACCESS_TOKEN,
        }
        self.login_status = 200
        self.download_status = 200
        self.download_body: str | None = None
        self.requests: list[httpx.Request] = []
        self.download_requests: list[dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == LOGIN_URL:
            return httpx.Response(self.login_status, json=self.login_response)
        if url == DOWNLOAD_URL:
            return self._download(request)
        return httpx.Response(404, text="not found")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def login_count(self) -> int:
        return sum(1 for r in self.requests if str(r.url) == LOGIN_URL)

    @property
    def download_count(self) -> int:
        return sum(1 for r in self.requests if str(r.url) == DOWNLOAD_URL)

    def _download(self, request: httpx.Request) -> httpx.Response:
        envelope = json.loads(request.content)
        password = self._private_key.decrypt(
            base64.b64decode(envelope["key"]), asym_padding.PKCS1v15()
        ).decode("ascii")
        engine = CryptoEngine(
            public_key=self._private_key.public_key(),
            key_generator=lambda: password,
        )
        self.download_requests.append(json.loads(engine.decrypt_response(envelope["data"])))

        if self.download_status != 200:
            return httpx.Response(self.download_status, text="server error")
        if self.download_body is not None:
            return httpx.Response(200, text=self.download_body)
        body = engine.encrypt_payload(json.dumps({"scaleMeasurement": self.measurements}))
        return httpx.Response(200, text=body)


@pytest.fixture
def vendor(rsa_private_key: rsa.RSAPrivateKey) -> MockSanitasCloud:
    cloud = MockSanitasCloud(rsa_private_key)
    cloud.measurements = [dict(WEIGH_IN_1), dict(WEIGH_IN_2)]
    return cloud

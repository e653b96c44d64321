"""OpenSSL-compatible request/response crypto for the Sanitas sync API.

The vendor server speaks the legacy OpenSSL ``enc`` format:

    Base64( "Salted__" || salt[8] || AES-256-CBC(PKCS#7)(plaintext) )

with key and IV derived by ``EVP_BytesToKey`` using a single MD5 round over
a per-run password.  That password is a 65-character lowercase hex string,
sent alongside the payload RSA-encrypted (PKCS#1 v1.5) under a fixed vendor
public key.  None of this is negotiable; it must match the vendor's Java
client byte for byte.

The password generator is deliberately the weak, non-cryptographic one the
vendor client uses.  It sits behind the ``KeyGenerator`` seam so a stronger
source (``secure_hex_key``) can be swapped in without touching the wire
format.

Usage::

    engine = CryptoEngine()
    envelope = engine.build_encrypted_request(json.dumps(payload))
    ...
    plaintext = engine.decrypt_response(response.text)
    if isinstance(plaintext, DecryptionFailure):
        ...
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import random
import secrets
from dataclasses import dataclass
from typing import Callable

from cryptography.hazmat.primitives import padding, serialization
from cryptography.hazmat.primitives.asymmetric import padding as asym_padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from src.sanitas.errors import CryptoCompositionError, EncryptionError, KeyLoadError

logger = logging.getLogger("sanitas.crypto")

VERSION_NUMBER = 190
SOURCE_PLATFORM = "Android"

SALT_MAGIC = b"Salted__"
SALT_SIZE = 8
KEY_SIZE = 32  # AES-256
IV_SIZE = 16
AES_KEY_HEX_LENGTH = 65

_HEX_ALPHABET = "0123456789abcdef"

# Vendor public key shipped in the Android client's BuildConfig.
VENDOR_PUBLIC_KEY_PEM = b"""-----BEGIN PUBLIC KEY-----
MIICITANBgkqhkiG9w0BAQEFAAOCAg4AMIICCQKCAgByftMTABwxElbrP/T7aM2U
0TFQsDbrGe25eY8IC08sAY4JE1WHxbR/IJZZjpydp2Xxc2lOGmWvOIv8CrexYN1s
hRE8vQ7rvBiK5ulXhNHiQS/pAkApQbHHDh3t5B2xmIzVZ0nGx7eegU1Km8i6Fvn6
k57D2Dp3QN34516QDz2h1EvRCMXCtH0nxTSyKdrmoFhbfxYSUHzui+l9i+1lx1A8
efirbpyeXpBsEBsiQb6AWIOZ+IxIJCkfB7u5oM1m9KB7Ph7hf/LgH4vT+L0rK1J0
dm9X4qbLHlTuvR4Om6ywTIqpR/kLqOKSqx9gIkV4hVuRdKYUgFcYGiM12zXDT6i7
tJzTnb4knyVCycpcBTlc+OIFRmw0L96Nu6fz7xj1rqFtvQPqBxmgaqZQ8QIuAuXo
7AszwpQFARvXNGYi5uyH9bsL8QO2/wPA0JlyTi4ei4EkGK477tkGtvGrOmaEOEdg
RVKi7ERS7JxtMOH00W+9IlbsmhylFyDvUyz0zcaG2MpFaPQAsg6td2ym2oaNJov7
GRLUhYS+YWQgxYYM2B5ahu1q6EM02tjxDJrz60IC0ffiACVasokHLXYD13RL0p3S
LTFxX9hECG1XU6wgC2chDYXSRb5SapWllm1zl8BfEiCgIP3i/Axn3s8GUNFNfNZV
E+aSUgJ8mHTSdMlTE7xJKQIDAQAB
-----END PUBLIC KEY-----
"""

KeyGenerator = Callable[[], str]
SaltFactory = Callable[[], bytes]


# ---------------------------------------------------------------------------
# Key generation strategies
# ---------------------------------------------------------------------------


def weak_hex_key() -> str:
    """Return 65 lowercase hex chars from the non-cryptographic PRNG.

    Mirrors the vendor client.  Not a security guarantee.
    """
    return "".join(random.choice(_HEX_ALPHABET) for _ in range(AES_KEY_HEX_LENGTH))


def secure_hex_key() -> str:
    """Same length and alphabet as ``weak_hex_key``, from ``secrets``."""
    return "".join(secrets.choice(_HEX_ALPHABET) for _ in range(AES_KEY_HEX_LENGTH))


def random_salt() -> bytes:
    return os.urandom(SALT_SIZE)


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def evp_bytes_to_key(
    password: bytes,
    salt: bytes,
    key_len: int = KEY_SIZE,
    iv_len: int = IV_SIZE,
) -> tuple[bytes, bytes]:
    """OpenSSL ``EVP_BytesToKey`` with MD5 and a single iteration.

    D_1 = MD5(password || salt), D_i = MD5(D_{i-1} || password || salt);
    the concatenation is split into key then IV.

    Args:
        password: Raw password bytes (the hex key's ASCII bytes).
        salt:     8-byte salt.
        key_len:  Key length in bytes.
        iv_len:   IV length in bytes.

    Returns:
        (key, iv) tuple.
    """
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + password + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len : key_len + iv_len]


def load_public_key(pem: bytes = VENDOR_PUBLIC_KEY_PEM) -> RSAPublicKey:
    """Parse a PEM-encoded RSA public key.

    Raises:
        KeyLoadError: If the PEM is malformed or not an RSA key.
    """
    try:
        key = serialization.load_pem_public_key(pem)
    except (ValueError, TypeError) as exc:
        raise KeyLoadError(f"Could not load RSA public key: {exc}") from exc
    if not isinstance(key, RSAPublicKey):
        raise KeyLoadError(f"Expected an RSA public key, got {type(key).__name__}")
    return key


@dataclass(frozen=True)
class DecryptionFailure:
    """Returned by ``decrypt_response`` instead of raising on bad input."""

    reason: str

    def __bool__(self) -> bool:
        return False


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class CryptoEngine:
    """Per-run crypto context: one AES password, one vendor RSA key.

    Build a new engine for every sync run so the password is never reused.

    Args:
        public_key:    RSA public key used to wrap the password.  Defaults to
                       the embedded vendor key.
        key_generator: Produces the 65-char hex password.  Defaults to the
                       vendor-compatible weak generator.
        salt_factory:  Produces the 8-byte salt for each ``encrypt_payload``.
    """

    def __init__(
        self,
        public_key: RSAPublicKey | None = None,
        key_generator: KeyGenerator = weak_hex_key,
        salt_factory: SaltFactory = random_salt,
    ) -> None:
        self._public_key = public_key if public_key is not None else load_public_key()
        self._salt_factory = salt_factory
        self.aes_key_hex = key_generator()
        if len(self.aes_key_hex) != AES_KEY_HEX_LENGTH or any(
            c not in _HEX_ALPHABET for c in self.aes_key_hex
        ):
            raise ValueError(
                f"Key generator must return {AES_KEY_HEX_LENGTH} lowercase hex characters"
            )
        self._password = self.aes_key_hex.encode("ascii")

    def __repr__(self) -> str:
        return "CryptoEngine(aes_key_hex=<redacted>)"

    def wrap_key(self) -> str:
        """RSA-encrypt the hex password (PKCS#1 v1.5) and Base64 it.

        Raises:
            EncryptionError: If the plaintext does not fit the modulus.
        """
        try:
            wrapped = self._public_key.encrypt(self._password, asym_padding.PKCS1v15())
        except ValueError as exc:
            raise EncryptionError(f"RSA key wrap failed: {exc}") from exc
        return base64.b64encode(wrapped).decode("ascii")

    def encrypt_payload(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` into Base64 salted armor.

        Raises:
            EncryptionError: If the salt factory misbehaves.
        """
        salt = self._salt_factory()
        if len(salt) != SALT_SIZE:
            raise EncryptionError(f"Salt must be {SALT_SIZE} bytes, got {len(salt)}")

        key, iv = evp_bytes_to_key(self._password, salt)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return base64.b64encode(SALT_MAGIC + salt + ciphertext).decode("ascii")

    def decrypt_response(self, armored: str) -> str | DecryptionFailure:
        """Decrypt Base64 salted armor produced with this engine's password.

        Never raises on malformed input: returns a ``DecryptionFailure``
        marker that callers must check for.
        """
        try:
            raw = base64.b64decode(armored)
        except (binascii.Error, ValueError) as exc:
            return self._failure(f"invalid base64: {exc}", armored)

        if len(raw) < len(SALT_MAGIC) + SALT_SIZE or not raw.startswith(SALT_MAGIC):
            return self._failure("missing Salted__ header", armored)

        salt = raw[len(SALT_MAGIC) : len(SALT_MAGIC) + SALT_SIZE]
        ciphertext = raw[len(SALT_MAGIC) + SALT_SIZE :]
        if not ciphertext or len(ciphertext) % IV_SIZE:
            return self._failure(
                f"ciphertext length {len(ciphertext)} is not a positive multiple of {IV_SIZE}",
                armored,
            )

        key, iv = evp_bytes_to_key(self._password, salt)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        try:
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            return self._failure("bad PKCS#7 padding", armored)

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return self._failure("plaintext is not valid UTF-8", armored)

    def build_encrypted_request(self, plaintext_json: str) -> dict[str, object]:
        """Compose the download request envelope.

        Raises:
            CryptoCompositionError: If encryption or key wrapping fails.
        """
        try:
            data = self.encrypt_payload(plaintext_json)
            wrapped_key = self.wrap_key()
        except EncryptionError as exc:
            raise CryptoCompositionError(f"Could not build encrypted request: {exc}") from exc
        return {
            "data": data,
            "key": wrapped_key,
            "VersionNumber": VERSION_NUMBER,
            "SourcePlatform": SOURCE_PLATFORM,
        }

    @staticmethod
    def _failure(reason: str, armored: str) -> DecryptionFailure:
        logger.error(
            "Response decryption failed (%s); body starts with %r", reason, armored[:50]
        )
        return DecryptionFailure(reason)

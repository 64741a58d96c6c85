"""Payload encryption for provider traffic.

Uses Fernet symmetric encryption for request and response bodies. The
gateway treats the cipher as an opaque byte transform: ``encode`` before
sending, ``decode`` after receiving.

Environment variable INSURANCE_PAYLOAD_KEY holds the Fernet key. Generate with:
    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from cryptography.fernet import Fernet, InvalidToken

from ..config import PAYLOAD_ENCRYPTION_KEY
from ..errors import EncryptionError

logger = logging.getLogger(__name__)


class PayloadCipher(Protocol):
    """Opaque request/response transform."""

    def encode(self, payload: dict[str, Any]) -> bytes:
        """Serialize and encrypt a request payload."""
        ...

    def decode(self, data: bytes) -> dict[str, Any]:
        """Decrypt and deserialize a response payload."""
        ...


class FernetPayloadCipher:
    """JSON payloads encrypted with Fernet (AES-128-CBC with HMAC)."""

    def __init__(self, key: str | bytes) -> None:
        """Initialize the cipher.

        Args:
            key: URL-safe base64 Fernet key

        Raises:
            EncryptionError: If the key is malformed
        """
        if isinstance(key, str):
            key = key.encode()
        try:
            self._fernet = Fernet(key)
        except (ValueError, TypeError) as e:
            raise EncryptionError(f"Invalid payload encryption key: {e}") from e

    @classmethod
    def from_env(cls) -> "FernetPayloadCipher":
        """Build a cipher from INSURANCE_PAYLOAD_KEY.

        Raises:
            EncryptionError: If the variable is not set
        """
        if not PAYLOAD_ENCRYPTION_KEY:
            raise EncryptionError(
                "Encryption not configured. Set INSURANCE_PAYLOAD_KEY env var."
            )
        return cls(PAYLOAD_ENCRYPTION_KEY)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    def encode(self, payload: dict[str, Any]) -> bytes:
        try:
            plain = json.dumps(payload, separators=(",", ":"), default=str).encode()
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Payload is not serializable: {e}") from e
        return self._fernet.encrypt(plain)

    def decode(self, data: bytes) -> dict[str, Any]:
        try:
            plain = self._fernet.decrypt(data)
        except InvalidToken as e:
            raise EncryptionError("Invalid encrypted payload or wrong key") from e

        try:
            payload = json.loads(plain)
        except ValueError as e:
            raise EncryptionError(f"Decrypted payload is not JSON: {e}") from e

        if not isinstance(payload, dict):
            raise EncryptionError("Decrypted payload must be a JSON object")
        return payload

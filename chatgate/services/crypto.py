"""
CryptoBox - AES-256-GCM envelope encryption for user-supplied provider keys.

One master key per process (64 hex chars = 32 bytes). Every encryption draws
a fresh 96-bit nonce, so encrypting the same plaintext twice never yields the
same envelope.
"""

import base64
import binascii
import json
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from chatgate.config import MASTER_KEY_PATTERN
from chatgate.exceptions import ConfigError, DecryptError

NONCE_BYTES = 12


@dataclass(frozen=True)
class Envelope:
    """Nonce plus ciphertext (GCM tag appended)."""

    iv: bytes
    ciphertext: bytes

    def to_storage(self) -> str:
        """Serialize to the opaque column format: JSON with base64 iv and ct."""
        return json.dumps(
            {
                "iv": base64.b64encode(self.iv).decode("ascii"),
                "ct": base64.b64encode(self.ciphertext).decode("ascii"),
            }
        )

    @classmethod
    def from_storage(cls, raw: str) -> "Envelope":
        """Parse the column format. Anything unparseable is a DecryptError."""
        try:
            data = json.loads(raw)
            iv = base64.b64decode(data["iv"], validate=True)
            ciphertext = base64.b64decode(data["ct"], validate=True)
        except (ValueError, TypeError, KeyError, binascii.Error) as e:
            raise DecryptError("Malformed secret envelope") from e
        return cls(iv=iv, ciphertext=ciphertext)


class CryptoBox:
    """Encrypts and decrypts provider keys under the master key."""

    def __init__(self, master_key_hex: str | None) -> None:
        if not master_key_hex or not MASTER_KEY_PATTERN.fullmatch(master_key_hex):
            raise ConfigError("MASTER_KEY must be exactly 64 hex characters")
        self._aead = AESGCM(bytes.fromhex(master_key_hex))

    def encrypt(self, plaintext: str) -> Envelope:
        iv = os.urandom(NONCE_BYTES)
        ciphertext = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return Envelope(iv=iv, ciphertext=ciphertext)

    def decrypt(self, envelope: Envelope) -> str:
        """
        Authenticate and decrypt.

        Raises:
            DecryptError: Wrong key, tampered iv or ciphertext, or bad nonce length
        """
        if len(envelope.iv) != NONCE_BYTES:
            raise DecryptError("Malformed secret envelope")
        try:
            plaintext = self._aead.decrypt(envelope.iv, envelope.ciphertext, None)
        except InvalidTag as e:
            raise DecryptError() from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptError() from e


def encrypt(plaintext: str, master_key: str) -> Envelope:
    """One-shot encryption under ``master_key``."""
    return CryptoBox(master_key).encrypt(plaintext)


def decrypt(envelope: Envelope, master_key: str) -> str:
    """One-shot decryption under ``master_key``."""
    return CryptoBox(master_key).decrypt(envelope)

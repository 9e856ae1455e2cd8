"""
Vault Crypto Core — Key derivation, hashing, encryption/decryption.

Secret fields are sealed with an AEAD cipher under a key derived from the
tenant key supplied on each call:
    HKDF(tenant_key_vN, "navigator-vault-vN") → AES-GCM → [key_id|nonce|payload]
The envelope is base64 encoded so it can travel inside JSON snapshots.

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
    The engine keeps no key material between calls.
"""
import os
import struct
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from ..exceptions import InvalidKey, DecryptionFailed, ValidationError

logger = logging.getLogger("navigator.vault")

NONCE_SIZE = 12  # 96-bit nonce
KEY_ID_SIZE = 2  # uint16 big-endian
KEY_LENGTH = 32  # AES-256
TAG_SIZE = 16

CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


@dataclass(frozen=True, repr=False)
class TenantKey:
    """A versioned 32-byte key handed out by a key provider."""
    key_id: int
    material: bytes

    def __repr__(self) -> str:
        return f"<TenantKey v{self.key_id}>"


def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte encryption key using HKDF-SHA256.

    Args:
        seed: Input key material (master key or tenant key bytes).
        context: Context string for domain separation.

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # deterministic derivation: same seed and context, same key
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def _check_key(key: TenantKey) -> None:
    if not isinstance(key, TenantKey):
        raise InvalidKey("Encryption key must be a TenantKey")
    if not isinstance(key.material, bytes) or len(key.material) != KEY_LENGTH:
        raise InvalidKey(
            f"Encryption key must be exactly {KEY_LENGTH} bytes",
            {"key_id": key.key_id},
        )
    if not isinstance(key.key_id, int) or not 0 <= key.key_id <= 0xFFFF:
        raise InvalidKey("Key version must fit in an unsigned 16-bit integer")


class CryptoEngine:
    """Stateless symmetric encryption for secret fields.

    Only the cipher choice is bound at construction; keys are passed to
    every call and dropped when it returns.
    """

    def __init__(self, cipher_backend: str = "aesgcm"):
        try:
            self._cipher_cls = CIPHERS[cipher_backend.lower()]
        except KeyError:
            raise ValueError(
                f"Unsupported cipher backend: {cipher_backend}"
            ) from None

    @staticmethod
    def hash(secret: Union[str, bytes]) -> str:
        """Deterministic SHA-256 hex digest of an authentication secret."""
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        digest = hashes.Hash(hashes.SHA256())
        digest.update(secret)
        return digest.finalize().hex()

    def _cipher(self, key: TenantKey):
        derived = derive_key(key.material, f"navigator-vault-v{key.key_id}")
        return self._cipher_cls(derived)

    def encrypt(self, plaintext: str, key: TenantKey) -> str:
        """Encrypt plaintext with embedded key version.

        Format (before base64): [key_id 2B uint16 BE][nonce 12B][payload + tag]

        Raises:
            InvalidKey: If the key is malformed.
            ValidationError: If plaintext is not a string.
        """
        _check_key(key)
        if not isinstance(plaintext, str):
            raise ValidationError("plaintext must be str", {"type": type(plaintext).__name__})
        nonce = os.urandom(NONCE_SIZE)
        ct = self._cipher(key).encrypt(nonce, plaintext.encode("utf-8"), None)
        envelope = struct.pack("!H", key.key_id) + nonce + ct
        return base64.b64encode(envelope).decode("ascii")

    @staticmethod
    def _unpack(ciphertext: str) -> tuple[int, bytes, bytes]:
        try:
            envelope = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError, TypeError):
            raise DecryptionFailed("Ciphertext is not a valid envelope") from None
        _min = KEY_ID_SIZE + NONCE_SIZE + TAG_SIZE
        if len(envelope) < _min:
            raise DecryptionFailed(
                f"Ciphertext too short: {len(envelope)} bytes (minimum {_min})"
            )
        key_id = struct.unpack("!H", envelope[:KEY_ID_SIZE])[0]
        nonce = envelope[KEY_ID_SIZE:KEY_ID_SIZE + NONCE_SIZE]
        return key_id, nonce, envelope[KEY_ID_SIZE + NONCE_SIZE:]

    @classmethod
    def key_version(cls, ciphertext: str) -> int:
        """Return the key version embedded in a ciphertext."""
        return cls._unpack(ciphertext)[0]

    def decrypt(self, ciphertext: str, key: TenantKey) -> str:
        """Decrypt a ciphertext produced by ``encrypt``.

        Raises:
            InvalidKey: If the key is malformed.
            DecryptionFailed: On key mismatch, corruption or tampering.
        """
        _check_key(key)
        key_id, nonce, ct = self._unpack(ciphertext)
        if key_id != key.key_id:
            raise DecryptionFailed(
                "Ciphertext was sealed under a different key version",
                {"key_id": key_id, "supplied_key_id": key.key_id},
            )
        try:
            plaintext = self._cipher(key).decrypt(nonce, ct, None)
        except InvalidTag:
            raise DecryptionFailed(
                "Ciphertext failed authentication", {"key_id": key_id}
            ) from None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            raise DecryptionFailed("Decrypted payload is not UTF-8") from None

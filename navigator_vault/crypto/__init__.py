"""Vault Crypto — Sealing of secret fields at rest.

Security Note (Threat Model):
    Secrets are decrypted in process memory only for the call that reveals
    them; the engine and the store keep no plaintext afterwards. A memory
    dump taken during that call could expose the plaintext and the derived
    tenant key. Protecting master keys (HSM, KMS) is the key provider's
    responsibility.
"""

from .engine import CryptoEngine, TenantKey, derive_key
from .keys import KeyProvider, StaticKeyProvider
from .rotation import rotate_tenant_key

__all__ = [
    "CryptoEngine",
    "TenantKey",
    "derive_key",
    "KeyProvider",
    "StaticKeyProvider",
    "rotate_tenant_key",
]

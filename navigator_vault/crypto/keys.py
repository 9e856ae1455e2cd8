"""
Key Providers — where the Crypto Engine obtains tenant keys.

Storage of master keys, rotation policy and tenant isolation belong to the
provider. The vault core only asks for the active key of a tenant (to
encrypt) or for a specific version (to decrypt an older ciphertext).

Security Note:
    Never log key material. Only log key IDs and version numbers.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..config import VaultConfig, load_master_keys, get_active_key_id
from ..exceptions import InvalidKey
from .engine import TenantKey, derive_key

logger = logging.getLogger("navigator.vault")


class KeyProvider(ABC):
    """Pluggable source of per-tenant encryption keys."""

    @abstractmethod
    async def active_key(self, tenant_id: str) -> TenantKey:
        """Return the key new ciphertexts for ``tenant_id`` are sealed with."""

    @abstractmethod
    async def get_key(self, tenant_id: str, key_id: int) -> TenantKey:
        """Return a specific key version for ``tenant_id``.

        Raises:
            InvalidKey: If the version is not available.
        """


class StaticKeyProvider(KeyProvider):
    """Derives tenant keys from a fixed set of versioned master keys.

    Each tenant key is ``HKDF(master_vN, "tenant:<id>:vN")`` so tenants
    never share key material even though they share master keys.
    """

    def __init__(self, master_keys: dict[int, bytes], active_key_id: int):
        if active_key_id not in master_keys:
            raise KeyError(
                f"Active key version {active_key_id} not found in provided master keys"
            )
        self._master_keys = dict(master_keys)
        self._active_key_id = active_key_id

    @classmethod
    def from_config(cls, config: VaultConfig) -> "StaticKeyProvider":
        return cls(config.master_keys, config.active_key_id)

    @classmethod
    def from_env(cls) -> "StaticKeyProvider":
        return cls(load_master_keys(), get_active_key_id())

    @property
    def active_key_id(self) -> int:
        return self._active_key_id

    def activate(self, key_id: int, master_key: Optional[bytes] = None) -> None:
        """Switch the active version, optionally registering a new master key."""
        if master_key is not None:
            if len(master_key) != 32:
                raise InvalidKey("Master key must be exactly 32 bytes")
            self._master_keys[key_id] = master_key
        if key_id not in self._master_keys:
            raise InvalidKey(
                f"Master key version {key_id} is not registered",
                {"key_id": key_id},
            )
        logger.info(
            "Active master key switched from v%d to v%d",
            self._active_key_id, key_id,
        )
        self._active_key_id = key_id

    def _tenant_key(self, tenant_id: str, key_id: int) -> TenantKey:
        master = self._master_keys.get(key_id)
        if master is None:
            raise InvalidKey(
                f"Master key version {key_id} not found in provided keys",
                {"key_id": key_id, "tenant_id": tenant_id},
            )
        material = derive_key(master, f"tenant:{tenant_id}:v{key_id}")
        return TenantKey(key_id=key_id, material=material)

    async def active_key(self, tenant_id: str) -> TenantKey:
        return self._tenant_key(tenant_id, self._active_key_id)

    async def get_key(self, tenant_id: str, key_id: int) -> TenantKey:
        return self._tenant_key(tenant_id, key_id)

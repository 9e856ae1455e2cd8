"""
Vault Configuration — Master key loading and validated settings.

Reads master keys from environment variables in the format:
    VAULT_MASTER_KEY_v{N} = <base64-encoded 32-byte key>
    VAULT_ACTIVE_KEY_ID = <integer>

Security Note:
    Never log key material. Only log key IDs and version numbers.
"""
import os
import re
import base64
import secrets
import logging

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("navigator.vault")

_KEY_ENV_PATTERN = re.compile(r"^VAULT_MASTER_KEY_v(\d+)$")
_TRUTHY = ("1", "true", "yes", "on")


def load_master_keys() -> dict[int, bytes]:
    """Load master keys from VAULT_MASTER_KEY_v{N} environment variables.

    Each env var value must be base64-encoded and decode to exactly 32 bytes.

    Returns:
        Mapping of key version (int) to raw 32-byte key.

    Raises:
        RuntimeError: If no master keys are found in the environment.
        ValueError: If a key does not decode to exactly 32 bytes.
    """
    keys: dict[int, bytes] = {}
    for name, value in os.environ.items():
        match = _KEY_ENV_PATTERN.match(name)
        if match:
            version = int(match.group(1))
            key_bytes = base64.b64decode(value)
            if len(key_bytes) != 32:
                raise ValueError(
                    f"{name} must decode to exactly 32 bytes, "
                    f"got {len(key_bytes)}"
                )
            keys[version] = key_bytes
    if not keys:
        raise RuntimeError(
            "No vault master keys found in environment. "
            "Set VAULT_MASTER_KEY_v1=<base64-encoded-32-byte-key>"
        )
    logger.debug("Loaded %d master key version(s): %s", len(keys), sorted(keys.keys()))
    return keys


def get_active_key_id() -> int:
    """Read the active master key version from VAULT_ACTIVE_KEY_ID env var.

    Raises:
        RuntimeError: If VAULT_ACTIVE_KEY_ID is not set.
        ValueError: If the value is not a valid integer.
    """
    raw = os.environ.get("VAULT_ACTIVE_KEY_ID")
    if raw is None:
        raise RuntimeError(
            "VAULT_ACTIVE_KEY_ID environment variable is not set"
        )
    return int(raw)


def generate_master_key() -> str:
    """Generate a random 32-byte master key and return as base64 string.

    This is a utility for operators to generate new keys.
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    master_keys: dict[int, bytes]
    active_key_id: int
    cipher_backend: str = Field(default="aesgcm")
    page_size: int = Field(default=20, ge=1)
    max_page_size: int = Field(default=200, ge=1, le=10000)
    max_folder_depth: int = Field(default=64, ge=1, le=1024)
    disclose_missing: bool = False

    model_config = {"arbitrary_types_allowed": True}

    @field_validator("cipher_backend")
    @classmethod
    def validate_cipher(cls, v: str) -> str:
        """Validate cipher backend is supported."""
        v = v.lower()
        if v not in ("aesgcm", "chacha20"):
            raise ValueError(f"Unsupported cipher backend: {v}")
        return v

    @field_validator("master_keys")
    @classmethod
    def validate_key_length(cls, v: dict[int, bytes]) -> dict[int, bytes]:
        for version, key in v.items():
            if len(key) != 32:
                raise ValueError(
                    f"master key v{version} must be 32 bytes, got {len(key)}"
                )
        return v

    @model_validator(mode="after")
    def validate_active_key_exists(self) -> "VaultConfig":
        """Ensure active_key_id is present in master_keys."""
        if self.active_key_id not in self.master_keys:
            raise ValueError(
                f"active_key_id {self.active_key_id} not found in "
                f"master_keys (available: {sorted(self.master_keys.keys())})"
            )
        if self.page_size > self.max_page_size:
            raise ValueError("page_size cannot exceed max_page_size")
        return self

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment."""
        return cls(
            master_keys=load_master_keys(),
            active_key_id=get_active_key_id(),
            cipher_backend=os.environ.get("VAULT_CIPHER_BACKEND", "aesgcm"),
            page_size=int(os.environ.get("VAULT_PAGE_SIZE", "20")),
            max_page_size=int(os.environ.get("VAULT_MAX_PAGE_SIZE", "200")),
            max_folder_depth=int(os.environ.get("VAULT_MAX_FOLDER_DEPTH", "64")),
            disclose_missing=(
                os.environ.get("VAULT_DISCLOSE_MISSING", "false").lower() in _TRUTHY
            ),
        )

"""
Tests for configuration loading and the static key provider.
"""
import base64
import os

import pytest
from pydantic import ValidationError as SchemaError

from navigator_vault.config import (
    VaultConfig,
    generate_master_key,
    get_active_key_id,
    load_master_keys,
)
from navigator_vault.crypto import CryptoEngine, StaticKeyProvider
from navigator_vault.exceptions import DecryptionFailed, InvalidKey


@pytest.fixture
def clean_env(monkeypatch):
    for name in ("VAULT_MASTER_KEY_v1", "VAULT_MASTER_KEY_v2", "VAULT_ACTIVE_KEY_ID"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestMasterKeys:
    """Master key loading from the environment."""

    def test_generate_master_key(self):
        """Generated keys decode to 32 bytes."""
        key = generate_master_key()
        assert len(base64.b64decode(key)) == 32
        assert key != generate_master_key()

    def test_load_from_env(self, clean_env):
        """Versioned keys are read from VAULT_MASTER_KEY_v{N}."""
        clean_env.setenv("VAULT_MASTER_KEY_v1", generate_master_key())
        clean_env.setenv("VAULT_MASTER_KEY_v2", generate_master_key())
        keys = load_master_keys()
        assert set(keys) >= {1, 2}
        assert all(len(k) == 32 for k in keys.values())

    def test_missing_keys(self, clean_env):
        """No master key configured is an error."""
        for name in list(os.environ):
            if name.startswith("VAULT_MASTER_KEY_v"):
                clean_env.delenv(name)
        with pytest.raises(RuntimeError):
            load_master_keys()

    def test_wrong_length(self, clean_env):
        """Keys of the wrong length are rejected."""
        clean_env.setenv("VAULT_MASTER_KEY_v1", base64.b64encode(b"short").decode())
        with pytest.raises(ValueError):
            load_master_keys()

    def test_active_key_id(self, clean_env):
        """VAULT_ACTIVE_KEY_ID is required and read as an int."""
        with pytest.raises(RuntimeError):
            get_active_key_id()
        clean_env.setenv("VAULT_ACTIVE_KEY_ID", "2")
        assert get_active_key_id() == 2


class TestVaultConfig:
    """VaultConfig validation."""

    def test_defaults(self, master_keys):
        """Default settings."""
        config = VaultConfig(master_keys=master_keys, active_key_id=1)
        assert config.cipher_backend == "aesgcm"
        assert config.page_size == 20
        assert config.max_page_size == 200
        assert config.max_folder_depth == 64
        assert config.disclose_missing is False

    def test_active_key_must_exist(self, master_keys):
        """The active key must be among the master keys."""
        with pytest.raises(SchemaError):
            VaultConfig(master_keys=master_keys, active_key_id=9)

    def test_unsupported_cipher(self, master_keys):
        """Unknown ciphers are rejected."""
        with pytest.raises(SchemaError):
            VaultConfig(master_keys=master_keys, active_key_id=1, cipher_backend="des")

    def test_cipher_is_normalized(self, master_keys):
        """Cipher names are normalized."""
        config = VaultConfig(master_keys=master_keys, active_key_id=1, cipher_backend="ChaCha20")
        assert config.cipher_backend == "chacha20"

    def test_short_master_key(self):
        """Short master keys are rejected."""
        with pytest.raises(SchemaError):
            VaultConfig(master_keys={1: b"too short"}, active_key_id=1)

    def test_page_size_bound(self, master_keys):
        """page_size cannot exceed max_page_size."""
        with pytest.raises(SchemaError):
            VaultConfig(master_keys=master_keys, active_key_id=1, page_size=50, max_page_size=10)

    def test_from_env(self, clean_env):
        """VaultConfig.from_env reads keys and settings."""
        clean_env.setenv("VAULT_MASTER_KEY_v1", generate_master_key())
        clean_env.setenv("VAULT_ACTIVE_KEY_ID", "1")
        clean_env.setenv("VAULT_PAGE_SIZE", "7")
        clean_env.setenv("VAULT_DISCLOSE_MISSING", "true")
        config = VaultConfig.from_env()
        assert config.active_key_id == 1
        assert config.page_size == 7
        assert config.disclose_missing is True


class TestStaticKeyProvider:
    """Per-tenant key derivation."""

    async def test_tenants_get_distinct_keys(self, config):
        """Each tenant gets its own key material."""
        keys = StaticKeyProvider.from_config(config)
        a = await keys.active_key("tenant-a")
        b = await keys.active_key("tenant-b")
        assert a.key_id == b.key_id == 1
        assert a.material != b.material

    async def test_keys_are_stable(self, config):
        """Derivation is deterministic."""
        keys = StaticKeyProvider.from_config(config)
        assert (await keys.active_key("t")).material == (await keys.get_key("t", 1)).material

    async def test_tenant_isolation(self, config):
        """One tenant's key cannot open another tenant's ciphertext."""
        keys = StaticKeyProvider.from_config(config)
        engine = CryptoEngine()
        ciphertext = engine.encrypt("s3cr3t", await keys.active_key("tenant-a"))
        with pytest.raises(DecryptionFailed):
            engine.decrypt(ciphertext, await keys.get_key("tenant-b", 1))

    async def test_unknown_version(self, config):
        """An unknown key version raises InvalidKey."""
        keys = StaticKeyProvider.from_config(config)
        with pytest.raises(InvalidKey):
            await keys.get_key("t", 42)

    async def test_activate(self, config):
        """activate switches the active version."""
        keys = StaticKeyProvider.from_config(config)
        keys.activate(2)
        assert keys.active_key_id == 2
        assert (await keys.active_key("t")).key_id == 2
        with pytest.raises(InvalidKey):
            keys.activate(5)
        keys.activate(5, base64.b64decode(generate_master_key()))
        assert keys.active_key_id == 5

    def test_active_must_exist(self, master_keys):
        """The active version must be among the master keys."""
        with pytest.raises(KeyError):
            StaticKeyProvider(master_keys, 3)

    def test_from_env(self, clean_env):
        """StaticKeyProvider.from_env builds from the environment."""
        clean_env.setenv("VAULT_MASTER_KEY_v1", generate_master_key())
        clean_env.setenv("VAULT_ACTIVE_KEY_ID", "1")
        assert StaticKeyProvider.from_env().active_key_id == 1

"""Shared fixtures for the vault test-suite."""
import base64
from types import SimpleNamespace

import pytest

from navigator_vault import Vault, VaultConfig, generate_master_key
from navigator_vault.models import Grant, GrantScope, Principal

TENANT = "acme-corp"


def make_key() -> bytes:
    return base64.b64decode(generate_master_key())


@pytest.fixture
def master_keys():
    return {1: make_key(), 2: make_key()}


@pytest.fixture
def config(master_keys):
    return VaultConfig(master_keys=master_keys, active_key_id=1, page_size=5)


@pytest.fixture
def vault(config):
    return Vault(config)


@pytest.fixture
def admin():
    return Principal(user_id="admin", tenant_id=TENANT, is_admin=True)


@pytest.fixture
def make_user():
    """Build a non-admin principal holding the given (scope, id) grants."""
    def _make(user_id: str, *grants: tuple[GrantScope, str], tenant_id: str = TENANT):
        return Principal(
            user_id=user_id,
            tenant_id=tenant_id,
            grants=frozenset(Grant(scope=s, target_id=t) for s, t in grants),
        )
    return _make


@pytest.fixture
async def tree(vault, admin):
    """Acme → Ops → Servers → root@db01, plus a sibling folder Network."""
    acme = await vault.create(admin, "organization", fields={"name": "Acme"})
    ops = await vault.create(
        admin, "collection", {"organization_id": acme.id},
        {"name": "Ops", "description": "Operations"},
    )
    servers = await vault.create(
        admin, "folder", {"collection_id": ops.id}, {"name": "Servers"},
    )
    network = await vault.create(
        admin, "folder", {"collection_id": ops.id}, {"name": "Network"},
    )
    root = await vault.create(
        admin, "password", {"folder_id": servers.id},
        {
            "name": "root@db01",
            "username": "root",
            "secret": "s3cr3t",
            "website_urls": ["https://db01.acme.internal"],
            "notes": "primary database",
        },
    )
    return SimpleNamespace(
        acme=acme, ops=ops, servers=servers, network=network, root=root,
    )

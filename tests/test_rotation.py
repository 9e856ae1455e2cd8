"""
Tests for tenant key rotation.
"""
import pytest

from navigator_vault.crypto import rotate_tenant_key
from navigator_vault.models import ActivityAction


def key_versions(vault, tenant):
    return {
        e.id: vault.crypto.key_version(e.secret)
        for e in vault.repository.view(tenant).entities.values()
        if e.kind.value == "password"
    }


@pytest.fixture
async def passwords(vault, admin, tree):
    extra = [
        await vault.create(
            admin, "password", {"folder_id": tree.network.id},
            {"name": f"switch-{i}", "secret": f"enable-{i}"},
        )
        for i in range(4)
    ]
    return [tree.root, *extra]


class TestRotation:
    """Tenant key rotation."""

    async def test_rotates_everything_to_active(self, vault, admin, passwords):
        """Every live secret ends up under the active key."""
        tenant = admin.tenant_id
        assert set(key_versions(vault, tenant).values()) == {1}
        vault.keys.activate(2)
        stats = await vault.rotate_key(admin, batch_size=2)
        assert stats == {"total": 5, "rotated": 5, "errors": 0, "skipped": 0}
        assert set(key_versions(vault, tenant).values()) == {2}
        assert await vault.reveal_secret(admin, passwords[0].id) == "s3cr3t"
        assert await vault.reveal_secret(admin, passwords[3].id) == "enable-2"

    async def test_idempotent(self, vault, admin, passwords):
        """A second run skips everything."""
        vault.keys.activate(2)
        await vault.rotate_key(admin)
        stats = await vault.rotate_key(admin)
        assert stats == {"total": 5, "rotated": 0, "errors": 0, "skipped": 5}

    async def test_bumps_version_and_records_activity(self, vault, admin, passwords):
        """Rotated entries get a new version and an activity entry."""
        vault.keys.activate(2)
        await vault.rotate_key(admin)
        entity = vault.repository.view(admin.tenant_id).entities[passwords[0].id]
        assert entity.version == 2
        latest = vault.activity(admin, passwords[0].id)[0]
        assert latest.action is ActivityAction.UPDATE
        assert latest.performed_by == "admin"
        assert "v2" in latest.details

    async def test_trash_snapshots_stay_sealed_under_old_key(self, vault, admin, passwords):
        """Trash snapshots keep their key and remain restorable."""
        items = await vault.delete(admin, passwords[1].id)
        vault.keys.activate(2)
        stats = await vault.rotate_key(admin)
        assert stats["total"] == 4
        assert vault.crypto.key_version(items[0].entity().secret) == 1
        await vault.restore(admin, items[0].id)
        assert await vault.reveal_secret(admin, passwords[1].id) == "enable-0"

    async def test_unreadable_secret_is_counted(self, vault, admin, passwords):
        """An unreadable secret counts as an error."""
        tenant = admin.tenant_id
        broken = vault.repository.view(tenant).entities[passwords[2].id]
        async with vault.repository.transaction(tenant) as tx:
            tx.put(broken.model_copy(update={"secret": "not-a-ciphertext"}))
        vault.keys.activate(2)
        stats = await rotate_tenant_key(vault.store, tenant, batch_size=10)
        assert stats == {"total": 5, "rotated": 4, "errors": 1, "skipped": 0}

    async def test_invalid_batch_size(self, vault, admin):
        """batch_size must be positive."""
        with pytest.raises(ValueError):
            await rotate_tenant_key(vault.store, admin.tenant_id, batch_size=0)

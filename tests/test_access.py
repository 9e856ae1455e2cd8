"""
Tests for the access control evaluator.
"""
import pytest

from navigator_vault.access import AccessEvaluator, Decision
from navigator_vault.exceptions import PermissionDenied
from navigator_vault.models import GrantScope, Operation, ShareAccess

READ, WRITE = Operation.READ, Operation.WRITE


@pytest.fixture
def evaluator():
    return AccessEvaluator()


@pytest.fixture
def entities(vault, admin):
    def _entities():
        return vault.repository.view(admin.tenant_id).entities
    return _entities


async def share(vault, admin, entity_id, shared_with):
    await vault.update(admin, entity_id, {"shared_with": shared_with})


class TestAdministrators:
    """Tenant administrators."""

    async def test_admin_allowed(self, evaluator, entities, admin, tree):
        """An administrator may do anything inside their tenant."""
        ents = entities()
        for target in (tree.acme, tree.ops, tree.servers, tree.root):
            for op in (READ, WRITE):
                decision = evaluator.evaluate(admin, ents[target.id], op, ents)
                assert decision.allowed and decision.reason == "admin"

    async def test_admin_of_other_tenant(self, evaluator, entities, tree, admin):
        """Administrator rights stop at the tenant boundary."""
        outsider = admin.model_copy(update={"tenant_id": "other-tenant"})
        ents = entities()
        assert not evaluator.evaluate(outsider, ents[tree.root.id], READ, ents)

    def test_require_admin(self, evaluator, admin, make_user):
        """require_admin rejects non-administrators."""
        evaluator.require_admin(admin, "emptying the trash")
        with pytest.raises(PermissionDenied):
            evaluator.require_admin(make_user("bob"), "emptying the trash")


class TestGrants:
    """Organization, collection, folder and password grants."""

    async def test_organization_grant_covers_subtree(self, evaluator, entities, make_user, tree):
        """An organization grant covers everything below it."""
        bob = make_user("bob", (GrantScope.ORGANIZATION, tree.acme.id))
        ents = entities()
        for target in (tree.acme, tree.ops, tree.servers, tree.root):
            assert evaluator.can(bob, ents[target.id], READ, ents)
            assert evaluator.can(bob, ents[target.id], WRITE, ents)

    async def test_collection_grant(self, vault, admin, evaluator, entities, make_user, tree):
        """A collection grant covers its folders and passwords only."""
        dev = await vault.create(
            admin, "collection", {"organization_id": tree.acme.id}, {"name": "Dev"},
        )
        bob = make_user("bob", (GrantScope.COLLECTION, tree.ops.id))
        ents = entities()
        assert evaluator.can(bob, ents[tree.root.id], WRITE, ents)
        assert not evaluator.can(bob, ents[tree.acme.id], READ, ents)
        assert not evaluator.can(bob, ents[dev.id], READ, ents)

    async def test_password_grant(self, evaluator, entities, make_user, tree):
        """A password grant covers that entry alone."""
        bob = make_user("bob", (GrantScope.PASSWORD, tree.root.id))
        ents = entities()
        decision = evaluator.evaluate(bob, ents[tree.root.id], READ, ents)
        assert decision.allowed
        assert decision.reason == f"grant:password:{tree.root.id}"
        assert not evaluator.can(bob, ents[tree.servers.id], READ, ents)

    async def test_grant_on_other_kind_does_not_match(self, evaluator, entities, make_user, tree):
        """A grant only matches targets of its own kind."""
        # a folder-scope grant naming the collection's id is not a collection grant
        bob = make_user("bob", (GrantScope.FOLDER, tree.ops.id))
        ents = entities()
        assert not evaluator.can(bob, ents[tree.servers.id], READ, ents)

    async def test_no_grant(self, evaluator, entities, make_user, tree):
        """Without any grant access is denied."""
        ents = entities()
        decision = evaluator.evaluate(make_user("eve"), ents[tree.root.id], READ, ents)
        assert decision == Decision(False, "no-grant")
        assert not decision


class TestShares:
    """Entity-level read and write shares."""

    async def test_folder_share_reads_below_not_sibling(
        self, vault, admin, evaluator, entities, make_user, tree
    ):
        """A folder share reaches entries below it but not siblings."""
        await share(vault, admin, tree.servers.id, {"bob": "read"})
        bob = make_user("bob")
        ents = entities()
        assert evaluator.can(bob, ents[tree.servers.id], READ, ents)
        assert evaluator.can(bob, ents[tree.root.id], READ, ents)
        assert not evaluator.can(bob, ents[tree.network.id], READ, ents)
        assert not evaluator.can(bob, ents[tree.network.id], WRITE, ents)
        with pytest.raises(PermissionDenied):
            evaluator.authorize(bob, ents[tree.network.id], WRITE, ents)

    async def test_read_share_denies_write(self, vault, admin, evaluator, entities, make_user, tree):
        """A read share never allows writing."""
        await share(vault, admin, tree.servers.id, ["bob"])
        bob = make_user("bob")
        ents = entities()
        assert ents[tree.servers.id].shared_with == {"bob": ShareAccess.READ}
        decision = evaluator.evaluate(bob, ents[tree.root.id], WRITE, ents)
        assert not decision
        assert decision.reason.startswith("read-only-share")

    async def test_write_share(self, vault, admin, evaluator, entities, make_user, tree):
        """A write share allows every operation."""
        await share(vault, admin, tree.ops.id, {"bob": "write"})
        bob = make_user("bob")
        ents = entities()
        assert evaluator.can(bob, ents[tree.root.id], WRITE, ents)
        assert evaluator.can(bob, ents[tree.network.id], WRITE, ents)
        assert not evaluator.can(bob, ents[tree.acme.id], READ, ents)

    async def test_write_share_above_read_share(
        self, vault, admin, evaluator, entities, make_user, tree
    ):
        """A write share higher up wins over a read share below."""
        await share(vault, admin, tree.servers.id, {"bob": "read"})
        await share(vault, admin, tree.ops.id, {"bob": "write"})
        ents = entities()
        assert evaluator.can(make_user("bob"), ents[tree.root.id], WRITE, ents)

    async def test_share_on_password(self, vault, admin, evaluator, entities, make_user, tree):
        """A share can be placed on a single password."""
        await share(vault, admin, tree.root.id, {"bob": "read"})
        ents = entities()
        assert evaluator.can(make_user("bob"), ents[tree.root.id], READ, ents)
        assert not evaluator.can(make_user("bob"), ents[tree.servers.id], READ, ents)

    async def test_grants_are_reevaluated(self, vault, admin, evaluator, entities, make_user, tree):
        """Granting or revoking a share takes effect on the next evaluation."""
        bob = make_user("bob")
        ents = entities()
        assert not evaluator.can(bob, ents[tree.root.id], READ, ents)
        await share(vault, admin, tree.servers.id, {"bob": "read"})
        ents = entities()
        assert evaluator.can(bob, ents[tree.root.id], READ, ents)
        await share(vault, admin, tree.servers.id, {})
        ents = entities()
        assert not evaluator.can(bob, ents[tree.root.id], READ, ents)


class TestOwnership:
    """Creators of an entity."""

    async def test_creator_keeps_access(self, vault, evaluator, entities, make_user, tree):
        """The creator keeps access to what they created."""
        carol = make_user("carol", (GrantScope.COLLECTION, tree.ops.id))
        mine = await vault.create(carol, "folder", {"collection_id": tree.ops.id}, {"name": "Mine"})
        inner = await vault.create(
            carol, "password", {"folder_id": mine.id}, {"name": "db", "secret": "x"},
        )
        without_grants = make_user("carol")
        ents = entities()
        assert evaluator.can(without_grants, ents[mine.id], WRITE, ents)
        assert evaluator.can(without_grants, ents[inner.id], WRITE, ents)
        assert not evaluator.can(without_grants, ents[tree.servers.id], READ, ents)


class TestBrokenChain:
    """Entities whose parent chain cannot be walked."""

    async def test_unreachable_entity_denied(self, evaluator, entities, make_user, tree):
        """An unreachable entity is denied to non-administrators."""
        bob = make_user("bob", (GrantScope.PASSWORD, tree.root.id))
        ents = dict(entities())
        del ents[tree.ops.id]
        decision = evaluator.evaluate(bob, ents[tree.root.id], READ, ents)
        assert decision == Decision(False, "broken-chain")

"""
Vault — the entry point for callers (controllers, RPC handlers, CLIs).

Every operation takes a pre-resolved ``Principal``: the access evaluator
runs first and only an allowed request reaches the entity store or the
trash manager.

Provides:
- ``create`` / ``get`` / ``update`` / ``move`` / ``delete`` — hierarchy CRUD
- ``reveal_secret`` — decrypt one password for the immediate response
- ``list_children`` / ``iter_children`` — keyset-paginated listings
- ``list_trash`` / ``restore`` / ``purge`` / ``empty_trash`` — trash
- ``activity`` — who did what to an entry
- ``rotate_key`` — re-encrypt a tenant's secrets under the active key

Missing entities follow the disclosure policy of ``VaultConfig``: unless
``disclose_missing`` is set, a non-administrator gets the same
``PermissionDenied`` for a missing entity as for one they may not read.
"""
import logging
from collections.abc import Mapping
from typing import Any, AsyncIterator, Optional, Union

from .access import AccessEvaluator
from .attachments import AttachmentResolver, PassthroughResolver
from .config import VaultConfig
from .crypto import CryptoEngine, KeyProvider, StaticKeyProvider, rotate_tenant_key
from .exceptions import NotFound, PermissionDenied, ValidationError, VaultError
from .generator import PasswordOptions, generate_password
from .models import (
    ActivityEntry,
    ChildPage,
    Cursor,
    EntityKind,
    Operation,
    Placement,
    Principal,
    PurgeSummary,
    TrashItem,
    TrashPage,
    VaultEntity,
)
from .repository import Repository
from .store import PLACEMENT_KEYS, EntityStore, as_placement, redact
from .trash import TrashManager

logger = logging.getLogger("navigator.vault")


class Vault:
    """Multi-tenant secret vault.

    Args:
        config: Validated vault configuration.
        keys: Key provider; defaults to a ``StaticKeyProvider`` built from
            ``config.master_keys``.
        attachments: Attachment resolver; defaults to a pass-through.
        repository: Storage; defaults to a fresh in-process repository.
    """

    def __init__(
        self,
        config: VaultConfig,
        keys: Optional[KeyProvider] = None,
        attachments: Optional[AttachmentResolver] = None,
        repository: Optional[Repository] = None,
    ):
        self.config = config
        self.crypto = CryptoEngine(config.cipher_backend)
        self.keys = keys or StaticKeyProvider.from_config(config)
        self.attachments = attachments or PassthroughResolver()
        self.repository = repository or Repository()
        self.access = AccessEvaluator(config.max_folder_depth)
        self.trash = TrashManager(self.repository, config, self.attachments)
        self.store = EntityStore(
            self.repository,
            self.crypto,
            self.keys,
            self.trash,
            config,
            self.attachments,
        )

    @classmethod
    def from_env(cls, **kwargs) -> "Vault":
        return cls(VaultConfig.from_env(), **kwargs)

    # ------------------------------------------------------------------
    # Authorization helpers
    # ------------------------------------------------------------------

    def _missing(
        self,
        principal: Principal,
        entity_id: str,
        operation: Operation = Operation.READ,
        label: str = "Entity",
    ) -> VaultError:
        if principal.is_admin or self.config.disclose_missing:
            return NotFound(f"{label} {entity_id} not found", {"id": entity_id})
        logger.warning(
            "Access denied: user=%s tenant=%s %s %s (unknown or hidden)",
            principal.user_id, principal.tenant_id, operation.value, entity_id,
        )
        return PermissionDenied(f"{operation.value} access denied", {"id": entity_id})

    def _load(
        self,
        principal: Principal,
        entities: Mapping[str, VaultEntity],
        entity_id: str,
        operation: Operation,
    ) -> VaultEntity:
        entity = entities.get(entity_id)
        if entity is None or entity.tenant_id != principal.tenant_id:
            raise self._missing(principal, entity_id, operation)
        self.access.authorize(principal, entity, operation, entities)
        return entity

    def _authorize_parent(self, principal: Principal, placement: Placement) -> None:
        """Write access on the most specific parent named by a placement."""
        parent_id = placement.parent_id
        if parent_id is None:
            raise ValidationError("A parent organization, collection or folder is required")
        entities = self.repository.view(principal.tenant_id).entities
        self._load(principal, entities, parent_id, Operation.WRITE)

    def _trash_item(self, principal: Principal, item_id: str) -> TrashItem:
        try:
            item = self.trash.get(principal.tenant_id, item_id)
        except NotFound:
            raise self._missing(principal, item_id, label="Trash item") from None
        if not principal.is_admin and item.deleted_by != principal.user_id:
            logger.warning(
                "Access denied: user=%s tenant=%s trash item %s deleted by another user",
                principal.user_id, principal.tenant_id, item_id,
            )
            raise PermissionDenied("trash access denied", {"id": item_id})
        return item

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def create(
        self,
        principal: Principal,
        kind: Union[EntityKind, str],
        placement: Union[Placement, Mapping[str, Any], None] = None,
        fields: Optional[Mapping[str, Any]] = None,
    ) -> VaultEntity:
        """Create an Organization (administrators) or a child of a writable parent."""
        try:
            kind = EntityKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown entity kind: {kind}") from None
        placement = as_placement(placement)
        if kind is EntityKind.ORGANIZATION:
            self.access.require_admin(principal, "creating an organization")
        else:
            self._authorize_parent(principal, placement)
        return await self.store.create(
            principal.tenant_id, kind, placement, fields or {}, principal.user_id,
        )

    def get(self, principal: Principal, entity_id: str) -> VaultEntity:
        """Return an entity; password secrets come back redacted."""
        entities = self.repository.view(principal.tenant_id).entities
        return redact(self._load(principal, entities, entity_id, Operation.READ))

    async def reveal_secret(self, principal: Principal, password_id: str) -> str:
        entities = self.repository.view(principal.tenant_id).entities
        self._load(principal, entities, password_id, Operation.READ)
        return await self.store.reveal_secret(
            principal.tenant_id, password_id, principal.user_id,
        )

    async def update(
        self,
        principal: Principal,
        entity_id: str,
        fields: Mapping[str, Any],
        expected_version: Optional[int] = None,
    ) -> VaultEntity:
        entities = self.repository.view(principal.tenant_id).entities
        self._load(principal, entities, entity_id, Operation.WRITE)
        moves = {k: v for k, v in (fields or {}).items() if k in PLACEMENT_KEYS}
        if moves:
            self._authorize_parent(principal, as_placement(moves))
        return await self.store.update(
            principal.tenant_id, entity_id, fields, principal.user_id, expected_version,
        )

    async def move(
        self,
        principal: Principal,
        entity_id: str,
        placement: Union[Placement, Mapping[str, Any]],
        expected_version: Optional[int] = None,
    ) -> VaultEntity:
        entities = self.repository.view(principal.tenant_id).entities
        self._load(principal, entities, entity_id, Operation.WRITE)
        placement = as_placement(placement)
        self._authorize_parent(principal, placement)
        return await self.store.move(
            principal.tenant_id, entity_id, placement, principal.user_id, expected_version,
        )

    async def delete(
        self,
        principal: Principal,
        entity_id: str,
        deleted_from: Optional[str] = None,
    ) -> list[TrashItem]:
        """Move an entity and everything below it to the trash."""
        entities = self.repository.view(principal.tenant_id).entities
        self._load(principal, entities, entity_id, Operation.WRITE)
        return await self.store.delete(
            principal.tenant_id, entity_id, principal.user_id, deleted_from,
        )

    def list_children(
        self,
        principal: Principal,
        parent_id: Optional[str] = None,
        limit: Optional[int] = None,
        after: Optional[Cursor] = None,
    ) -> ChildPage:
        """Direct children of ``parent_id``, or the readable organizations."""
        entities = self.repository.view(principal.tenant_id).entities
        if parent_id is None:
            include = None if principal.is_admin else (
                lambda org: self.access.can(principal, org, Operation.READ, entities)
            )
            return self.store.list_children(
                principal.tenant_id, None, limit, after, include=include,
            )
        parent = self._load(principal, entities, parent_id, Operation.READ)
        return self.store.list_children(principal.tenant_id, parent.ref, limit, after)

    async def iter_children(
        self,
        principal: Principal,
        parent_id: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> AsyncIterator[VaultEntity]:
        after = None
        while True:
            page = self.list_children(principal, parent_id, page_size, after)
            for entity in page.items:
                yield entity
            if page.next_cursor is None:
                return
            after = page.next_cursor

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    def list_trash(
        self,
        principal: Principal,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> TrashPage:
        """Pending trash; administrators see every item, others their own."""
        deleted_by = None if principal.is_admin else principal.user_id
        return self.trash.list_pending(principal.tenant_id, page, limit, deleted_by)

    def get_trash_item(self, principal: Principal, item_id: str) -> TrashItem:
        return self._trash_item(principal, item_id)

    async def restore(
        self,
        principal: Principal,
        item_id: str,
        placement: Union[Placement, Mapping[str, Any], None] = None,
    ) -> VaultEntity:
        """Bring a trashed entity back, at its original place or at ``placement``.

        Raises:
            RestoreConflict: If the original parent is gone and no
                ``placement`` was given.
        """
        item = self._trash_item(principal, item_id)
        if placement is not None:
            placement = as_placement(placement)
        if not principal.is_admin:
            if item.item_type is EntityKind.ORGANIZATION:
                self.access.require_admin(principal, "restoring an organization")
            entities = self.repository.view(principal.tenant_id).entities
            parent_id = placement.parent_id if placement else item.parent.id
            if parent_id in entities:
                self._load(principal, entities, parent_id, Operation.WRITE)
            elif placement is not None:
                raise self._missing(principal, parent_id, Operation.WRITE)
        _, entity = await self.trash.restore(
            principal.tenant_id, item_id, principal.user_id, placement,
        )
        return redact(entity)

    async def purge(self, principal: Principal, item_id: str) -> TrashItem:
        """Permanently delete one pending trash item."""
        self._trash_item(principal, item_id)
        return await self.trash.purge(principal.tenant_id, item_id, principal.user_id)

    async def empty_trash(self, principal: Principal) -> PurgeSummary:
        self.access.require_admin(principal, "emptying the trash")
        return await self.trash.empty_all(principal.tenant_id, principal.user_id)

    # ------------------------------------------------------------------
    # Activity, keys, generator
    # ------------------------------------------------------------------

    def activity(self, principal: Principal, entity_id: str) -> list[ActivityEntry]:
        """Activity of one entity, newest first.

        Entries of entities no longer live are visible to administrators only.
        """
        entities = self.repository.view(principal.tenant_id).entities
        if entity_id in entities:
            self._load(principal, entities, entity_id, Operation.READ)
        elif not principal.is_admin:
            raise self._missing(principal, entity_id)
        entries = [
            e for e in self.repository.activity(principal.tenant_id)
            if e.entity_id == entity_id
        ]
        entries.reverse()
        return entries

    async def rotate_key(self, principal: Principal, batch_size: int = 100) -> dict:
        self.access.require_admin(principal, "rotating encryption keys")
        return await rotate_tenant_key(
            self.store, principal.tenant_id, batch_size, principal.user_id,
        )

    @staticmethod
    def generate_password(options: Optional[PasswordOptions] = None, **kwargs: Any) -> str:
        return generate_password(options, **kwargs)

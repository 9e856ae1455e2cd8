"""
Entity Store — create, update, move, read and list hierarchy entities.

Callers are expected to have passed the access evaluator for the acting
user before reaching the store. Anything that may await (key lookups,
attachment checks) happens before the transaction opens, so the
transactional section itself runs without yielding.

Security Note:
    Password secrets are sealed before they are staged. ``get`` and
    ``list_children`` return a redacted placeholder; only
    ``reveal_secret`` decrypts, and the plaintext is never cached.
"""
import logging
from collections.abc import Mapping
from typing import Any, AsyncIterator, Callable, Optional, Union

from pydantic import ValidationError as SchemaError

from . import hierarchy
from .attachments import AttachmentResolver, PassthroughResolver
from .audit import diff_fields, record_activity
from .config import VaultConfig
from .crypto.engine import CryptoEngine
from .crypto.keys import KeyProvider
from .exceptions import ConflictError, NotFound, ValidationError
from .models import (
    REDACTED,
    ENTITY_TYPES,
    ActivityAction,
    Attachment,
    ChildPage,
    Cursor,
    EntityKind,
    Folder,
    Organization,
    Password,
    Placement,
    Ref,
    TrashItem,
    VaultEntity,
    build_entity,
    schema_error,
    utcnow,
)
from .repository import Repository, Transaction, VaultView
from .trash import TrashManager

logger = logging.getLogger("navigator.vault")

PLACEMENT_KEYS = frozenset({"organization_id", "collection_id", "folder_id", "parent_id"})


def as_placement(value: Union[Placement, Mapping[str, Any], None]) -> Placement:
    if value is None:
        return Placement()
    if isinstance(value, Placement):
        return value
    data = dict(value)
    if "parent_id" in data:
        parent = data.pop("parent_id")
        if data.get("folder_id") not in (None, parent):
            raise ValidationError("parent_id and folder_id disagree")
        data["folder_id"] = parent
    try:
        return Placement.model_validate(data)
    except SchemaError as err:
        raise schema_error(err, "placement") from None


def redact(entity: VaultEntity) -> VaultEntity:
    if isinstance(entity, Password):
        return entity.model_copy(update={"secret": REDACTED})
    return entity


class EntityStore:
    """Hierarchy persistence on top of a transactional repository."""

    def __init__(
        self,
        repository: Repository,
        crypto: CryptoEngine,
        keys: KeyProvider,
        trash: TrashManager,
        config: VaultConfig,
        attachments: Optional[AttachmentResolver] = None,
    ):
        self.repository = repository
        self.crypto = crypto
        self.keys = keys
        self.trash = trash
        self.config = config
        self.attachments = attachments or PassthroughResolver()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def view(self, tenant_id: str) -> VaultView:
        return self.repository.view(tenant_id)

    @staticmethod
    def _live(
        entities: Mapping[str, VaultEntity],
        entity_id: str,
        tenant_id: str
    ) -> VaultEntity:
        entity = entities.get(entity_id)
        if entity is None or entity.tenant_id != tenant_id:
            raise NotFound(f"Entity {entity_id} not found", {"id": entity_id})
        return entity

    @staticmethod
    def _content(
        cls: type[VaultEntity],
        fields: Optional[Mapping[str, Any]],
        creating: bool
    ) -> dict[str, Any]:
        content = dict(fields or {})
        unknown = set(content) - cls.content_fields
        if unknown:
            raise ValidationError(
                f"Fields not writable on a {cls.kind.value}: {', '.join(sorted(unknown))}",
                {"fields": sorted(unknown)},
            )
        if cls is Password:
            if "secret" in content:
                secret = content["secret"]
                if not isinstance(secret, str) or not secret:
                    raise ValidationError("secret must be a non-empty string")
            elif creating:
                raise ValidationError("secret is required for a password")
        return content

    async def _seal(self, tenant_id: str, content: dict[str, Any]) -> dict[str, Any]:
        if "secret" in content:
            key = await self.keys.active_key(tenant_id)
            content["secret"] = self.crypto.encrypt(content["secret"], key)
        return content

    async def _check_attachments(
        self,
        tenant_id: str,
        content: dict[str, Any]
    ) -> dict[str, Any]:
        if "attachments" not in content:
            return content
        checked = []
        for raw in content["attachments"] or ():
            try:
                attachment = (
                    raw if isinstance(raw, Attachment) else Attachment.model_validate(raw)
                )
            except SchemaError as err:
                raise schema_error(err, "attachment") from None
            checked.append(await self.attachments.validate(tenant_id, attachment))
        content["attachments"] = tuple(checked)
        return content

    async def _prepare(
        self,
        tenant_id: str,
        cls: type[VaultEntity],
        fields: Optional[Mapping[str, Any]],
        creating: bool
    ) -> dict[str, Any]:
        content = self._content(cls, fields, creating)
        if cls is Password:
            content = await self._seal(tenant_id, content)
        return await self._check_attachments(tenant_id, content)

    def _chain_ids(self, tx: Transaction, entity: VaultEntity) -> list[str]:
        return [
            a.id for a in hierarchy.ancestors(tx.entities, entity, self.config.max_folder_depth)
        ]

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        tenant_id: str,
        kind: Union[EntityKind, str],
        placement: Union[Placement, Mapping[str, Any], None],
        fields: Mapping[str, Any],
        created_by: str,
    ) -> VaultEntity:
        """Validate parents, assign an identity and persist a new entity."""
        try:
            kind = EntityKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown entity kind: {kind}") from None
        cls = ENTITY_TYPES[kind]
        placement = as_placement(placement)
        content = await self._prepare(tenant_id, cls, fields, creating=True)
        async with self.repository.transaction(tenant_id) as tx:
            resolved = hierarchy.resolve_placement(
                tx.entities, kind, placement, tenant_id,
                max_depth=self.config.max_folder_depth,
            )
            now = utcnow()
            data = {
                **content,
                **resolved,
                "tenant_id": tenant_id,
                "created_by": created_by,
                "created_at": now,
                "updated_at": now,
            }
            if cls is Password:
                data["last_modified"] = now
            entity = build_entity(cls, data)
            tx.claim(
                exclusive=[entity.id, *hierarchy.claim_keys(entity)],
                shared=self._chain_ids(tx, entity),
            )
            hierarchy.ensure_unique_name(tx.entities, entity)
            tx.put(entity)
            if isinstance(entity, Password):
                hierarchy.attach_password(tx, entity)
            record_activity(tx, ActivityAction.CREATE, entity, created_by)
        logger.debug(
            "Created %s %s for tenant=%s", kind.value, entity.id, tenant_id,
        )
        return redact(entity)

    # ------------------------------------------------------------------
    # Update / move
    # ------------------------------------------------------------------

    def _apply(
        self,
        tx: Transaction,
        current: VaultEntity,
        content: dict[str, Any],
        placement: Optional[Placement],
        expected_version: Optional[int],
    ) -> VaultEntity:
        if expected_version is not None and current.version != expected_version:
            raise ConflictError(
                "Entity was modified since it was read; retry",
                {"id": current.id, "version": current.version, "expected": expected_version},
            )
        cls = type(current)
        depth = self.config.max_folder_depth
        exclusive = [current.id]
        shared = self._chain_ids(tx, current)
        subtree: list[VaultEntity] = []
        data = current.model_dump()
        data.update(content)
        if placement is not None:
            if cls is Organization:
                raise ValidationError("Organizations cannot be moved")
            data.update(hierarchy.resolve_placement(
                tx.entities, cls.kind, placement, current.tenant_id,
                moving_id=current.id, max_depth=depth,
            ))
            subtree = hierarchy.descendants(tx.entities, current)
            exclusive.extend(d.id for d in subtree)
        now = utcnow()
        data["updated_at"] = now
        data["version"] = current.version + 1
        updated = build_entity(cls, data)
        if subtree and isinstance(updated, Folder):
            deepest = hierarchy.folder_level(tx.entities, updated, depth) + \
                hierarchy.subtree_depth(current, subtree)
            if deepest > depth:
                raise ValidationError(
                    f"Folders cannot nest deeper than {depth} levels",
                    {"id": current.id, "depth": deepest},
                )
        if isinstance(updated, Password) and any(
            getattr(current, f) != getattr(updated, f) for f in Password.content_fields
        ):
            updated = updated.model_copy(update={"last_modified": now})
        shared.extend(self._chain_ids(tx, updated))
        exclusive.extend(hierarchy.claim_keys(updated))
        tx.claim(exclusive=exclusive, shared=shared)
        hierarchy.ensure_unique_name(tx.entities, updated)
        tx.put(updated)
        if isinstance(updated, Password):
            hierarchy.reattach_password(tx, current, updated)
        if subtree:
            self._rebase(tx, subtree, now)
        return updated

    @staticmethod
    def _rebase(tx: Transaction, subtree: list[VaultEntity], now) -> None:
        """Re-derive organization/collection of moved descendants, top down."""
        for stale in subtree:
            child = tx.entities[stale.id]
            parent = tx.entities[hierarchy.parent_ref(child).id]
            if isinstance(parent, Organization):
                org_id, collection_id = parent.id, None
            elif parent.kind is EntityKind.COLLECTION:
                org_id, collection_id = parent.organization_id, parent.id
            else:
                org_id, collection_id = parent.organization_id, parent.collection_id
            update: dict[str, Any] = {"organization_id": org_id}
            if child.kind is not EntityKind.COLLECTION:
                update["collection_id"] = collection_id
            if all(getattr(child, k) == v for k, v in update.items()):
                continue
            update.update({"updated_at": now, "version": child.version + 1})
            moved = child.model_copy(update=update)
            tx.put(moved)
            if isinstance(moved, Password):
                hierarchy.reattach_password(tx, child, moved)

    async def update(
        self,
        tenant_id: str,
        entity_id: str,
        fields: Mapping[str, Any],
        updated_by: str,
        expected_version: Optional[int] = None,
    ) -> VaultEntity:
        """Partial update; placement keys in ``fields`` move the entity."""
        fields = dict(fields or {})
        moves = {k: fields.pop(k) for k in list(fields) if k in PLACEMENT_KEYS}
        placement = as_placement(moves) if moves else None
        current = self._live(self.view(tenant_id).entities, entity_id, tenant_id)
        content = await self._prepare(tenant_id, type(current), fields, creating=False)
        async with self.repository.transaction(tenant_id) as tx:
            current = self._live(tx.entities, entity_id, tenant_id)
            updated = self._apply(tx, current, content, placement, expected_version)
            record_activity(
                tx,
                ActivityAction.MOVE if placement is not None and not content else ActivityAction.UPDATE,
                updated, updated_by, diff_fields(current, updated),
            )
        logger.debug("Updated %s %s for tenant=%s", updated.kind.value, entity_id, tenant_id)
        return redact(updated)

    async def move(
        self,
        tenant_id: str,
        entity_id: str,
        placement: Union[Placement, Mapping[str, Any]],
        moved_by: str,
        expected_version: Optional[int] = None,
    ) -> VaultEntity:
        """Re-parent a Collection, Folder or Password.

        A failed validation leaves the entity where it was.
        """
        placement = as_placement(placement)
        async with self.repository.transaction(tenant_id) as tx:
            current = self._live(tx.entities, entity_id, tenant_id)
            moved = self._apply(tx, current, {}, placement, expected_version)
            record_activity(
                tx, ActivityAction.MOVE, moved, moved_by, diff_fields(current, moved),
            )
        logger.debug(
            "Moved %s %s under %s for tenant=%s",
            moved.kind.value, entity_id, placement.parent_id, tenant_id,
        )
        return redact(moved)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, tenant_id: str, entity_id: str) -> VaultEntity:
        """Return an entity with any secret redacted."""
        return redact(self._live(self.view(tenant_id).entities, entity_id, tenant_id))

    async def reveal_secret(self, tenant_id: str, password_id: str, viewed_by: str) -> str:
        """Decrypt the secret of one Password for the immediate caller."""
        entity = self._live(self.view(tenant_id).entities, password_id, tenant_id)
        if not isinstance(entity, Password):
            raise ValidationError(
                f"{entity.kind.value} {password_id} has no secret", {"id": password_id}
            )
        key = await self.keys.get_key(tenant_id, self.crypto.key_version(entity.secret))
        plaintext = self.crypto.decrypt(entity.secret, key)
        async with self.repository.transaction(tenant_id) as tx:
            record_activity(tx, ActivityAction.VIEW_SECRET, entity, viewed_by)
        return plaintext

    def list_children(
        self,
        tenant_id: str,
        parent: Optional[Ref],
        limit: Optional[int] = None,
        after: Optional[Cursor] = None,
        include: Optional[Callable[[VaultEntity], bool]] = None,
    ) -> ChildPage:
        """One page of direct children ordered by (created_at, id).

        ``parent=None`` lists the tenant's organizations. Pass the returned
        ``next_cursor`` as ``after`` to continue; rows inserted meanwhile
        never shift a page already served. ``include`` filters entities
        before the page is cut.
        """
        limit = min(limit or self.config.page_size, self.config.max_page_size)
        entities = self.view(tenant_id).entities
        if parent is None:
            found = sorted(
                (e for e in entities.values() if isinstance(e, Organization)),
                key=lambda e: (e.created_at, e.id),
            )
        else:
            owner = self._live(entities, parent.id, tenant_id)
            if owner.kind is not parent.kind:
                raise ValidationError(
                    f"{parent.id} is a {owner.kind.value}, not a {parent.kind.value}"
                )
            found = hierarchy.children(entities, parent)
        if include is not None:
            found = [e for e in found if include(e)]
        if after is not None:
            position = (after.created_at, after.id)
            found = [e for e in found if (e.created_at, e.id) > position]
        page = found[:limit]
        next_cursor = None
        if len(found) > limit:
            last = page[-1]
            next_cursor = Cursor(created_at=last.created_at, id=last.id)
        return ChildPage(items=[redact(e) for e in page], next_cursor=next_cursor)

    async def iter_children(
        self,
        tenant_id: str,
        parent: Optional[Ref],
        page_size: Optional[int] = None,
    ) -> AsyncIterator[VaultEntity]:
        """Lazily walk every child, one page at a time."""
        after = None
        while True:
            page = self.list_children(tenant_id, parent, page_size, after)
            for entity in page.items:
                yield entity
            if page.next_cursor is None:
                return
            after = page.next_cursor

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(
        self,
        tenant_id: str,
        entity_id: str,
        deleted_by: str,
        deleted_from: Optional[str] = None,
    ) -> list[TrashItem]:
        """Trash an entity and its live descendants in one step."""
        async with self.repository.transaction(tenant_id) as tx:
            entity = self._live(tx.entities, entity_id, tenant_id)
            items = self.trash.trash(tx, entity, deleted_by, deleted_from)
        return items

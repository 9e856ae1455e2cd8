"""
Trash Manager — soft delete with replayable snapshots.

Lifecycle of a TrashItem:
    pending ──restore──▶ restored   (terminal)
    pending ──purge────▶ purged     (terminal, item removed)

Deleting an entity trashes its whole live subtree in the same transaction;
every descendant gets its own TrashItem that points at its own original
parent, so a subtree can be restored level by level. Snapshots are written
once and never touched again (sealed secrets stay sealed).
"""
import logging
from typing import Any, Optional
from collections.abc import Mapping

from . import hierarchy
from .attachments import AttachmentResolver, PassthroughResolver
from .audit import record_activity
from .config import VaultConfig
from .exceptions import ConflictError, NotFound, RestoreConflict, ValidationError
from .models import (
    ActivityAction,
    Collection,
    Password,
    Placement,
    PurgeSummary,
    TrashItem,
    TrashPage,
    TrashStatus,
    VaultEntity,
    build_entity,
    utcnow,
)
from .repository import Repository, Transaction

logger = logging.getLogger("navigator.vault")


class TrashManager:
    """Captures, lists, restores and purges trashed entities."""

    def __init__(
        self,
        repository: Repository,
        config: VaultConfig,
        attachments: Optional[AttachmentResolver] = None,
    ):
        self.repository = repository
        self.config = config
        self.attachments = attachments or PassthroughResolver()

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def trash(
        self,
        tx: Transaction,
        entity: VaultEntity,
        deleted_by: str,
        deleted_from: Optional[str] = None,
    ) -> list[TrashItem]:
        """Snapshot ``entity`` and its live descendants, then take them offline.

        Runs inside the caller's transaction: either every TrashItem is
        written and every entity removed, or nothing is.
        """
        depth = self.config.max_folder_depth
        chain = hierarchy.ancestors(tx.entities, entity, depth)
        subtree = hierarchy.descendants(tx.entities, entity)
        doomed = [entity, *subtree]
        tx.claim(
            exclusive=[d.id for d in doomed],
            shared=[a.id for a in chain],
        )
        now = utcnow()
        # paths are read before anything goes offline
        paths = {
            d.id: hierarchy.path_of(tx.entities, d, depth) for d in doomed
        }
        if deleted_from:
            paths[entity.id] = deleted_from
        items = []
        for target in doomed:
            item = TrashItem.capture(
                target,
                parent=hierarchy.parent_ref(target),
                cascade_root=entity.id,
                deleted_by=deleted_by,
                deleted_from=paths[target.id],
                deleted_at=now,
            )
            tx.put_trash(item)
            items.append(item)
        for target in doomed:
            tx.remove(target.id)
        for target in doomed:
            if isinstance(target, Password):
                hierarchy.detach_password(tx, target.id, target.collection_id)
            record_activity(
                tx, ActivityAction.DELETE, target, deleted_by,
                details="" if target is entity else f"cascade from {entity.id}",
            )
        logger.info(
            "Trashed %s %s with %d descendant(s) for tenant=%s",
            entity.kind.value, entity.id, len(subtree), entity.tenant_id,
        )
        return items

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _item(trash: Mapping[str, TrashItem], item_id: str, tenant_id: str) -> TrashItem:
        item = trash.get(item_id)
        if item is None or item.tenant_id != tenant_id:
            raise NotFound(f"Trash item {item_id} not found", {"id": item_id})
        return item

    def get(self, tenant_id: str, item_id: str) -> TrashItem:
        return self._item(self.repository.view(tenant_id).trash, item_id, tenant_id)

    def list_pending(
        self,
        tenant_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        deleted_by: Optional[str] = None,
    ) -> TrashPage:
        """Pending items, most recently deleted first."""
        if page < 1:
            raise ValidationError("page starts at 1")
        limit = min(limit or self.config.page_size, self.config.max_page_size)
        pending = [
            item for item in self.repository.view(tenant_id).trash.values()
            if item.pending and (deleted_by is None or item.deleted_by == deleted_by)
        ]
        pending.sort(key=lambda i: (i.deleted_at, i.id), reverse=True)
        total = len(pending)
        start = (page - 1) * limit
        return TrashPage(
            items=pending[start:start + limit],
            total=total,
            page=page,
            total_pages=(total + limit - 1) // limit,
        )

    @staticmethod
    def _pending_for(trash: Mapping[str, TrashItem], item_id: str) -> Optional[TrashItem]:
        for item in trash.values():
            if item.item_id == item_id and item.pending:
                return item
        return None

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore(
        self,
        tenant_id: str,
        item_id: str,
        restored_by: str,
        placement: Optional[Placement] = None,
    ) -> tuple[TrashItem, VaultEntity]:
        """Rebuild a trashed entity under its original identity.

        Without ``placement`` the entity returns to its original parent,
        which must be live; otherwise ``RestoreConflict`` is raised and the
        caller decides where it should go by passing ``placement``.
        """
        async with self.repository.transaction(tenant_id) as tx:
            item = self._item(tx.trash, item_id, tenant_id)
            if not item.pending:
                raise ValidationError(
                    f"Trash item {item_id} is already {item.status.value}",
                    {"id": item_id, "status": item.status.value},
                )
            snapshot = item.entity()
            if snapshot.id in tx.entities:
                raise ConflictError(
                    f"{snapshot.kind.value} {snapshot.id} is already live",
                    {"id": snapshot.id},
                )
            if placement is None:
                self._check_original_parent(tx, item)
                placement = hierarchy.placement_of(snapshot)
            data: dict[str, Any] = snapshot.model_dump()
            data.update(hierarchy.resolve_placement(
                tx.entities, snapshot.kind, placement, tenant_id,
                moving_id=snapshot.id, max_depth=self.config.max_folder_depth,
            ))
            if isinstance(snapshot, Collection):
                # drop members that were purged while the collection was away
                data["password_ids"] = tuple(
                    pid for pid in snapshot.password_ids
                    if self._pending_for(tx.trash, pid) is not None
                    or getattr(tx.entities.get(pid), "collection_id", None) == snapshot.id
                )
            entity = build_entity(type(snapshot), data)
            chain = hierarchy.ancestors(tx.entities, entity, self.config.max_folder_depth)
            tx.claim(
                exclusive=[item.id, entity.id, *hierarchy.claim_keys(entity)],
                shared=[a.id for a in chain],
            )
            hierarchy.ensure_unique_name(tx.entities, entity)
            tx.put(entity)
            if isinstance(entity, Password):
                hierarchy.attach_password(tx, entity)
            restored = item.model_copy(update={
                "status": TrashStatus.RESTORED,
                "restored_by": restored_by,
                "restored_at": utcnow(),
            })
            tx.put_trash(restored)
            record_activity(tx, ActivityAction.RESTORE, entity, restored_by)
        logger.info(
            "Restored %s %s from trash item %s for tenant=%s",
            entity.kind.value, entity.id, item_id, tenant_id,
        )
        return restored, entity

    def _check_original_parent(self, tx: Transaction, item: TrashItem) -> None:
        parent = item.parent
        if parent is None or parent.id in tx.entities:
            return
        pending = self._pending_for(tx.trash, parent.id)
        if pending is not None:
            logger.warning(
                "Restore of %s blocked: parent %s is in trash", item.id, parent.id,
            )
            raise RestoreConflict(
                f"Parent {parent.kind.value} {parent.id} is in trash; restore it first "
                "or choose a new placement",
                reason="parent_in_trash",
                detail={"parent_id": parent.id, "parent_trash_item_id": pending.id},
            )
        logger.warning(
            "Restore of %s blocked: parent %s no longer exists", item.id, parent.id,
        )
        raise RestoreConflict(
            f"Parent {parent.kind.value} {parent.id} was permanently removed; "
            "choose a new placement",
            reason="parent_removed",
            detail={"parent_id": parent.id},
        )

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    async def purge(self, tenant_id: str, item_id: str, purged_by: str) -> TrashItem:
        """Permanently drop a pending TrashItem and its snapshot."""
        async with self.repository.transaction(tenant_id, exclusive=[item_id]) as tx:
            item = self._item(tx.trash, item_id, tenant_id)
            if not item.pending:
                raise ValidationError(
                    f"Trash item {item_id} is already {item.status.value}",
                    {"id": item_id, "status": item.status.value},
                )
            snapshot = item.entity()
            is_password = isinstance(snapshot, Password)
            if is_password and snapshot.collection_id:
                # nothing may invalidate the commit once blobs are released
                tx.claim(exclusive=[snapshot.collection_id])
            if is_password:
                hierarchy.detach_password(tx, snapshot.id, snapshot.collection_id)
            tx.remove_trash(item.id)
            record_activity(tx, ActivityAction.PURGE, snapshot, purged_by)
            if is_password:
                for attachment in snapshot.attachments:
                    await self.attachments.release(tenant_id, attachment)
        logger.info("Purged trash item %s for tenant=%s", item_id, tenant_id)
        return item.model_copy(update={"status": TrashStatus.PURGED})

    async def empty_all(self, tenant_id: str, purged_by: str) -> PurgeSummary:
        """Purge every pending item; one failure does not stop the rest."""
        pending = [
            item for item in self.repository.view(tenant_id).trash.values()
            if item.pending
        ]
        pending.sort(key=lambda i: (i.deleted_at, i.id))
        summary = PurgeSummary()
        for item in pending:
            try:
                await self.purge(tenant_id, item.id, purged_by)
                summary.purged += 1
            except Exception as err:
                logger.error(
                    "Error purging trash item id=%s for tenant=%s: %s",
                    item.id, tenant_id, err,
                )
                summary.failed[item.id] = str(err)
        logger.info(
            "Emptied trash for tenant=%s: %d purged, %d failed",
            tenant_id, summary.purged, len(summary.failed),
        )
        return summary

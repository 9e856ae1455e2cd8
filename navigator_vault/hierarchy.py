"""
Hierarchy rules shared by the entity store, the trash manager and the
access evaluator.

Every function reads from a plain ``Mapping`` of live entities, so the same
code runs against a committed view or a transaction overlay.
"""
from collections import deque
from collections.abc import Mapping
from typing import Optional

from .exceptions import UniquenessError, ValidationError
from .models import (
    Collection,
    EntityKind,
    Folder,
    Organization,
    Password,
    Placement,
    Ref,
    VaultEntity,
)

_PLACEMENT_KEY = {
    EntityKind.ORGANIZATION: "organization_id",
    EntityKind.COLLECTION: "collection_id",
    EntityKind.FOLDER: "folder_id",
}


def parent_ref(entity: VaultEntity) -> Optional[Ref]:
    """Direct parent of an entity (most specific placement)."""
    if isinstance(entity, Password):
        if entity.folder_id:
            return Ref(kind=EntityKind.FOLDER, id=entity.folder_id)
        if entity.collection_id:
            return Ref(kind=EntityKind.COLLECTION, id=entity.collection_id)
        return Ref(kind=EntityKind.ORGANIZATION, id=entity.organization_id)
    if isinstance(entity, Folder):
        if entity.parent_id:
            return Ref(kind=EntityKind.FOLDER, id=entity.parent_id)
        if entity.collection_id:
            return Ref(kind=EntityKind.COLLECTION, id=entity.collection_id)
        return Ref(kind=EntityKind.ORGANIZATION, id=entity.organization_id)
    if isinstance(entity, Collection):
        return Ref(kind=EntityKind.ORGANIZATION, id=entity.organization_id)
    return None


def placement_of(entity: VaultEntity) -> Placement:
    ref = parent_ref(entity)
    if ref is None:
        return Placement()
    return Placement(**{_PLACEMENT_KEY[ref.kind]: ref.id})


def ancestors(
    entities: Mapping[str, VaultEntity],
    entity: VaultEntity,
    max_depth: int = 64
) -> list[VaultEntity]:
    """Parent chain of ``entity``, nearest first, ending at its Organization.

    Raises:
        ValidationError: on a missing parent, a cycle, or a chain deeper
            than ``max_depth`` folders.
    """
    chain: list[VaultEntity] = []
    visited = {entity.id}
    ref = parent_ref(entity)
    while ref is not None:
        if ref.id in visited:
            raise ValidationError(
                "Cyclic parent chain detected", {"id": entity.id, "at": ref.id}
            )
        # folders, plus one collection and one organization
        if len(chain) > max_depth + 2:
            raise ValidationError(
                f"Parent chain deeper than {max_depth} folders", {"id": entity.id}
            )
        parent = entities.get(ref.id)
        if parent is None or parent.kind is not ref.kind:
            raise ValidationError(
                f"{ref.kind.value} {ref.id} does not exist or is not live",
                {"kind": ref.kind.value, "id": ref.id},
            )
        visited.add(ref.id)
        chain.append(parent)
        ref = parent_ref(parent)
    return chain


def path_of(
    entities: Mapping[str, VaultEntity],
    entity: VaultEntity,
    max_depth: int = 64
) -> str:
    """Location of an entity, e.g. ``/Acme/Ops`` for a folder under Ops."""
    names = [a.name for a in reversed(ancestors(entities, entity, max_depth))]
    return "/" + "/".join(names)


def folder_level(
    entities: Mapping[str, VaultEntity],
    folder: VaultEntity,
    max_depth: int = 64
) -> int:
    """Nesting level of a folder; 1 for a folder directly under a collection or organization."""
    return 1 + sum(1 for a in ancestors(entities, folder, max_depth) if isinstance(a, Folder))


def subtree_depth(root: VaultEntity, subtree: list[VaultEntity]) -> int:
    """Deepest folder level below ``root``, counted from ``root``.

    ``subtree`` must list parents before children, as ``descendants`` does.
    """
    levels = {root.id: 0}
    deepest = 0
    for entity in subtree:
        level = levels[parent_ref(entity).id]
        if isinstance(entity, Folder):
            level += 1
            deepest = max(deepest, level)
        levels[entity.id] = level
    return deepest


def _ordering(entity: VaultEntity):
    return (entity.created_at, entity.id)


def children(entities: Mapping[str, VaultEntity], ref: Ref) -> list[VaultEntity]:
    """Direct children ordered by creation time, then id."""
    found = [e for e in entities.values() if parent_ref(e) == ref]
    found.sort(key=_ordering)
    return found


def descendants(
    entities: Mapping[str, VaultEntity],
    root: VaultEntity
) -> list[VaultEntity]:
    """Every live entity below ``root``, parents before children.

    Walks an explicit work-list instead of recursing.
    """
    index: dict[str, list[VaultEntity]] = {}
    for entity in entities.values():
        ref = parent_ref(entity)
        if ref is not None:
            index.setdefault(ref.id, []).append(entity)
    found: list[VaultEntity] = []
    seen = {root.id}
    queue = deque([root.id])
    while queue:
        current = queue.popleft()
        for child in sorted(index.get(current, ()), key=_ordering):
            if child.id in seen:
                continue
            seen.add(child.id)
            found.append(child)
            queue.append(child.id)
    return found


def _require(
    entities: Mapping[str, VaultEntity],
    entity_id: str,
    kind: EntityKind,
    tenant_id: str
) -> VaultEntity:
    entity = entities.get(entity_id)
    if entity is None or entity.kind is not kind:
        raise ValidationError(
            f"{kind.value} {entity_id} does not exist or is not live",
            {"kind": kind.value, "id": entity_id},
        )
    if entity.tenant_id != tenant_id:
        raise ValidationError(
            "Cross-tenant references are forbidden",
            {"kind": kind.value, "id": entity_id},
        )
    return entity


def resolve_placement(
    entities: Mapping[str, VaultEntity],
    kind: EntityKind,
    placement: Placement,
    tenant_id: str,
    *,
    moving_id: Optional[str] = None,
    max_depth: int = 64
) -> dict[str, Optional[str]]:
    """Validate a placement and return the parent fields for ``kind``.

    Organization and Collection references are derived from the most
    specific parent given; an explicit reference that disagrees with the
    derived one is rejected. ``moving_id`` is the folder being moved, which
    may not end up below itself.
    """
    if kind is EntityKind.ORGANIZATION:
        if placement.parent_id:
            raise ValidationError("Organizations are hierarchy roots")
        return {}
    if kind is EntityKind.COLLECTION:
        if placement.collection_id or placement.folder_id:
            raise ValidationError("A collection can only be placed in an organization")
        if not placement.organization_id:
            raise ValidationError("organization_id is required for a collection")
        org = _require(entities, placement.organization_id, EntityKind.ORGANIZATION, tenant_id)
        return {"organization_id": org.id}

    organization_id = placement.organization_id
    collection_id = placement.collection_id
    folder: Optional[VaultEntity] = None
    if placement.folder_id:
        folder = _require(entities, placement.folder_id, EntityKind.FOLDER, tenant_id)
        if collection_id is not None and collection_id != folder.collection_id:
            raise ValidationError(
                "Folder belongs to a different collection",
                {"folder_id": folder.id, "collection_id": collection_id},
            )
        if organization_id is not None and organization_id != folder.organization_id:
            raise ValidationError(
                "Folder belongs to a different organization",
                {"folder_id": folder.id, "organization_id": organization_id},
            )
        collection_id = folder.collection_id
        organization_id = folder.organization_id
        chain = ancestors(entities, folder, max_depth)
        if moving_id is not None and (
            folder.id == moving_id or any(a.id == moving_id for a in chain)
        ):
            raise ValidationError(
                "A folder cannot be placed under itself or one of its descendants",
                {"id": moving_id, "parent_id": folder.id},
            )
        if kind is EntityKind.FOLDER:
            depth = 1 + sum(1 for a in chain if isinstance(a, Folder))
            if depth >= max_depth:
                raise ValidationError(
                    f"Folders cannot nest deeper than {max_depth} levels",
                    {"parent_id": folder.id},
                )
    elif collection_id:
        collection = _require(entities, collection_id, EntityKind.COLLECTION, tenant_id)
        if organization_id is not None and organization_id != collection.organization_id:
            raise ValidationError(
                "Collection belongs to a different organization",
                {"collection_id": collection_id, "organization_id": organization_id},
            )
        organization_id = collection.organization_id
    elif not organization_id:
        raise ValidationError(
            f"A {kind.value} needs an organization, collection or folder"
        )

    _require(entities, organization_id, EntityKind.ORGANIZATION, tenant_id)
    if collection_id:
        _require(entities, collection_id, EntityKind.COLLECTION, tenant_id)
    if kind is EntityKind.FOLDER:
        return {
            "organization_id": organization_id,
            "collection_id": collection_id,
            "parent_id": folder.id if folder else None,
        }
    return {
        "organization_id": organization_id,
        "collection_id": collection_id,
        "folder_id": folder.id if folder else None,
    }


def _sibling_scope(entity: VaultEntity) -> Optional[tuple]:
    if isinstance(entity, Organization):
        return ("organization",)
    if isinstance(entity, Collection):
        return ("collection", entity.organization_id)
    if isinstance(entity, Folder):
        return ("folder", entity.organization_id, entity.collection_id, entity.parent_id)
    return None


def claim_keys(entity: VaultEntity) -> list[str]:
    """Claim key for the entity's name within its uniqueness scope."""
    scope = _sibling_scope(entity)
    if scope is None:
        return []
    parts = [str(p) for p in scope]
    return ["name:" + ":".join(parts) + ":" + entity.name.casefold()]


def ensure_unique_name(
    entities: Mapping[str, VaultEntity],
    candidate: VaultEntity
) -> None:
    """Reject a name already used in the candidate's sibling scope.

    Organizations are unique per tenant, collections per organization,
    folders per parent. Passwords carry no name constraint.
    """
    scope = _sibling_scope(candidate)
    if scope is None:
        return
    wanted = candidate.name.strip().casefold()
    for other in entities.values():
        if other.id == candidate.id or other.tenant_id != candidate.tenant_id:
            continue
        if _sibling_scope(other) == scope and other.name.strip().casefold() == wanted:
            raise UniquenessError(
                f"A {candidate.kind.value} named {candidate.name!r} already exists here",
                {"kind": candidate.kind.value, "existing_id": other.id},
            )


def attach_password(tx, password: Password) -> None:
    """Append a password to its collection's ordered membership."""
    if not password.collection_id:
        return
    collection = tx.entities.get(password.collection_id)
    if not isinstance(collection, Collection) or password.id in collection.password_ids:
        return
    tx.put(collection.model_copy(update={
        "password_ids": collection.password_ids + (password.id,),
        "version": collection.version + 1,
    }))


def detach_password(tx, password_id: str, collection_id: Optional[str]) -> None:
    if not collection_id:
        return
    collection = tx.entities.get(collection_id)
    if not isinstance(collection, Collection) or password_id not in collection.password_ids:
        return
    tx.put(collection.model_copy(update={
        "password_ids": tuple(p for p in collection.password_ids if p != password_id),
        "version": collection.version + 1,
    }))


def reattach_password(tx, before: Password, after: Password) -> None:
    if before.collection_id != after.collection_id:
        detach_password(tx, before.id, before.collection_id)
        attach_password(tx, after)

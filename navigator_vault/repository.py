"""
Tenant-scoped storage with transactional commits.

Readers take a ``VaultView``: the committed mappings of a tenant at one
instant. Commits never mutate a published mapping, they swap in new ones,
so a view never shows a half-applied cascade.

Writers open a ``Transaction``. Changes are staged and applied in a single
step on exit; leaving the block with an exception (cancellation included)
applies nothing. Structural operations claim the ids they touch:
exclusive claims for the entities they change, shared claims for the
parent chain they depend on. A claim that collides with another open
transaction raises ``ConflictError`` instead of waiting. On commit, every
staged id is also compared with the committed state (optimistic check).
"""
import logging
from collections.abc import Iterable, Iterator, Mapping
from contextlib import asynccontextmanager
from types import MappingProxyType
from typing import Any, AsyncIterator, NamedTuple, Optional

from .exceptions import ConflictError, ValidationError
from .models import ActivityEntry, TrashItem, VaultEntity, new_id

logger = logging.getLogger("navigator.vault")


class VaultView(NamedTuple):
    entities: Mapping[str, VaultEntity]
    trash: Mapping[str, TrashItem]


class ClaimTable:
    """Shared/exclusive claims held by open transactions of one tenant."""

    def __init__(self):
        self._exclusive: dict[str, str] = {}
        self._shared: dict[str, set[str]] = {}

    def acquire(
        self,
        owner: str,
        exclusive: Iterable[str] = (),
        shared: Iterable[str] = ()
    ) -> None:
        exclusive = set(exclusive)
        shared = set(shared) - exclusive
        for key in exclusive:
            holder = self._exclusive.get(key)
            if (holder is not None and holder != owner) or (
                self._shared.get(key, set()) - {owner}
            ):
                raise ConflictError(
                    "Another operation is changing this part of the hierarchy; retry",
                    {"id": key},
                )
        for key in shared:
            holder = self._exclusive.get(key)
            if holder is not None and holder != owner:
                raise ConflictError(
                    "Another operation is changing this part of the hierarchy; retry",
                    {"id": key},
                )
        for key in exclusive:
            self._exclusive[key] = owner
        for key in shared:
            self._shared.setdefault(key, set()).add(owner)

    def release(self, owner: str) -> None:
        for key in [k for k, o in self._exclusive.items() if o == owner]:
            del self._exclusive[key]
        for key in list(self._shared):
            holders = self._shared[key]
            holders.discard(owner)
            if not holders:
                del self._shared[key]

    def held(self) -> int:
        return len(self._exclusive) + len(self._shared)


class TenantState:
    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self.entities: dict[str, VaultEntity] = {}
        self.trash: dict[str, TrashItem] = {}
        self.activity: list[ActivityEntry] = []
        self.claims = ClaimTable()


class _Overlay(Mapping):
    """Committed mapping with staged writes on top (``None`` marks a removal)."""

    def __init__(self, base: Mapping[str, Any], staged: dict[str, Any]):
        self._base = base
        self._staged = staged

    def __getitem__(self, key: str) -> Any:
        if key in self._staged:
            value = self._staged[key]
            if value is None:
                raise KeyError(key)
            return value
        return self._base[key]

    def __iter__(self) -> Iterator[str]:
        for key in self._base:
            if key not in self._staged:
                yield key
        for key, value in self._staged.items():
            if value is not None:
                yield key

    def __len__(self) -> int:
        return sum(1 for _ in self)


class Transaction:
    """Staged changes against one tenant."""

    def __init__(self, state: TenantState):
        self.id = new_id()
        self.tenant_id = state.tenant_id
        self._state = state
        self._base_entities = state.entities
        self._base_trash = state.trash
        self._staged_entities: dict[str, Optional[VaultEntity]] = {}
        self._staged_trash: dict[str, Optional[TrashItem]] = {}
        self._activity: list[ActivityEntry] = []
        self.entities: Mapping[str, VaultEntity] = _Overlay(
            self._base_entities, self._staged_entities
        )
        self.trash: Mapping[str, TrashItem] = _Overlay(
            self._base_trash, self._staged_trash
        )
        self.committed = False

    def claim(self, exclusive: Iterable[str] = (), shared: Iterable[str] = ()) -> None:
        self._state.claims.acquire(self.id, exclusive, shared)

    def _check_tenant(self, tenant_id: str) -> None:
        if tenant_id != self.tenant_id:
            raise ValidationError(
                "Cross-tenant write rejected",
                {"tenant_id": tenant_id, "transaction_tenant": self.tenant_id},
            )

    def put(self, entity: VaultEntity) -> None:
        self._check_tenant(entity.tenant_id)
        self._staged_entities[entity.id] = entity

    def remove(self, entity_id: str) -> None:
        self._staged_entities[entity_id] = None

    def put_trash(self, item: TrashItem) -> None:
        self._check_tenant(item.tenant_id)
        self._staged_trash[item.id] = item

    def remove_trash(self, item_id: str) -> None:
        self._staged_trash[item_id] = None

    def record(self, entry: ActivityEntry) -> None:
        self._activity.append(entry)

    @staticmethod
    def _verify(
        current: Mapping[str, Any],
        base: Mapping[str, Any],
        staged: Mapping[str, Any],
        label: str
    ) -> None:
        for key in staged:
            if current.get(key) is not base.get(key):
                raise ConflictError(
                    f"{label} {key} was changed by a concurrent operation; retry",
                    {"id": key},
                )

    def commit(self) -> None:
        state = self._state
        self._verify(state.entities, self._base_entities, self._staged_entities, "Entity")
        self._verify(state.trash, self._base_trash, self._staged_trash, "Trash item")
        entities = dict(state.entities)
        for key, value in self._staged_entities.items():
            if value is None:
                entities.pop(key, None)
            else:
                entities[key] = value
        trash = dict(state.trash)
        for key, value in self._staged_trash.items():
            if value is None:
                trash.pop(key, None)
            else:
                trash[key] = value
        # publish both mappings together; readers hold the previous pair
        state.entities = entities
        state.trash = trash
        state.activity.extend(self._activity)
        self.committed = True


class Repository:
    """In-process store for all tenants."""

    def __init__(self):
        self._tenants: dict[str, TenantState] = {}

    def _state(self, tenant_id: str) -> TenantState:
        state = self._tenants.get(tenant_id)
        if state is None:
            state = self._tenants[tenant_id] = TenantState(tenant_id)
        return state

    def view(self, tenant_id: str) -> VaultView:
        state = self._state(tenant_id)
        return VaultView(
            entities=MappingProxyType(state.entities),
            trash=MappingProxyType(state.trash),
        )

    def activity(self, tenant_id: str) -> list[ActivityEntry]:
        return list(self._state(tenant_id).activity)

    @asynccontextmanager
    async def transaction(
        self,
        tenant_id: str,
        exclusive: Iterable[str] = (),
        shared: Iterable[str] = ()
    ) -> AsyncIterator[Transaction]:
        state = self._state(tenant_id)
        tx = Transaction(state)
        try:
            tx.claim(exclusive, shared)
            yield tx
            tx.commit()
        finally:
            state.claims.release(tx.id)

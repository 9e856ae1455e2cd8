"""
Vault Activity Log — who did what to which entry.

Entries are written inside the transaction of the change they describe, so
a rolled-back change leaves no entry behind.

Security Note:
    Secret fields are recorded as changed, never with their values.
"""
import logging
from typing import Any, Optional

import orjson

from .models import ActivityAction, ActivityEntry, FieldChange, VaultEntity

logger = logging.getLogger("navigator.vault")

SECRET_FIELDS = frozenset({"secret"})
REDACTED_CHANGE = "<redacted>"
_TRACKED_EXTRA = ("organization_id", "collection_id", "folder_id", "parent_id")


def _render(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return orjson.dumps(value).decode("utf-8")


def diff_fields(before: VaultEntity, after: VaultEntity) -> tuple[FieldChange, ...]:
    """Field-level changes between two versions of the same entity."""
    tracked = set(type(after).content_fields)
    tracked.update(f for f in _TRACKED_EXTRA if f in type(after).model_fields)
    old = before.model_dump(mode="json", include=tracked)
    new = after.model_dump(mode="json", include=tracked)
    changes = []
    for name in sorted(tracked):
        if old.get(name) == new.get(name):
            continue
        if name in SECRET_FIELDS:
            changes.append(
                FieldChange(field=name, old=REDACTED_CHANGE, new=REDACTED_CHANGE)
            )
        else:
            changes.append(
                FieldChange(field=name, old=_render(old.get(name)), new=_render(new.get(name)))
            )
    return tuple(changes)


def record_activity(
    tx,
    action: ActivityAction,
    entity: VaultEntity,
    performed_by: str,
    changes: tuple[FieldChange, ...] = (),
    details: str = ""
) -> ActivityEntry:
    entry = ActivityEntry(
        tenant_id=entity.tenant_id,
        entity_id=entity.id,
        entity_kind=entity.kind,
        action=action,
        performed_by=performed_by,
        changes=changes,
        details=details,
    )
    tx.record(entry)
    logger.debug(
        "Vault %s: tenant=%s %s=%s user=%s",
        action.value, entity.tenant_id, entity.kind.value, entity.id, performed_by,
    )
    return entry

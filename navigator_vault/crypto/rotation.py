"""
Vault Key Rotation — Batch re-encryption of secrets under the active key.

Re-encrypts the secret of every live Password whose ciphertext was sealed
under a key version other than the provider's active one. Each batch
commits in its own transaction, so an interrupted run can simply be
started again: secrets already at the active version are skipped.

Trash snapshots are never re-encrypted; the key provider must keep old
versions available for as long as such snapshots may be restored.

Security Note:
    Plaintext exists in memory only during re-encryption of each entry.
    Never log plaintext or ciphertext values.
"""
import logging
from typing import TYPE_CHECKING

from ..audit import record_activity
from ..exceptions import ConflictError, CryptoError
from ..models import ActivityAction, Password, utcnow

if TYPE_CHECKING:
    from ..store import EntityStore

logger = logging.getLogger("navigator.vault")


async def rotate_tenant_key(
    store: "EntityStore",
    tenant_id: str,
    batch_size: int = 100,
    performed_by: str = "system",
) -> dict:
    """Re-encrypt all live secrets of a tenant under the active key.

    Args:
        store: Entity store holding the tenant's passwords.
        tenant_id: Tenant whose secrets are rotated.
        batch_size: Number of entries committed per transaction.
        performed_by: Actor recorded in the activity log.

    Returns:
        Stats dict with keys: total, rotated, errors, skipped.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    active = await store.keys.active_key(tenant_id)
    stats = {"total": 0, "rotated": 0, "errors": 0, "skipped": 0}

    candidates: list[Password] = []
    for entity in store.view(tenant_id).entities.values():
        if not isinstance(entity, Password):
            continue
        stats["total"] += 1
        try:
            version = store.crypto.key_version(entity.secret)
        except CryptoError as err:
            logger.error("Error rotating secret id=%s: %s", entity.id, err)
            stats["errors"] += 1
            continue
        if version == active.key_id:
            stats["skipped"] += 1
        else:
            candidates.append(entity)

    logger.info(
        "Starting key rotation for tenant=%s to v%d (%d candidates, batch_size=%d)",
        tenant_id, active.key_id, len(candidates), batch_size,
    )

    for start in range(0, len(candidates), batch_size):
        batch = candidates[start:start + batch_size]
        logger.info(
            "Processing batch %d (%d entries)", start // batch_size + 1, len(batch),
        )
        sealed: list[tuple[Password, str]] = []
        for password in batch:
            try:
                old_key = await store.keys.get_key(
                    tenant_id, store.crypto.key_version(password.secret)
                )
                plaintext = store.crypto.decrypt(password.secret, old_key)
                sealed.append((password, store.crypto.encrypt(plaintext, active)))
            except CryptoError as err:
                logger.error("Error rotating secret id=%s: %s", password.id, err)
                stats["errors"] += 1

        rotated = skipped = 0
        try:
            async with store.repository.transaction(tenant_id) as tx:
                now = utcnow()
                for password, ciphertext in sealed:
                    current = tx.entities.get(password.id)
                    if current is None or current.secret != password.secret:
                        # changed or trashed since the batch was read
                        skipped += 1
                        continue
                    tx.claim(exclusive=[password.id])
                    tx.put(current.model_copy(update={
                        "secret": ciphertext,
                        "updated_at": now,
                        "version": current.version + 1,
                    }))
                    record_activity(
                        tx, ActivityAction.UPDATE, current, performed_by,
                        details=f"key rotation to v{active.key_id}",
                    )
                    rotated += 1
        except ConflictError as err:
            logger.error(
                "Error committing rotation batch %d for tenant=%s: %s",
                start // batch_size + 1, tenant_id, err,
            )
            stats["errors"] += len(sealed)
            continue
        stats["rotated"] += rotated
        stats["skipped"] += skipped

    logger.info("Key rotation complete for tenant=%s: %s", tenant_id, stats)
    return stats

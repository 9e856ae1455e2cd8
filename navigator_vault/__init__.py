"""Navigator Vault — Multi-tenant encrypted secret hierarchy.

Security Note (Threat Model):
    Password secrets are sealed at rest and in trash snapshots. Plaintext
    is produced only by ``Vault.reveal_secret`` for the immediate caller
    and is never cached. Key storage and rotation policy belong to the
    configured key provider.
"""

from .version import __version__
from .config import VaultConfig, load_master_keys, generate_master_key
from .exceptions import (
    VaultError,
    ValidationError,
    UniquenessError,
    NotFound,
    PermissionDenied,
    CryptoError,
    InvalidKey,
    DecryptionFailed,
    ConflictError,
    RestoreConflict,
)
from .models import (
    EntityKind,
    Operation,
    ShareAccess,
    GrantScope,
    TrashStatus,
    Organization,
    Collection,
    Folder,
    Password,
    Attachment,
    Placement,
    Grant,
    Principal,
    TrashItem,
    ActivityEntry,
    Cursor,
)
from .generator import PasswordOptions, generate_password
from .vault import Vault

__all__ = [
    "__version__",
    "Vault",
    "VaultConfig",
    "load_master_keys",
    "generate_master_key",
    "VaultError",
    "ValidationError",
    "UniquenessError",
    "NotFound",
    "PermissionDenied",
    "CryptoError",
    "InvalidKey",
    "DecryptionFailed",
    "ConflictError",
    "RestoreConflict",
    "EntityKind",
    "Operation",
    "ShareAccess",
    "GrantScope",
    "TrashStatus",
    "Organization",
    "Collection",
    "Folder",
    "Password",
    "Attachment",
    "Placement",
    "Grant",
    "Principal",
    "TrashItem",
    "ActivityEntry",
    "Cursor",
    "PasswordOptions",
    "generate_password",
]

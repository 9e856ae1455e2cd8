"""
Vault Exceptions.

Every failure raised by the vault core derives from ``VaultError``.
``detail`` carries identifiers only; secret material never reaches an
exception message.
"""
from typing import Any, Optional


class VaultError(Exception):
    """Base class for vault errors."""

    retryable: bool = False

    def __init__(self, message: str, detail: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class ValidationError(VaultError):
    """Malformed input, invalid parent reference or illegal transition."""


class NotFound(VaultError):
    """The requested entity or trash item does not exist."""


class PermissionDenied(VaultError):
    """The acting user may not perform the requested operation."""


class CryptoError(VaultError):
    """Base class for encryption failures."""


class InvalidKey(CryptoError):
    """The supplied key is malformed or unavailable."""


class DecryptionFailed(CryptoError):
    """Ciphertext does not authenticate under the supplied key."""


class ConflictError(VaultError):
    """A concurrent structural change collided; the caller may retry."""

    retryable = True


class UniquenessError(ValidationError, ConflictError):
    """A sibling already uses this name."""

    retryable = False


class RestoreConflict(VaultError):
    """The original placement of a trashed entity no longer exists.

    ``reason`` is ``parent_in_trash`` when the parent is itself pending in
    trash, ``parent_removed`` when it was purged or never restored.
    """

    def __init__(
        self,
        message: str,
        reason: str,
        detail: Optional[dict[str, Any]] = None
    ):
        super().__init__(message, detail)
        self.reason = reason

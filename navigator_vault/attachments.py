"""
Attachment references.

The vault keeps only an attachment's logical reference (name, size, mime
type and an opaque location token). Moving bytes to and from blob storage
is the resolver's job.
"""
from abc import ABC, abstractmethod

from .models import Attachment


class AttachmentResolver(ABC):
    """Bridge between attachment references and blob storage."""

    @abstractmethod
    async def validate(self, tenant_id: str, attachment: Attachment) -> Attachment:
        """Confirm the location token is usable for this tenant.

        May return a normalized reference. Raise ``ValidationError`` to
        reject it.
        """

    @abstractmethod
    async def release(self, tenant_id: str, attachment: Attachment) -> None:
        """Free the stored bytes once the owning entry is purged."""


class PassthroughResolver(AttachmentResolver):
    """Accepts every reference and owns no storage."""

    async def validate(self, tenant_id: str, attachment: Attachment) -> Attachment:
        return attachment

    async def release(self, tenant_id: str, attachment: Attachment) -> None:
        return None

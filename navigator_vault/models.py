"""
Vault data model.

Hierarchy entities (Organization → Collection → Folder → Password), the
permission shapes attached to an acting user, trash records and activity
entries. Entities are immutable pydantic models; every change produces a
new instance, so a committed view can be shared with readers safely.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from .exceptions import ValidationError


REDACTED = "********"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class EntityKind(str, Enum):
    ORGANIZATION = "organization"
    COLLECTION = "collection"
    FOLDER = "folder"
    PASSWORD = "password"


class Operation(str, Enum):
    READ = "read"
    WRITE = "write"


class ShareAccess(str, Enum):
    READ = "read"
    WRITE = "write"


class GrantScope(str, Enum):
    ORGANIZATION = "organization"
    COLLECTION = "collection"
    FOLDER = "folder"
    PASSWORD = "password"


class TrashStatus(str, Enum):
    PENDING = "pending"
    RESTORED = "restored"
    PURGED = "purged"


class ActivityAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    MOVE = "move"
    DELETE = "delete"
    RESTORE = "restore"
    PURGE = "purge"
    VIEW_SECRET = "view_secret"


class Ref(BaseModel):
    """Typed pointer to a hierarchy entity."""
    model_config = ConfigDict(frozen=True)

    kind: EntityKind
    id: str


class Placement(BaseModel):
    """Where an entity hangs in the hierarchy.

    Only the most specific reference is needed: a folder implies its
    collection and organization, a collection implies its organization.
    For a Folder, ``folder_id`` names the parent folder.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    organization_id: Optional[str] = None
    collection_id: Optional[str] = None
    folder_id: Optional[str] = None

    @property
    def parent_id(self) -> Optional[str]:
        return self.folder_id or self.collection_id or self.organization_id


class Attachment(BaseModel):
    """Logical reference to a blob stored outside the vault."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    size: int = Field(ge=0)
    mime_type: str = Field(min_length=1, max_length=255)
    location: str = Field(min_length=1)
    uploaded_at: datetime = Field(default_factory=utcnow)


class VaultEntity(BaseModel):
    """Common shape of every hierarchy entity."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ClassVar[EntityKind]
    content_fields: ClassVar[frozenset[str]] = frozenset({"name"})

    id: str = Field(default_factory=new_id)
    tenant_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=1, ge=1)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @property
    def ref(self) -> Ref:
        return Ref(kind=self.kind, id=self.id)

    def snapshot(self) -> bytes:
        """Serialize the full state (secret values stay sealed)."""
        return orjson.dumps(self.model_dump(mode="json"))


class Organization(VaultEntity):
    kind: ClassVar[EntityKind] = EntityKind.ORGANIZATION
    content_fields: ClassVar[frozenset[str]] = frozenset({"name", "email"})

    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v


class SharedEntity(VaultEntity):
    """Entity carrying its own sharing set."""

    shared_with: dict[str, ShareAccess] = Field(default_factory=dict)

    @field_validator("shared_with", mode="before")
    @classmethod
    def normalize_shares(cls, v: Any) -> Any:
        # a bare list of user ids means read-only shares
        if v is None:
            return {}
        if isinstance(v, (list, tuple, set, frozenset)):
            return {str(user): ShareAccess.READ for user in v}
        return v


class Collection(SharedEntity):
    kind: ClassVar[EntityKind] = EntityKind.COLLECTION
    content_fields: ClassVar[frozenset[str]] = frozenset(
        {"name", "description", "shared_with"}
    )

    organization_id: str
    description: str = ""
    password_ids: tuple[str, ...] = ()


class Folder(SharedEntity):
    kind: ClassVar[EntityKind] = EntityKind.FOLDER
    content_fields: ClassVar[frozenset[str]] = frozenset({"name", "shared_with"})

    organization_id: str
    collection_id: Optional[str] = None
    parent_id: Optional[str] = None


class Password(SharedEntity):
    kind: ClassVar[EntityKind] = EntityKind.PASSWORD
    content_fields: ClassVar[frozenset[str]] = frozenset({
        "name", "username", "secret", "website_urls", "notes",
        "attachments", "shared_with",
    })

    organization_id: str
    collection_id: Optional[str] = None
    folder_id: Optional[str] = None
    username: str = ""
    secret: str = Field(min_length=1)
    website_urls: tuple[str, ...] = ()
    notes: str = ""
    attachments: tuple[Attachment, ...] = ()
    last_modified: datetime = Field(default_factory=utcnow)

    @field_validator("website_urls", mode="before")
    @classmethod
    def single_url(cls, v: Any) -> Any:
        if isinstance(v, str):
            return (v,) if v else ()
        return v

    @field_validator("website_urls")
    @classmethod
    def strip_urls(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(url.strip() for url in v if url.strip())


ENTITY_TYPES: dict[EntityKind, type[VaultEntity]] = {
    EntityKind.ORGANIZATION: Organization,
    EntityKind.COLLECTION: Collection,
    EntityKind.FOLDER: Folder,
    EntityKind.PASSWORD: Password,
}


def schema_error(err: SchemaError, kind: str) -> ValidationError:
    """Translate a pydantic error without echoing input values."""
    problems = [
        {"field": ".".join(str(p) for p in e["loc"]), "message": e["msg"]}
        for e in err.errors(include_input=False, include_url=False)
    ]
    summary = "; ".join(f"{p['field']}: {p['message']}" for p in problems)
    return ValidationError(f"Invalid {kind}: {summary}", {"errors": problems})


def build_entity(cls: type[VaultEntity], data: dict[str, Any]) -> VaultEntity:
    try:
        return cls.model_validate(data)
    except SchemaError as err:
        raise schema_error(err, cls.kind.value) from None


class Grant(BaseModel):
    """Coarse allow-list entry for one Organization, Collection, Folder or Password."""
    model_config = ConfigDict(frozen=True)

    scope: GrantScope
    target_id: str


class Principal(BaseModel):
    """Pre-resolved acting user and permission context."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    tenant_id: str
    is_admin: bool = False
    grants: frozenset[Grant] = frozenset()

    def has_grant(self, scope: GrantScope, target_id: str) -> bool:
        return Grant(scope=scope, target_id=target_id) in self.grants


class TrashItem(BaseModel):
    """Immutable record of a deleted entity and its pre-delete state."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str
    item_id: str
    item_type: EntityKind
    item_name: str
    snapshot: bytes
    parent: Optional[Ref] = None
    cascade_root: str
    deleted_by: str
    deleted_from: str
    deleted_at: datetime = Field(default_factory=utcnow)
    status: TrashStatus = TrashStatus.PENDING
    restored_by: Optional[str] = None
    restored_at: Optional[datetime] = None

    @classmethod
    def capture(
        cls,
        entity: VaultEntity,
        *,
        parent: Optional[Ref],
        cascade_root: str,
        deleted_by: str,
        deleted_from: str,
        deleted_at: datetime,
    ) -> "TrashItem":
        return cls(
            tenant_id=entity.tenant_id,
            item_id=entity.id,
            item_type=entity.kind,
            item_name=entity.name,
            snapshot=entity.snapshot(),
            parent=parent,
            cascade_root=cascade_root,
            deleted_by=deleted_by,
            deleted_from=deleted_from,
            deleted_at=deleted_at,
        )

    @property
    def pending(self) -> bool:
        return self.status is TrashStatus.PENDING

    def entity(self) -> VaultEntity:
        """Rebuild the entity exactly as it was captured."""
        return ENTITY_TYPES[self.item_type].model_validate_json(self.snapshot)


class FieldChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    old: Optional[str] = None
    new: Optional[str] = None


class ActivityEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    tenant_id: str
    entity_id: str
    entity_kind: EntityKind
    action: ActivityAction
    performed_by: str
    timestamp: datetime = Field(default_factory=utcnow)
    changes: tuple[FieldChange, ...] = ()
    details: str = ""


class Cursor(BaseModel):
    """Keyset position for child listings: (created_at, id)."""
    model_config = ConfigDict(frozen=True)

    created_at: datetime
    id: str


@dataclass
class ChildPage:
    items: list[VaultEntity]
    next_cursor: Optional[Cursor] = None


@dataclass
class TrashPage:
    items: list[TrashItem]
    total: int
    page: int
    total_pages: int


@dataclass
class PurgeSummary:
    purged: int = 0
    failed: dict[str, str] = field(default_factory=dict)

"""Audit trail shared domain types.

This module defines the enums, the :class:`AuditRecord` model, and the
plain dataclasses exchanged between the capture, dispatch and revert
layers and the persistence layer they observe.

Key design decisions:
* ``AuditRecord`` is a Pydantic v2 model with ``validate_assignment`` so
  that identity resolution and signing after construction are validated
  too.  Once :meth:`AuditRecord.seal` has run, every field is write-once and
  nested maps/lists are replaced by read-only containers.
* Persistence metadata (:class:`EntityMetadata`) is explicit: each field
  is described by a :class:`FieldDescriptor` instead of being discovered by
  reflection.
* Enums use *string* values so they serialise cleanly to JSON.
"""
from __future__ import annotations

import enum
import ipaddress
import json
import uuid
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from audit_trail.core.errors import RecordSealed

PENDING_ID = "pending"
"""Identity placeholder for objects whose identifier is assigned on commit."""


def _utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def type_name(obj_or_type: Any) -> str:
    """Return the qualified type name used as ``entity_type`` on records."""
    cls = obj_or_type if isinstance(obj_or_type, type) else type(obj_or_type)
    return f"{cls.__module__}.{cls.__qualname__}"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class AuditAction(enum.StrEnum):
    """Kind of mutation (or read) an audit record describes."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SOFT_DELETE = "soft_delete"
    RESTORE = "restore"
    REVERT = "revert"
    ACCESS = "access"


class DispatchPhase(enum.StrEnum):
    """Point in the commit lifecycle at which a record is dispatched."""

    ON_FLUSH = "on_flush"
    POST_FLUSH = "post_flush"
    BATCH_FLUSH = "batch_flush"
    POST_LOAD = "post_load"


class FieldKind(enum.StrEnum):
    """How a persistent field is serialized and denormalized."""

    SCALAR = "scalar"
    DATETIME = "datetime"
    DATE = "date"
    TIME = "time"
    ASSOCIATION = "association"
    COLLECTION = "collection"


# ---------------------------------------------------------------------------
# Read-only containers used by sealed records
# ---------------------------------------------------------------------------

def _reject(*_: Any, **__: Any) -> Any:
    raise RecordSealed()


class FrozenDict(dict):
    """A ``dict`` whose mutators raise :class:`RecordSealed`."""

    __slots__ = ()

    __setitem__ = _reject
    __delitem__ = _reject
    __ior__ = _reject
    clear = _reject
    pop = _reject
    popitem = _reject
    setdefault = _reject
    update = _reject


class FrozenList(list):
    """A ``list`` whose mutators raise :class:`RecordSealed`."""

    __slots__ = ()

    __setitem__ = _reject
    __delitem__ = _reject
    __iadd__ = _reject
    __imul__ = _reject
    append = _reject
    extend = _reject
    insert = _reject
    pop = _reject
    remove = _reject
    clear = _reject
    sort = _reject
    reverse = _reject


def freeze(value: Any) -> Any:
    """Recursively replace maps and lists with read-only containers."""
    if isinstance(value, Mapping):
        return FrozenDict({k: freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return FrozenList(freeze(v) for v in value)
    if isinstance(value, tuple):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of :func:`freeze`; tuples come back as lists."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value


def format_identifier(values: Iterable[Any]) -> str | None:
    """Render identifier values as a single identity string.

    One value renders as ``str(value)``; composite keys render as a JSON
    array of per-field strings.  An empty iterable returns ``None``.
    """
    parts = [str(v) for v in values]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return json.dumps(parts)


# ---------------------------------------------------------------------------
# Audit record
# ---------------------------------------------------------------------------

class AuditRecord(BaseModel):
    """One audited mutation of one object.

    A record is created unsigned, may have its ``entity_id`` resolved and
    its ``signature`` attached, and is then sealed by the dispatcher.
    After :meth:`seal` any assignment, direct or through a nested
    container, raises :class:`~audit_trail.core.errors.RecordSealed`.
    """

    model_config = ConfigDict(strict=True, validate_assignment=True)

    record_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="UUID v4 identifying this record.",
    )
    entity_type: str = Field(description="Qualified type name of the audited object.")
    entity_id: str = Field(
        default=PENDING_ID,
        description="Identity of the audited object, or ``pending``.",
    )
    action: AuditAction
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changed_fields: list[str] = Field(default_factory=list)
    user_id: str | None = None
    username: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    transaction_token: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    signature: str | None = None

    _sealed: bool = PrivateAttr(default=False)

    @field_validator("entity_type", "entity_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("client_ip")
    @classmethod
    def _valid_ip(cls, value: str | None) -> str | None:
        if value is not None:
            ipaddress.ip_address(value)
        return value

    @field_validator("created_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("created_at must be timezone-aware")
        # Signatures cover whole seconds only.
        return value.replace(microsecond=0)

    def __setattr__(self, name: str, value: Any) -> None:
        if self.is_sealed and not name.startswith("__"):
            raise RecordSealed(details={"field": name})
        super().__setattr__(name, value)

    def __delattr__(self, name: str) -> None:
        if self.is_sealed:
            raise RecordSealed(details={"field": name})
        super().__delattr__(name)

    @property
    def is_sealed(self) -> bool:
        private = getattr(self, "__pydantic_private__", None) or {}
        return bool(private.get("_sealed", False))

    @property
    def is_pending(self) -> bool:
        return self.entity_id == PENDING_ID

    def seal(self) -> None:
        """Make the record write-once.  Sealing twice is a no-op."""
        if self.is_sealed:
            return
        for name in ("old_values", "new_values", "changed_fields", "context"):
            # Bypass validate_assignment, which would copy the frozen
            # containers back into plain ones.
            self.__dict__[name] = freeze(self.__dict__[name])
        self._sealed = True

    def to_dict(self) -> dict[str, Any]:
        """Return a plain, JSON-ready copy of the record."""
        return {
            "record_id": self.record_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action.value,
            "old_values": thaw(self.old_values),
            "new_values": thaw(self.new_values),
            "changed_fields": thaw(self.changed_fields),
            "user_id": self.user_id,
            "username": self.username,
            "client_ip": self.client_ip,
            "user_agent": self.user_agent,
            "transaction_token": self.transaction_token,
            "context": thaw(self.context),
            "created_at": self.created_at.isoformat(),
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditRecord:
        """Rebuild an (unsealed) record from :meth:`to_dict` output."""
        return cls.model_validate(dict(data), strict=False)


# ---------------------------------------------------------------------------
# Persistence metadata
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class FieldDescriptor:
    """How to read, write and interpret one persistent field."""

    name: str
    kind: FieldKind = FieldKind.SCALAR
    target_type: type | None = None
    getter: Callable[[Any], Any] | None = None
    setter: Callable[[Any, Any], None] | None = None

    @property
    def is_association(self) -> bool:
        return self.kind in (FieldKind.ASSOCIATION, FieldKind.COLLECTION)

    def get(self, entity: Any) -> Any:
        if self.getter is not None:
            return self.getter(entity)
        return getattr(entity, self.name)

    def set(self, entity: Any, value: Any) -> None:
        if self.setter is not None:
            self.setter(entity, value)
        else:
            setattr(entity, self.name, value)


@dataclass(slots=True)
class EntityMetadata:
    """Field descriptors and identifier layout of one persistent type."""

    entity_type: type
    identifier_fields: tuple[str, ...] = ("id",)
    generated_identifier: bool = True
    fields: dict[str, FieldDescriptor] = field(default_factory=dict)

    @classmethod
    def of(
        cls,
        entity_type: type,
        *fields: FieldDescriptor | str,
        identifier: Iterable[str] = ("id",),
        generated: bool = True,
    ) -> EntityMetadata:
        """Build metadata from descriptors or bare scalar field names."""
        descriptors = [f if isinstance(f, FieldDescriptor) else FieldDescriptor(f) for f in fields]
        identifier_fields = tuple(identifier)
        by_name = {d.name: d for d in descriptors}
        for name in identifier_fields:
            by_name.setdefault(name, FieldDescriptor(name))
        return cls(
            entity_type=entity_type,
            identifier_fields=identifier_fields,
            generated_identifier=generated,
            fields=by_name,
        )

    def is_identifier(self, name: str) -> bool:
        return name in self.identifier_fields

    def has_field(self, name: str) -> bool:
        return name in self.fields

    def identifier_values(self, entity: Any) -> dict[str, Any]:
        """Return the non-null identifier values of *entity*, by field name."""
        values: dict[str, Any] = {}
        for name in self.identifier_fields:
            value = self.fields[name].get(entity)
            if value is not None:
                values[name] = value
        return values


# ---------------------------------------------------------------------------
# Unit of work snapshot
# ---------------------------------------------------------------------------

Changeset = dict[str, tuple[Any, Any]]
"""Field name -> ``(old, new)`` pair for one updated object."""


@dataclass(slots=True)
class CollectionChange:
    """A to-many association of *owner* whose membership changed."""

    owner: Any
    field: str
    snapshot: list[Any] = field(default_factory=list)
    inserted: list[Any] = field(default_factory=list)
    deleted: list[Any] = field(default_factory=list)


@dataclass(slots=True)
class UnitOfWork:
    """The pending changes of one flush, as handed over by the persistence layer."""

    insertions: list[Any] = field(default_factory=list)
    updates: list[tuple[Any, Changeset]] = field(default_factory=list)
    deletions: list[Any] = field(default_factory=list)
    collection_updates: list[CollectionChange] = field(default_factory=list)

    def insert(self, *entities: Any) -> UnitOfWork:
        self.insertions.extend(entities)
        return self

    def update(self, entity: Any, changeset: Changeset) -> UnitOfWork:
        self.updates.append((entity, dict(changeset)))
        return self

    def delete(self, *entities: Any) -> UnitOfWork:
        self.deletions.extend(entities)
        return self

    def collection_update(self, change: CollectionChange) -> UnitOfWork:
        self.collection_updates.append(change)
        return self

    def changeset(self, entity: Any) -> Changeset:
        for candidate, changes in self.updates:
            if candidate is entity:
                return changes
        return {}

    def __len__(self) -> int:
        return (
            len(self.insertions)
            + len(self.updates)
            + len(self.deletions)
            + len(self.collection_updates)
        )


# ---------------------------------------------------------------------------
# Transaction-scoped buffers
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class PendingDelivery:
    """A record waiting for its identity, signature or dispatch."""

    entity: Any
    record: AuditRecord
    is_insert: bool = False


@dataclass(slots=True)
class PendingDeletion:
    """A deletion whose disposition is decided after the commit."""

    entity: Any
    data: dict[str, Any]
    is_managed: bool = True


# ---------------------------------------------------------------------------
# Actor and per-type policy
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Actor:
    """Who performed a change, as reported by an :class:`ActorResolver`."""

    user_id: str | None = None
    username: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    impersonator_id: str | None = None
    impersonator_username: str | None = None

    @property
    def is_impersonated(self) -> bool:
        return self.impersonator_id is not None


@dataclass(frozen=True, slots=True)
class AccessPolicy:
    """Declares that reads of a type produce ``access`` records."""

    level: str = "info"
    message: str | None = None
    cooldown: int = 0


@dataclass(frozen=True, slots=True)
class AuditPolicy:
    """Per-type audit capabilities.

    ``sensitive_fields`` maps field names to the mask written in their
    place.  ``condition`` receives ``(entity, action, changeset, actor)`` and
    returns whether the change is audited.
    """

    enabled: bool = True
    ignored_properties: frozenset[str] = frozenset()
    sensitive_fields: Mapping[str, str] = field(default_factory=dict)
    access: AccessPolicy | None = None
    condition: Callable[..., bool] | None = None


@dataclass(slots=True)
class DeliveryContext:
    """What a transport knows about the record it is sending."""

    phase: DispatchPhase
    manager: Any = None
    entity: Any = None
    is_insert: bool = False
    uow: UnitOfWork | None = None

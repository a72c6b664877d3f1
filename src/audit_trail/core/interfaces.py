"""Audit trail abstract interfaces and in-memory implementations.

This module defines the *structural* interfaces (``typing.Protocol``) the
audit pipeline consumes from its host: the persistence layer it observes,
the actor and context sources it enriches records with, the durable audit
store, and the delivery sinks.  It also provides lightweight in-memory
implementations suitable for testing and local development.

Every Protocol class is decorated with ``@runtime_checkable`` so that
``isinstance`` checks work at run-time in addition to static analysis.

In-memory implementations are **not** thread-safe.  Production deployments
MUST substitute persistent, concurrency-safe backends.
"""
from __future__ import annotations

import itertools
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from audit_trail.core.types import (
    Actor,
    AuditAction,
    AuditRecord,
    DeliveryContext,
    DispatchPhase,
    EntityMetadata,
    format_identifier,
)

# ===================================================================
# Protocol (interface) definitions
# ===================================================================

@runtime_checkable
class ObjectManager(Protocol):
    """The persistence layer whose units of work are audited."""

    def metadata(self, entity_or_type: Any) -> EntityMetadata:
        """Return field descriptors for an object or type.

        Raises :class:`LookupError` for types the manager does not map.
        """
        ...

    def contains(self, entity: Any) -> bool:
        """Return ``True`` if *entity* is managed and not scheduled for removal."""
        ...

    def persist(self, entity: Any) -> None:
        ...

    def remove(self, entity: Any) -> None:
        ...

    def flush(self) -> None:
        """Write staged changes, assigning generated identifiers."""
        ...

    def find(self, entity_type: type, identity: str) -> Any | None:
        """Load an object by type and formatted identity, honouring filters."""
        ...

    def transaction(self) -> Any:
        """Context manager committing on exit and rolling back on error."""
        ...

    def enabled_filters(self) -> list[str]:
        ...

    def disable_filter(self, name: str) -> None:
        ...

    def enable_filter(self, name: str) -> None:
        ...


@runtime_checkable
class ActorResolver(Protocol):
    """Source of the user responsible for the current change."""

    def current_actor(self) -> Actor | None:
        ...


@runtime_checkable
class ContextContributor(Protocol):
    """Adds entries to the ``context`` map of every record.

    *new_values* is the record's new-value map: the full snapshot for
    inserts and soft deletions, the changed fields for updates, empty for
    hard deletions.
    """

    def contribute(
        self, entity: Any, action: AuditAction, new_values: Mapping[str, Any]
    ) -> dict[str, Any]:
        ...


@runtime_checkable
class AuditVoter(Protocol):
    """Veto point; a record is created only if every voter allows it.

    Updates pass their ``(old, new)`` changeset; inserts pass the new-value
    snapshot; deletions and reads pass an empty map.
    """

    def vote(self, entity: Any, action: AuditAction, changeset: Mapping[str, Any]) -> bool:
        ...


@runtime_checkable
class EntityValidator(Protocol):
    """Validates an object before a revert is committed."""

    def validate(self, entity: Any) -> list[str]:
        """Return violation messages; an empty list means valid."""
        ...


@runtime_checkable
class AuditTransport(Protocol):
    """A sink records are delivered to."""

    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        """Deliver *record*.  Raise on failure."""
        ...

    def supports(self, phase: DispatchPhase) -> bool:
        ...


@runtime_checkable
class MessagePublisher(Protocol):
    """Message bus used by the queue transport."""

    def publish(self, body: str, headers: dict[str, str]) -> None:
        ...


@runtime_checkable
class AuditLogStore(Protocol):
    """Durable store of audit records; also the dispatch fallback.

    Records are *staged* by :meth:`add` and become durable on
    :meth:`flush`.
    """

    def add(self, record: AuditRecord) -> None:
        ...

    def contains(self, record: AuditRecord) -> bool:
        ...

    def has_pending(self) -> bool:
        ...

    def flush(self) -> int:
        """Make staged records durable and return how many were written."""
        ...

    def discard_pending(self) -> None:
        ...

    def get(self, record_id: str) -> AuditRecord | None:
        ...

    def find(
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        action: AuditAction | None = None,
        transaction_token: str | None = None,
        limit: int | None = None,
    ) -> list[AuditRecord]:
        ...

    def purge(self, before: datetime) -> int:
        """Delete durable records created before *before*; return the count."""
        ...


# ===================================================================
# In-memory implementations
# ===================================================================

class InMemoryAuditStore:
    """In-memory audit store for testing and development.

    Durable records are kept in append order.
    """

    def __init__(self) -> None:
        self._records: dict[str, AuditRecord] = {}  # record_id -> record
        self._staged: list[AuditRecord] = []
        self.flush_count = 0

    def add(self, record: AuditRecord) -> None:
        """Stage *record* unless it is already staged or stored."""
        if not self.contains(record):
            self._staged.append(record)

    def contains(self, record: AuditRecord) -> bool:
        return record.record_id in self._records or any(
            staged.record_id == record.record_id for staged in self._staged
        )

    def has_pending(self) -> bool:
        return bool(self._staged)

    def flush(self) -> int:
        written = 0
        for record in self._staged:
            self._records[record.record_id] = record
            written += 1
        self._staged.clear()
        self.flush_count += 1
        return written

    def discard_pending(self) -> None:
        self._staged.clear()

    def get(self, record_id: str) -> AuditRecord | None:
        return self._records.get(record_id)

    def find(
        self,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        action: AuditAction | None = None,
        transaction_token: str | None = None,
        limit: int | None = None,
    ) -> list[AuditRecord]:
        """Return durable records matching every given filter, oldest first."""
        matches: list[AuditRecord] = []
        for record in self._records.values():
            if entity_type is not None and record.entity_type != entity_type:
                continue
            if entity_id is not None and record.entity_id != entity_id:
                continue
            if action is not None and record.action != action:
                continue
            if transaction_token is not None and record.transaction_token != transaction_token:
                continue
            matches.append(record)
            if limit is not None and len(matches) >= limit:
                break
        return matches

    def purge(self, before: datetime) -> int:
        expired = [rid for rid, r in self._records.items() if r.created_at < before]
        for rid in expired:
            del self._records[rid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class InMemoryObjectManager:
    """In-memory persistence layer for testing and development.

    Types must be registered with their :class:`EntityMetadata`.  Generated
    identifiers are assigned on :meth:`flush` from a per-type counter.
    The ``soft_delete`` filter hides objects whose soft-delete field is set.
    """

    SOFT_DELETE_FILTER = "soft_delete"

    def __init__(self, *, soft_delete_field: str = "deleted_at") -> None:
        self._metadata: dict[type, EntityMetadata] = {}
        self._rows: dict[type, dict[str, Any]] = {}
        self._to_persist: list[Any] = []
        self._to_remove: list[Any] = []
        self._sequences: dict[type, itertools.count[int]] = {}
        self._filters: set[str] = {self.SOFT_DELETE_FILTER}
        self.soft_delete_field = soft_delete_field
        self.flush_count = 0

    def register(self, metadata: EntityMetadata) -> None:
        self._metadata[metadata.entity_type] = metadata
        self._rows.setdefault(metadata.entity_type, {})
        self._sequences.setdefault(metadata.entity_type, itertools.count(1))

    def metadata(self, entity_or_type: Any) -> EntityMetadata:
        cls = entity_or_type if isinstance(entity_or_type, type) else type(entity_or_type)
        for candidate in cls.__mro__:
            if candidate in self._metadata:
                return self._metadata[candidate]
        raise LookupError(f"{cls.__qualname__} is not a mapped type")

    def _managed(self, entity: Any) -> bool:
        try:
            rows = self._rows[self.metadata(entity).entity_type]
        except LookupError:
            return False
        return any(row is entity for row in rows.values())

    def contains(self, entity: Any) -> bool:
        if any(e is entity for e in self._to_remove):
            return False
        return self._managed(entity) or any(e is entity for e in self._to_persist)

    def persist(self, entity: Any) -> None:
        self.metadata(entity)
        if not self.contains(entity):
            self._to_persist.append(entity)

    def remove(self, entity: Any) -> None:
        if not any(e is entity for e in self._to_remove):
            self._to_remove.append(entity)

    def flush(self) -> None:
        for entity in self._to_persist:
            meta = self.metadata(entity)
            if meta.generated_identifier and not meta.identifier_values(entity):
                for name in meta.identifier_fields:
                    meta.fields[name].set(entity, next(self._sequences[meta.entity_type]))
            identity = format_identifier(meta.identifier_values(entity).values())
            if identity is None:
                raise ValueError(f"{type(entity).__qualname__} has no identifier")
            self._rows[meta.entity_type][identity] = entity
        for entity in self._to_remove:
            rows = self._rows.get(self.metadata(entity).entity_type, {})
            for identity, row in list(rows.items()):
                if row is entity:
                    del rows[identity]
        self._to_persist.clear()
        self._to_remove.clear()
        self.flush_count += 1

    def find(self, entity_type: type, identity: str) -> Any | None:
        entity = self._rows.get(self.metadata(entity_type).entity_type, {}).get(identity)
        if entity is None:
            return None
        if (
            self.SOFT_DELETE_FILTER in self._filters
            and getattr(entity, self.soft_delete_field, None) is not None
        ):
            return None
        return entity

    @contextmanager
    def transaction(self) -> Iterator[InMemoryObjectManager]:
        """Flush on success; drop staged changes and re-raise on error."""
        rows = {t: dict(r) for t, r in self._rows.items()}
        try:
            yield self
            self.flush()
        except Exception:
            self._rows = rows
            self._to_persist.clear()
            self._to_remove.clear()
            raise

    def enabled_filters(self) -> list[str]:
        return sorted(self._filters)

    def disable_filter(self, name: str) -> None:
        self._filters.discard(name)

    def enable_filter(self, name: str) -> None:
        self._filters.add(name)


class StaticActorResolver:
    """Actor resolver returning a fixed (replaceable) actor."""

    def __init__(self, actor: Actor | None = None) -> None:
        self.actor = actor

    def current_actor(self) -> Actor | None:
        return self.actor

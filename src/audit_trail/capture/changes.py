"""Change capture: diffing updates and turning a unit of work into records."""
from __future__ import annotations

import numbers
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from audit_trail.capture.identity import IdentityResolver
from audit_trail.capture.metadata import AuditMetadataRegistry
from audit_trail.capture.serializer import ValueSerializer
from audit_trail.core.interfaces import ObjectManager
from audit_trail.core.types import (
    AuditAction,
    AuditRecord,
    Changeset,
    CollectionChange,
    DispatchPhase,
    UnitOfWork,
)

if TYPE_CHECKING:
    from audit_trail.dispatch.dispatcher import AuditDispatcher
    from audit_trail.records.context import TransactionContext
    from audit_trail.records.factory import AuditRecordFactory


EPSILON = 1e-9


def values_equal(old: Any, new: Any) -> bool:
    """Equality used to drop unchanged fields.

    Real numbers are equal within :data:`EPSILON`; booleans are compared
    exactly.
    """
    if isinstance(old, bool) or isinstance(new, bool):
        return old is new
    if isinstance(old, numbers.Real) and isinstance(new, numbers.Real):
        return abs(old - new) <= EPSILON
    return old is new or old == new


class ChangeProcessor:
    """Diff changesets and classify updates and deletions."""

    def __init__(
        self,
        registry: AuditMetadataRegistry,
        serializer: ValueSerializer,
        *,
        enable_soft_delete: bool = True,
        soft_delete_field: str = "deleted_at",
    ) -> None:
        self.registry = registry
        self.serializer = serializer
        self.enable_soft_delete = enable_soft_delete
        self.soft_delete_field = soft_delete_field

    def extract_changes(
        self, entity: Any, changeset: Changeset, manager: ObjectManager
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Return ``(old, new)`` maps of the fields that really changed.

        Ignored fields are skipped; sensitive fields carry their mask on
        both sides; associations are reduced to identifiers.
        """
        try:
            fields = manager.metadata(entity).fields
        except LookupError:
            fields = {}
        sensitive = self.registry.sensitive_fields(entity)
        ignored = self.registry.ignored_fields(entity)

        old: dict[str, Any] = {}
        new: dict[str, Any] = {}
        for name, change in changeset.items():
            if name in ignored:
                continue
            if not isinstance(change, (tuple, list)) or len(change) != 2:
                continue
            old_value, new_value = change
            if values_equal(old_value, new_value):
                continue
            if name in sensitive:
                old[name] = new[name] = sensitive[name]
                continue
            descriptor = fields.get(name)
            if descriptor is not None and descriptor.is_association:
                old[name] = self.serializer.serialize_association(old_value)
                new[name] = self.serializer.serialize_association(new_value)
            else:
                old[name] = self.serializer.serialize(old_value)
                new[name] = self.serializer.serialize(new_value)
        return old, new

    def determine_update_action(self, changeset: Changeset) -> AuditAction:
        """``restore`` when the soft-delete field is cleared, else ``update``."""
        if not self.enable_soft_delete or self.soft_delete_field not in changeset:
            return AuditAction.UPDATE
        old_value, new_value = changeset[self.soft_delete_field]
        if old_value is not None and new_value is None:
            return AuditAction.RESTORE
        return AuditAction.UPDATE

    def determine_deletion_action(
        self, entity: Any, manager: ObjectManager, enable_hard_delete: bool
    ) -> AuditAction | None:
        """Classify a deletion after the commit; ``None`` means not audited."""
        if self.enable_soft_delete:
            meta = manager.metadata(entity)
            if meta.has_field(self.soft_delete_field):
                if meta.fields[self.soft_delete_field].get(entity) is not None:
                    return AuditAction.SOFT_DELETE
        return AuditAction.DELETE if enable_hard_delete else None


class EntityProcessor:
    """Turn the pending changes of a flush into audit records.

    Records whose identity is known may be delivered immediately in the
    ``on_flush`` phase; everything else is buffered in the transaction's
    :class:`~audit_trail.dispatch.scheduled.ScheduledAuditManager`.
    Deletions are only snapshotted here; their action is decided after
    the commit.
    """

    def __init__(
        self,
        factory: AuditRecordFactory,
        changes: ChangeProcessor,
        dispatcher: AuditDispatcher,
        identity: IdentityResolver,
        *,
        defer_transport_until_commit: bool = True,
    ) -> None:
        self.factory = factory
        self.changes = changes
        self.dispatcher = dispatcher
        self.identity = identity
        self.defer_transport_until_commit = defer_transport_until_commit

    def process(self, uow: UnitOfWork, manager: ObjectManager, tx: TransactionContext) -> None:
        self.process_insertions(uow, manager, tx)
        self.process_updates(uow, manager, tx)
        self.process_collection_updates(uow, manager, tx)
        self.process_deletions(uow, manager, tx)

    def process_insertions(
        self, uow: UnitOfWork, manager: ObjectManager, tx: TransactionContext
    ) -> None:
        for entity in uow.insertions:
            if not self.factory.is_audited_type(entity):
                continue
            data = self.factory.entity_data(entity, manager)
            if not self.factory.passes_voters(entity, AuditAction.CREATE, data, tx):
                continue
            record = self.factory.create(entity, AuditAction.CREATE, None, data, manager, tx)
            self._dispatch_or_schedule(record, entity, manager, uow, tx, is_insert=True)

    def process_updates(
        self, uow: UnitOfWork, manager: ObjectManager, tx: TransactionContext
    ) -> None:
        for entity, changeset in uow.updates:
            old, new = self.changes.extract_changes(entity, changeset, manager)
            if not old and not new:
                continue
            action = self.changes.determine_update_action(changeset)
            if not self.factory.should_audit(entity, action, changeset, tx):
                continue
            record = self.factory.create(entity, action, old, new, manager, tx)
            self._dispatch_or_schedule(record, entity, manager, uow, tx, is_insert=False)

    def process_collection_updates(
        self, uow: UnitOfWork, manager: ObjectManager, tx: TransactionContext
    ) -> None:
        for change in uow.collection_updates:
            if not change.inserted and not change.deleted:
                continue
            if change.field in self.factory.registry.ignored_fields(change.owner):
                continue
            old_ids, new_ids = self._collection_ids(change, manager)
            changeset = {change.field: (old_ids, new_ids)}
            if not self.factory.should_audit(change.owner, AuditAction.UPDATE, changeset, tx):
                continue
            record = self.factory.create(
                change.owner,
                AuditAction.UPDATE,
                {change.field: old_ids},
                {change.field: new_ids},
                manager,
                tx,
            )
            self._dispatch_or_schedule(record, change.owner, manager, uow, tx, is_insert=False)

    def process_deletions(
        self, uow: UnitOfWork, manager: ObjectManager, tx: TransactionContext
    ) -> None:
        for entity in uow.deletions:
            if not self.factory.should_audit(entity, AuditAction.DELETE, {}, tx):
                continue
            tx.buffer.add_pending_deletion(
                entity, self.factory.entity_data(entity, manager), manager.contains(entity)
            )

    # -- internals -----------------------------------------------------------

    def _ids(self, items: Iterable[Any], manager: ObjectManager) -> list[str]:
        ids = (self.identity.resolve(item, manager) for item in items)
        return [i for i in ids if not self.identity.is_pending(i)]

    def _collection_ids(
        self, change: CollectionChange, manager: ObjectManager
    ) -> tuple[list[str], list[str]]:
        old_ids = self._ids(change.snapshot, manager)
        new_ids = list(old_ids)
        for identity in self._ids(change.inserted, manager):
            if identity not in new_ids:
                new_ids.append(identity)
        deleted = set(self._ids(change.deleted, manager))
        return old_ids, [i for i in new_ids if i not in deleted]

    def _dispatch_or_schedule(
        self,
        record: AuditRecord,
        entity: Any,
        manager: ObjectManager,
        uow: UnitOfWork,
        tx: TransactionContext,
        *,
        is_insert: bool,
    ) -> None:
        can_dispatch_now = not record.is_pending and (
            not self.defer_transport_until_commit or is_insert
        )
        if can_dispatch_now and self.dispatcher.dispatch(
            record, manager, DispatchPhase.ON_FLUSH, uow, entity=entity, is_insert=is_insert
        ):
            return
        if record.is_sealed:
            # Delivery failed but the record was kept by the fallback.
            return
        tx.buffer.schedule(entity, record, is_insert)

"""Re-application of the state captured by an audit record."""
from __future__ import annotations

import importlib
import logging
from collections.abc import Callable, Mapping
from typing import Any

from audit_trail.core.errors import (
    EntityNotFound,
    NoRevertableValues,
    RevertForceRequired,
    RevertValidationFailed,
    TamperedRecord,
    UnsupportedRevertAction,
)
from audit_trail.core.interfaces import ActorResolver, AuditLogStore, EntityValidator, ObjectManager
from audit_trail.core.types import AuditAction, AuditRecord, DispatchPhase, thaw
from audit_trail.dispatch.dispatcher import AuditDispatcher
from audit_trail.dispatch.scheduled import ScheduledAuditManager
from audit_trail.integrity.service import IntegrityService
from audit_trail.records.context import TransactionContext
from audit_trail.records.factory import AuditRecordFactory
from audit_trail.revert.denormalizer import RevertValueDenormalizer
from audit_trail.revert.soft_delete import SoftDeleteHandler

logger = logging.getLogger(__name__)

NOT_SOFT_DELETED = "Entity is not soft-deleted."


def import_type(name: str) -> type | None:
    """Resolve a qualified type name produced by :func:`~audit_trail.core.types.type_name`."""
    parts = name.split(".")
    for split in range(len(parts) - 1, 0, -1):
        try:
            obj: Any = importlib.import_module(".".join(parts[:split]))
        except ImportError:
            continue
        try:
            for attr in parts[split:]:
                obj = getattr(obj, attr)
        except AttributeError:
            return None
        return obj if isinstance(obj, type) else None
    return None


class AuditReverter:
    """Restore an object to the state described by one of its records.

    Supported actions: ``create`` (deletes the object; requires ``force``),
    ``update`` (re-applies ``old_values``) and ``soft_delete`` (clears the
    soft-delete marker).  Every non-dry-run revert is itself recorded as a
    ``revert`` record carrying ``reverted_record_id`` in its context.

    Parameters
    ----------
    manager:
        Persistence layer holding the object.
    factory:
        Builds the ``revert`` record.
    dispatcher:
        Delivers the ``revert`` record in the ``post_flush`` phase.
    store:
        Audit store flushed once the ``revert`` record is delivered.
    integrity:
        When enabled, records with an invalid signature are refused.
    soft_delete:
        Soft-delete helper; defaults to the ``deleted_at`` field.
    validator:
        Optional validation run before the change is committed.
    actor_resolver:
        Actor written on ``revert`` records.
    type_resolver:
        Maps ``entity_type`` strings back to types; defaults to importing
        the qualified name.
    """

    def __init__(
        self,
        manager: ObjectManager,
        factory: AuditRecordFactory,
        dispatcher: AuditDispatcher,
        store: AuditLogStore,
        integrity: IntegrityService | None = None,
        *,
        soft_delete: SoftDeleteHandler | None = None,
        validator: EntityValidator | None = None,
        actor_resolver: ActorResolver | None = None,
        type_resolver: Callable[[str], type | None] = import_type,
    ) -> None:
        self.manager = manager
        self.factory = factory
        self.dispatcher = dispatcher
        self.store = store
        self.integrity = integrity
        self.soft_delete = soft_delete or SoftDeleteHandler(manager)
        self.validator = validator
        self.actor_resolver = actor_resolver
        self.type_resolver = type_resolver
        self.denormalizer = RevertValueDenormalizer(manager)

    def revert(
        self,
        record: AuditRecord,
        dry_run: bool = False,
        force: bool = False,
        context: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Revert *record*.

        The change and its ``revert`` record share one transaction: an
        error delivering or storing the ``revert`` record rolls the change
        back and propagates.

        Returns
        -------
        dict[str, Any]
            The field values applied (``update``), ``{"action": "delete"}``
            (``create``), ``{"action": "restore"}`` or
            ``{"info": "Entity is not soft-deleted."}`` (``soft_delete``).

        Raises
        ------
        TamperedRecord
            Integrity is enabled and the signature does not verify.
        EntityNotFound
            The object no longer exists, even among soft-deleted ones.
        RevertForceRequired
            A ``create`` record was reverted without *force*.
        NoRevertableValues
            An ``update`` record carries no old values.
        UnsupportedRevertAction
            Any other action.
        RevertValidationFailed
            The reverted object failed validation; nothing is committed.
        """
        if (
            self.integrity is not None
            and self.integrity.is_enabled
            and not self.integrity.verify_signature(record)
        ):
            raise TamperedRecord(
                f"Audit record {record.record_id} has been tampered with and cannot be reverted.",
                details={"record_id": record.record_id},
            )

        entity = self._find(record)
        changes = self._determine_changes(record, entity, force)
        if dry_run:
            return changes
        self._apply_and_persist(entity, record, changes, context or {})
        return changes

    # -- lookup --------------------------------------------------------------

    def _find(self, record: AuditRecord) -> Any:
        entity_type = self.type_resolver(record.entity_type)
        entity = None
        if entity_type is not None:
            with self.soft_delete.filters_disabled():
                entity = self.manager.find(entity_type, record.entity_id)
        if entity is None:
            raise EntityNotFound(
                f"Entity {record.entity_type}:{record.entity_id} not found.",
                details={"entity_type": record.entity_type, "entity_id": record.entity_id},
            )
        return entity

    # -- planning ------------------------------------------------------------

    def _determine_changes(
        self, record: AuditRecord, entity: Any, force: bool
    ) -> dict[str, Any]:
        if record.action == AuditAction.CREATE:
            if not force:
                raise RevertForceRequired(
                    "Reverting a creation (deleting the entity) requires force."
                )
            return {"action": "delete"}
        if record.action == AuditAction.UPDATE:
            return self._plan_update(record, entity)
        if record.action == AuditAction.SOFT_DELETE:
            if self.soft_delete.is_soft_deleted(entity):
                return {"action": "restore"}
            return {"info": NOT_SOFT_DELETED}
        raise UnsupportedRevertAction(
            f'Reverting action "{record.action.value}" is not supported.',
            details={"action": record.action.value},
        )

    def _plan_update(self, record: AuditRecord, entity: Any) -> dict[str, Any]:
        old_values = thaw(record.old_values) or {}
        if not old_values:
            raise NoRevertableValues(details={"record_id": record.record_id})
        meta = self.manager.metadata(entity)
        sensitive = self.factory.registry.sensitive_fields(entity)
        plan: dict[str, Any] = {}
        for name, value in old_values.items():
            if meta.is_identifier(name) or not meta.has_field(name) or name in sensitive:
                continue
            restored = self.denormalizer.denormalize(meta, name, value)
            if self.denormalizer.values_equal(meta.fields[name].get(entity), restored):
                continue
            plan[name] = restored
        return plan

    # -- application ---------------------------------------------------------

    def _apply(self, entity: Any, changes: Mapping[str, Any]) -> dict[str, Any]:
        """Apply *changes* and return the previous values of what was touched."""
        if changes.get("action") == "restore":
            field = self.soft_delete.field
            previous = {field: getattr(entity, field, None)}
            self.soft_delete.restore(entity)
            return previous
        if "info" in changes:
            return {}
        meta = self.manager.metadata(entity)
        previous = {}
        for name, value in changes.items():
            descriptor = meta.fields[name]
            previous[name] = descriptor.get(entity)
            descriptor.set(entity, value)
        return previous

    def _rollback(self, entity: Any, previous: Mapping[str, Any]) -> None:
        meta = self.manager.metadata(entity)
        for name, value in previous.items():
            if name in meta.fields:
                meta.fields[name].set(entity, value)
            else:
                setattr(entity, name, value)

    def _apply_and_persist(
        self,
        entity: Any,
        record: AuditRecord,
        changes: dict[str, Any],
        context: Mapping[str, Any],
    ) -> None:
        is_delete = changes.get("action") == "delete"
        snapshot = self.factory.entity_data(entity, self.manager) if is_delete else None
        previous: dict[str, Any] = {}
        with self.manager.transaction():
            try:
                if is_delete:
                    self.manager.remove(entity)
                else:
                    previous = self._apply(entity, changes)
                    violations = self.validator.validate(entity) if self.validator else []
                    if violations:
                        raise RevertValidationFailed(
                            "; ".join(violations), details={"violations": list(violations)}
                        )
                    self.manager.persist(entity)
                self.manager.flush()
                self._record_revert(entity, record, changes, previous, snapshot, context)
            except Exception:
                self._rollback(entity, previous)
                self.store.discard_pending()
                raise
        logger.info(
            "Reverted %s#%s (record %s)", record.entity_type, record.entity_id, record.record_id
        )

    def _record_revert(
        self,
        entity: Any,
        record: AuditRecord,
        changes: Mapping[str, Any],
        previous: Mapping[str, Any],
        snapshot: dict[str, Any] | None,
        context: Mapping[str, Any],
    ) -> None:
        serializer = self.factory.extractor.serializer
        if snapshot is not None:
            old_values, new_values = snapshot, None
        elif previous:
            old_values = {k: serializer.serialize(v) for k, v in previous.items()}
            applied = (
                {self.soft_delete.field: None}
                if changes.get("action") == "restore"
                else changes
            )
            new_values = {k: serializer.serialize(v) for k, v in applied.items()}
        else:
            old_values, new_values = None, None

        tx = TransactionContext(ScheduledAuditManager(), self.actor_resolver)
        revert_record = self.factory.create(
            entity,
            AuditAction.REVERT,
            old_values,
            new_values,
            self.manager,
            tx,
            {**context, "reverted_record_id": record.record_id},
        )
        if revert_record.is_pending:
            # A deleted object's identity is read from the snapshot instead.
            revert_record.entity_id = record.entity_id
        self.dispatcher.dispatch(
            revert_record, self.manager, DispatchPhase.POST_FLUSH, entity=entity
        )
        if self.store.has_pending():
            self.store.flush()

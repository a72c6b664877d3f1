"""Durable baseline transport writing into the audit store."""
from __future__ import annotations

from audit_trail.core.interfaces import AuditLogStore
from audit_trail.core.types import AuditRecord, DeliveryContext, DispatchPhase
from audit_trail.transport.base import resolve_entity_id


class StoreTransport:
    """Write records into an :class:`~audit_trail.core.interfaces.AuditLogStore`.

    During ``on_flush`` the record is staged alongside the business
    changes.  In later phases it is added if absent and a still-pending
    identity is resolved from the entity.  Every phase is supported.
    """

    def __init__(self, store: AuditLogStore) -> None:
        self.store = store

    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        if context.phase == DispatchPhase.ON_FLUSH:
            self.store.add(record)
            return
        if not self.store.contains(record):
            self.store.add(record)
        if record.is_pending:
            resolved = resolve_entity_id(record, context)
            if resolved is not None:
                record.entity_id = resolved

    def supports(self, phase: DispatchPhase) -> bool:
        return True

"""Delivery of audit records to the configured transport."""
from __future__ import annotations

import logging
from typing import Any

from audit_trail.core.interfaces import AuditLogStore, AuditTransport, ObjectManager
from audit_trail.core.types import AuditRecord, DeliveryContext, DispatchPhase, UnitOfWork
from audit_trail.integrity.service import IntegrityService

logger = logging.getLogger(__name__)


class AuditDispatcher:
    """Sign, send and seal records, applying the transport error policy.

    Parameters
    ----------
    transport:
        The sink (often a :class:`~audit_trail.transport.chain.ChainTransport`).
    store:
        Durable audit store used as the fail-open fallback.
    integrity:
        Signing service; records are signed only while it is enabled and
        their identity is known.
    fail_on_transport_error:
        Re-raise transport failures (fail-closed).
    fallback_to_store:
        On a tolerated failure, persist the record into *store*.
    """

    def __init__(
        self,
        transport: AuditTransport,
        store: AuditLogStore,
        integrity: IntegrityService | None = None,
        *,
        fail_on_transport_error: bool = False,
        fallback_to_store: bool = True,
    ) -> None:
        self.transport = transport
        self.store = store
        self.integrity = integrity
        self.fail_on_transport_error = fail_on_transport_error
        self.fallback_to_store = fallback_to_store

    def dispatch(
        self,
        record: AuditRecord,
        manager: ObjectManager | Any,
        phase: DispatchPhase,
        uow: UnitOfWork | None = None,
        *,
        entity: Any = None,
        is_insert: bool = False,
    ) -> bool:
        """Deliver *record* during *phase*.

        Returns
        -------
        bool
            ``True`` if the transport accepted the record.  ``False`` if the
            transport does not support *phase* (the caller should buffer the
            record) or if delivery failed and was tolerated; in the latter
            case the record is sealed and, if configured, kept in the store.

        Raises
        ------
        Exception
            Whatever the transport raised, when fail-closed.
        """
        if not self.transport.supports(phase):
            return False

        if self.integrity is not None and self.integrity.is_enabled and not record.is_pending:
            record.signature = self.integrity.generate_signature(record)

        context = DeliveryContext(
            phase=phase, manager=manager, entity=entity, is_insert=is_insert, uow=uow
        )
        try:
            self.transport.send(record, context)
            record.seal()
        except Exception as exc:
            logger.error(
                "Audit transport failed for %s#%s: %s",
                record.entity_type,
                record.entity_id,
                exc,
            )
            if self.fail_on_transport_error:
                raise
            if self.fallback_to_store:
                self._persist_fallback(record)
            return False
        return True

    def _persist_fallback(self, record: AuditRecord) -> None:
        try:
            if not self.store.contains(record):
                self.store.add(record)
            self.store.flush()
            record.seal()
            logger.warning(
                "Audit record for %s#%s saved via store fallback",
                record.entity_type,
                record.entity_id,
            )
        except Exception as exc:
            logger.critical(
                "AUDIT LOSS: failed to persist fallback for %s#%s: %s",
                record.entity_type,
                record.entity_id,
                exc,
            )

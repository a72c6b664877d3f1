"""Audit trail facade -- the main entry point.

This module implements :class:`AuditTrail`, which composes every audit
service from a single :class:`~audit_trail.core.config.AuditTrailConfig`,
and :class:`AuditSession`, the per-persistence-context hook object the
host calls around each commit.

Hook protocol
-------------

1. ``on_prepare(uow)`` -- before the commit.  Changes are diffed into
   records; records whose identity is known may be delivered at once, the
   rest are buffered.
2. ``on_committed()`` -- after the commit.  Deletions are classified,
   pending identities are resolved, buffered records are signed and
   delivered, and the audit store is flushed.
3. ``on_rollback()`` / ``on_clear()`` -- drop everything buffered.

Usage
-----
::

    from audit_trail import AuditTrail, AuditTrailConfig, UnitOfWork

    trail = AuditTrail(AuditTrailConfig())
    session = trail.session(manager, actor_resolver)

    with manager.transaction():
        manager.persist(post)
        session.on_prepare(UnitOfWork().insert(post))
    session.on_committed()
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any

from audit_trail.capture.access import AccessAuditor
from audit_trail.capture.changes import ChangeProcessor, EntityProcessor
from audit_trail.capture.extractor import EntityDataExtractor
from audit_trail.capture.identity import IdentityResolver
from audit_trail.capture.masking import DataMasker
from audit_trail.capture.metadata import AuditMetadataRegistry
from audit_trail.capture.serializer import ValueSerializer
from audit_trail.core.config import AuditTrailConfig
from audit_trail.core.interfaces import (
    ActorResolver,
    AuditLogStore,
    AuditTransport,
    AuditVoter,
    ContextContributor,
    EntityValidator,
    InMemoryAuditStore,
    ObjectManager,
)
from audit_trail.core.types import AuditAction, AuditRecord, DispatchPhase, UnitOfWork
from audit_trail.dispatch.dispatcher import AuditDispatcher
from audit_trail.dispatch.scheduled import RecordListener, ScheduledAuditManager
from audit_trail.integrity.service import IntegrityService
from audit_trail.integrity.verification import IntegrityReport, verify_records, verify_store
from audit_trail.records.context import ContextResolver, TransactionContext
from audit_trail.records.factory import AuditRecordFactory
from audit_trail.revert.reverter import AuditReverter, import_type
from audit_trail.revert.soft_delete import SoftDeleteHandler
from audit_trail.transport.store import StoreTransport

logger = logging.getLogger(__name__)


class AuditTrail:
    """Compose the audit services for one configuration.

    Parameters
    ----------
    config:
        Shared configuration.  An invalid integrity setup is rejected when
        the config itself is built.
    transport:
        Delivery sink.  Defaults to a :class:`StoreTransport` over *store*.
    store:
        Durable audit store and dispatch fallback.  Defaults to an
        :class:`~audit_trail.core.interfaces.InMemoryAuditStore`.
    voters:
        Extra vetoes consulted before any record is built.
    contributors:
        Sources of additional ``context`` entries.
    clock:
        Time source for ``created_at``; mainly for tests.
    listeners:
        Callables run on every buffered record (see
        :class:`~audit_trail.dispatch.scheduled.ScheduledAuditManager`).
    """

    def __init__(
        self,
        config: AuditTrailConfig | None = None,
        *,
        transport: AuditTransport | None = None,
        store: AuditLogStore | None = None,
        voters: Iterable[AuditVoter] = (),
        contributors: Iterable[ContextContributor] = (),
        clock: Callable[[], datetime] | None = None,
        listeners: Iterable[RecordListener] = (),
    ) -> None:
        self._config = config or AuditTrailConfig()
        cfg = self._config
        self._store: AuditLogStore = store if store is not None else InMemoryAuditStore()
        self._transport: AuditTransport = (
            transport if transport is not None else StoreTransport(self._store)
        )
        self._listeners = list(listeners)

        # -- Capture -----------------------------------------------------------
        self._serializer = ValueSerializer(
            max_depth=cfg.max_serialization_depth,
            max_items=cfg.max_collection_items,
        )
        self._masker = DataMasker()
        self._registry = AuditMetadataRegistry(
            ignored_entities=cfg.ignored_entities,
            ignored_properties=cfg.ignored_properties,
            cache_size=cfg.metadata_cache_size,
        )
        self._identity = IdentityResolver()
        self._extractor = EntityDataExtractor(self._serializer, self._masker, self._registry)
        self._changes = ChangeProcessor(
            self._registry,
            self._serializer,
            enable_soft_delete=cfg.enable_soft_delete,
            soft_delete_field=cfg.soft_delete_field,
        )

        # -- Records -----------------------------------------------------------
        self._context_resolver = ContextResolver(
            self._masker,
            contributors,
            user_agent_max_length=cfg.user_agent_max_length,
            track_client_ip=cfg.track_client_ip,
            track_user_agent=cfg.track_user_agent,
        )
        self._factory = AuditRecordFactory(
            cfg,
            self._registry,
            self._extractor,
            self._identity,
            self._context_resolver,
            voters,
            clock,
        )

        # -- Integrity and dispatch --------------------------------------------
        self._integrity = IntegrityService.from_config(cfg)
        self._dispatcher = AuditDispatcher(
            self._transport,
            self._store,
            self._integrity,
            fail_on_transport_error=cfg.fail_on_transport_error,
            fallback_to_store=cfg.fallback_to_store,
        )
        self._processor = EntityProcessor(
            self._factory,
            self._changes,
            self._dispatcher,
            self._identity,
            defer_transport_until_commit=cfg.defer_transport_until_commit,
        )
        self._access = AccessAuditor(
            self._factory, self._dispatcher, self._identity, self._registry
        )

    # -- Accessors -------------------------------------------------------------

    @property
    def config(self) -> AuditTrailConfig:
        return self._config

    @property
    def store(self) -> AuditLogStore:
        return self._store

    @property
    def transport(self) -> AuditTransport:
        return self._transport

    @property
    def registry(self) -> AuditMetadataRegistry:
        return self._registry

    @property
    def integrity(self) -> IntegrityService:
        return self._integrity

    @property
    def factory(self) -> AuditRecordFactory:
        return self._factory

    @property
    def dispatcher(self) -> AuditDispatcher:
        return self._dispatcher

    @property
    def processor(self) -> EntityProcessor:
        return self._processor

    @property
    def changes(self) -> ChangeProcessor:
        return self._changes

    @property
    def access(self) -> AccessAuditor:
        return self._access

    # -- Entry points ----------------------------------------------------------

    def session(
        self, manager: ObjectManager, actor_resolver: ActorResolver | None = None
    ) -> AuditSession:
        """Return the hook object for one persistence context."""
        return AuditSession(self, manager, actor_resolver)

    def reverter(
        self,
        manager: ObjectManager,
        validator: EntityValidator | None = None,
        *,
        actor_resolver: ActorResolver | None = None,
        type_resolver: Callable[[str], type | None] = import_type,
    ) -> AuditReverter:
        soft_delete = SoftDeleteHandler(
            manager,
            field=self._config.soft_delete_field,
            filters=self._config.soft_delete_filters,
        )
        return AuditReverter(
            manager,
            self._factory,
            self._dispatcher,
            self._store,
            self._integrity,
            soft_delete=soft_delete,
            validator=validator,
            actor_resolver=actor_resolver,
            type_resolver=type_resolver,
        )

    def verify(self, records: Iterable[AuditRecord] | None = None, **filters: Any) -> IntegrityReport:
        """Verify *records*, or the durable store when none are given.

        Keyword *filters* (``entity_type``, ``entity_id``) narrow the store scan.
        """
        if records is None:
            return verify_store(self._store, self._integrity, **filters)
        return verify_records(records, self._integrity)

    def _new_buffer(self) -> ScheduledAuditManager:
        return ScheduledAuditManager(
            max_scheduled=self._config.max_scheduled_audits,
            listeners=self._listeners,
        )


class AuditSession:
    """Commit-boundary hooks for one persistence context.

    A session owns one :class:`TransactionContext` at a time.  Hooks
    re-entered while the session is already processing (a flush triggered
    by the audit pipeline itself) are ignored.
    """

    def __init__(
        self,
        trail: AuditTrail,
        manager: ObjectManager,
        actor_resolver: ActorResolver | None = None,
    ) -> None:
        self.trail = trail
        self.manager = manager
        self.actor_resolver = actor_resolver
        self.tx = TransactionContext(trail._new_buffer(), actor_resolver)
        self._processing = False
        self._seen: set[str] = set()

    @property
    def enabled(self) -> bool:
        return self.trail.config.enabled

    # -- Write path ------------------------------------------------------------

    def on_prepare(self, uow: UnitOfWork) -> None:
        """Capture the changes of *uow* before they are committed."""
        if not self.enabled or self._processing:
            return
        self._processing = True
        try:
            if self.tx.buffer.count_scheduled() >= self.trail.config.batch_flush_threshold:
                self._batch_flush()
            self.trail.processor.process(uow, self.manager, self.tx)
        finally:
            self._processing = False

    def on_committed(self) -> None:
        """Deliver everything buffered for the transaction that just committed."""
        if not self.enabled or self._processing:
            return
        self._processing = True
        try:
            try:
                self._process_pending_deletions()
                self._process_scheduled()
            finally:
                self.tx.reset()
            self._flush_store()
        finally:
            self._processing = False

    def on_rollback(self) -> None:
        """Forget the records of a transaction that did not commit."""
        self.trail.store.discard_pending()
        self.tx.reset()

    def on_clear(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.tx.reset()
        self._processing = False
        self._seen.clear()

    # -- Read path -------------------------------------------------------------

    def record_access(self, entity: Any) -> AuditRecord | None:
        """Record that *entity* was loaded, if its type asks for it."""
        config = self.trail.config
        if not config.enabled or not config.access_enabled:
            return None
        record = self.trail.access.record_access(entity, self.manager, self.tx, self._seen)
        if record is not None:
            self._flush_store()
        return record

    # -- Internals -------------------------------------------------------------

    def _batch_flush(self) -> None:
        store = self.trail.store
        for delivery in self.tx.buffer.take_scheduled():
            delivered = self.trail.dispatcher.dispatch(
                delivery.record,
                self.manager,
                DispatchPhase.BATCH_FLUSH,
                entity=delivery.entity,
                is_insert=delivery.is_insert,
            )
            if not delivered and not delivery.record.is_sealed:
                logger.warning(
                    "Transport skipped batch delivery of %s#%s; staging it in the audit store",
                    delivery.record.entity_type,
                    delivery.record.entity_id,
                )
                store.add(delivery.record)

    def _process_pending_deletions(self) -> None:
        trail = self.trail
        for pending in self.tx.buffer.pending_deletions:
            action = trail.changes.determine_deletion_action(
                pending.entity, self.manager, trail.config.enable_hard_delete
            )
            if action is None:
                continue
            new_data = (
                trail.factory.entity_data(pending.entity, self.manager)
                if action == AuditAction.SOFT_DELETE
                else None
            )
            record = trail.factory.create(
                pending.entity, action, pending.data, new_data, self.manager, self.tx
            )
            trail.dispatcher.dispatch(
                record, self.manager, DispatchPhase.POST_FLUSH, entity=pending.entity
            )

    def _process_scheduled(self) -> None:
        trail = self.trail
        identity = trail.factory.identity
        for delivery in self.tx.buffer.take_scheduled():
            if delivery.is_insert and not delivery.record.is_sealed:
                resolved = identity.resolve(delivery.entity, self.manager)
                if not identity.is_pending(resolved):
                    delivery.record.entity_id = resolved
            trail.dispatcher.dispatch(
                delivery.record,
                self.manager,
                DispatchPhase.POST_FLUSH,
                entity=delivery.entity,
                is_insert=delivery.is_insert,
            )

    def _flush_store(self) -> None:
        store = self.trail.store
        if not store.has_pending():
            return
        try:
            store.flush()
        except Exception as exc:
            logger.critical("Failed to flush audit records: %s", exc)

"""Construction of :class:`~audit_trail.core.types.AuditRecord` instances."""
from __future__ import annotations

import ipaddress
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from audit_trail.capture.conditions import ConditionVoter
from audit_trail.capture.extractor import EntityDataExtractor
from audit_trail.capture.identity import IdentityResolver
from audit_trail.capture.metadata import AuditMetadataRegistry
from audit_trail.core.config import AuditTrailConfig
from audit_trail.core.interfaces import AuditVoter, ObjectManager
from audit_trail.core.types import (
    PENDING_ID,
    AuditAction,
    AuditRecord,
    type_name,
)
from audit_trail.records.context import ContextResolver, ResolvedContext, TransactionContext

logger = logging.getLogger(__name__)

_MISSING = object()


def _utcnow() -> datetime:
    return datetime.now(UTC)


def changed_fields(
    old_values: Mapping[str, Any] | None,
    new_values: Mapping[str, Any] | None,
    sensitive: Iterable[str] = (),
) -> list[str]:
    """Ordered keys whose values differ, plus masked (sensitive) keys.

    Masked fields carry the same placeholder on both sides, so they are
    listed whenever present.
    """
    old = old_values or {}
    new = new_values or {}
    masked = set(sensitive)
    keys = list(new) + [k for k in old if k not in new]
    return [
        k for k in keys
        if k in masked or old.get(k, _MISSING) != new.get(k, _MISSING)
    ]


class AuditRecordFactory:
    """Build unsigned audit records.

    Record creation never aborts because of enrichment: a failing actor or
    context lookup is logged and replaced by an empty actor and an
    ``{"_error": ...}`` context.

    Parameters
    ----------
    config:
        Shared configuration (timezone, context cap, client tracking).
    registry:
        Per-type audit policies.
    extractor:
        Snapshot taker used for full-entity values.
    identity:
        Identity resolver.
    context_resolver:
        Actor and context enrichment.
    voters:
        Extra vetoes; every voter must allow a record.
    clock:
        Returns the current time; converted to the configured timezone.
    """

    def __init__(
        self,
        config: AuditTrailConfig,
        registry: AuditMetadataRegistry,
        extractor: EntityDataExtractor,
        identity: IdentityResolver,
        context_resolver: ContextResolver,
        voters: Iterable[AuditVoter] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.extractor = extractor
        self.identity = identity
        self.context_resolver = context_resolver
        self.voters = list(voters)
        self.conditions = ConditionVoter(registry)
        self.clock = clock or _utcnow

    # -- gating --------------------------------------------------------------

    def should_audit(
        self,
        entity: Any,
        action: AuditAction = AuditAction.CREATE,
        changeset: Mapping[str, Any] | None = None,
        tx: TransactionContext | None = None,
    ) -> bool:
        if not self.is_audited_type(entity):
            return False
        return self.passes_voters(entity, action, changeset or {}, tx)

    def is_audited_type(self, entity: Any) -> bool:
        return not isinstance(entity, AuditRecord) and not self.registry.is_entity_ignored(entity)

    def passes_voters(
        self,
        entity: Any,
        action: AuditAction,
        changeset: Mapping[str, Any],
        tx: TransactionContext | None = None,
    ) -> bool:
        for voter in self.voters:
            if not voter.vote(entity, action, changeset):
                return False
        actor = None
        if tx is not None and tx.actor_resolver is not None:
            actor = tx.actor_resolver.current_actor()
        return self.conditions.vote(entity, action, changeset, actor)

    def entity_data(
        self, entity: Any, manager: ObjectManager, additional_ignored: Iterable[str] = ()
    ) -> dict[str, Any]:
        return self.extractor.extract(entity, manager, additional_ignored)

    # -- construction --------------------------------------------------------

    def create(
        self,
        entity: Any,
        action: AuditAction,
        old_values: dict[str, Any] | None,
        new_values: dict[str, Any] | None,
        manager: ObjectManager,
        tx: TransactionContext,
        context: Mapping[str, Any] | None = None,
    ) -> AuditRecord:
        """Build the record for one mutation of *entity*."""
        entity_id = self.identity.resolve(entity, manager)
        if entity_id == PENDING_ID and action == AuditAction.DELETE and old_values:
            entity_id = (
                self.identity.resolve_from_values(entity, old_values, manager) or PENDING_ID
            )

        changed: list[str] = []
        if action == AuditAction.UPDATE and new_values is not None:
            changed = changed_fields(
                old_values, new_values, self.registry.sensitive_fields(entity)
            )

        resolved = self._resolve_context(entity, action, new_values or {}, context or {}, tx)
        return AuditRecord(
            entity_type=type_name(entity),
            entity_id=entity_id,
            action=action,
            old_values=old_values,
            new_values=new_values,
            changed_fields=changed,
            user_id=resolved.user_id,
            username=resolved.username,
            client_ip=self._valid_ip(resolved.client_ip),
            user_agent=resolved.user_agent,
            transaction_token=tx.token,
            context=self._cap_context(resolved.context, entity, entity_id),
            created_at=self.clock().astimezone(self.config.zone),
        )

    def _resolve_context(
        self,
        entity: Any,
        action: AuditAction,
        new_values: Mapping[str, Any],
        extra: Mapping[str, Any],
        tx: TransactionContext,
    ) -> ResolvedContext:
        try:
            return self.context_resolver.resolve(
                entity, action, new_values, extra, tx.actor_resolver
            )
        except Exception as exc:
            logger.warning("Failed to resolve audit context: %s", exc)
            return ResolvedContext(context={"_error": "Context resolution failed"})

    @staticmethod
    def _valid_ip(value: str | None) -> str | None:
        if value is None:
            return None
        try:
            ipaddress.ip_address(value)
        except ValueError:
            logger.warning("Discarding invalid client address %r", value)
            return None
        return value

    def _cap_context(
        self, context: dict[str, Any], entity: Any, entity_id: str
    ) -> dict[str, Any]:
        size = len(json.dumps(context, default=str).encode("utf-8"))
        if size > self.config.max_context_bytes:
            logger.warning(
                "Audit context for %s#%s truncated (%d bytes exceeded %d limit)",
                type_name(entity),
                entity_id,
                size,
                self.config.max_context_bytes,
            )
            return {"_truncated": True, "_original_size": size}
        return context

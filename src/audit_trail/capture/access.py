"""Read-access auditing for types that declare an access policy."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from audit_trail.capture.identity import IdentityResolver
from audit_trail.capture.metadata import AuditMetadataRegistry
from audit_trail.core.interfaces import ObjectManager
from audit_trail.core.types import AuditAction, AuditRecord, DispatchPhase, type_name

if TYPE_CHECKING:
    from audit_trail.dispatch.dispatcher import AuditDispatcher
    from audit_trail.records.context import TransactionContext
    from audit_trail.records.factory import AuditRecordFactory

logger = logging.getLogger(__name__)


class AccessAuditor:
    """Produce ``access`` records when audited objects are loaded.

    Each object is recorded at most once per session (the caller owns the
    ``seen`` set).  A policy with a ``cooldown`` additionally suppresses
    repeat records for the same actor and object until the cooldown, in
    seconds, has elapsed; cooldowns outlive sessions.
    """

    def __init__(
        self,
        factory: AuditRecordFactory,
        dispatcher: AuditDispatcher,
        identity: IdentityResolver,
        registry: AuditMetadataRegistry,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.factory = factory
        self.dispatcher = dispatcher
        self.identity = identity
        self.registry = registry
        self.clock = clock
        self._cooldowns: dict[tuple[str, str, str], float] = {}

    def record_access(
        self,
        entity: Any,
        manager: ObjectManager,
        tx: TransactionContext,
        seen: set[str],
    ) -> AuditRecord | None:
        """Record a read of *entity*; return the record, or ``None`` if skipped."""
        policy = self.registry.access_policy(entity)
        if policy is None or self.registry.is_entity_ignored(entity):
            return None
        if not self.factory.passes_voters(entity, AuditAction.ACCESS, {}, tx):
            return None
        identity = self.identity.resolve(entity, manager)
        if self.identity.is_pending(identity):
            return None

        key = f"{type_name(entity)}:{identity}"
        if key in seen:
            return None
        seen.add(key)
        if policy.cooldown > 0 and self._cooling_down(entity, identity, policy.cooldown, tx):
            return None

        try:
            context: dict[str, Any] = {"level": policy.level}
            if policy.message is not None:
                context["message"] = policy.message
            record = self.factory.create(
                entity, AuditAction.ACCESS, None, None, manager, tx, context
            )
            self.dispatcher.dispatch(
                record, manager, DispatchPhase.POST_LOAD, entity=entity
            )
        except Exception as exc:
            logger.error("Failed to log audit access for %s: %s", type_name(entity), exc)
            return None
        return record

    def _cooling_down(
        self, entity: Any, identity: str, cooldown: int, tx: TransactionContext
    ) -> bool:
        actor = tx.actor_resolver.current_actor() if tx.actor_resolver is not None else None
        user = (actor.user_id if actor is not None else None) or "anonymous"
        cache_key = (user, type_name(entity), identity)
        now = self.clock()
        expires = self._cooldowns.get(cache_key)
        if expires is not None and expires > now:
            return True
        self._cooldowns[cache_key] = now + cooldown
        return False

    def clear(self) -> None:
        self._cooldowns.clear()

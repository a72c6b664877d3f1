"""Per-type audit conditions."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from audit_trail.capture.metadata import AuditMetadataRegistry
from audit_trail.core.types import Actor, AuditAction, type_name

logger = logging.getLogger(__name__)


class ConditionVoter:
    """Evaluate the ``condition`` callable of a type's :class:`AuditPolicy`.

    The callable receives ``(entity, action, changeset, actor)``.  Types
    without a condition are always audited; a condition that raises is
    logged and treated as a veto.
    """

    def __init__(self, registry: AuditMetadataRegistry) -> None:
        self.registry = registry

    def vote(
        self,
        entity: Any,
        action: AuditAction,
        changeset: Mapping[str, Any],
        actor: Actor | None = None,
    ) -> bool:
        condition = self.registry.condition(entity)
        if condition is None:
            return True
        try:
            return bool(condition(entity, action, changeset, actor or Actor()))
        except Exception as exc:
            logger.error("Audit condition failed for %s: %s", type_name(entity), exc)
            return False

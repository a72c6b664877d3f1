"""Transaction-scoped buffer of records awaiting delivery."""
from __future__ import annotations

from collections.abc import Callable
from typing import Any

from audit_trail.core.errors import AuditQueueOverflow
from audit_trail.core.types import AuditRecord, PendingDeletion, PendingDelivery

RecordListener = Callable[[Any, AuditRecord], AuditRecord | None]
"""Called with ``(entity, record)`` before buffering; may return a replacement."""


class ScheduledAuditManager:
    """FIFO of :class:`PendingDelivery` plus the pending deletions.

    Parameters
    ----------
    max_scheduled:
        Buffer cap; scheduling beyond it raises
        :class:`~audit_trail.core.errors.AuditQueueOverflow`.
    listeners:
        Callables run on every scheduled record.  A listener returning a
        record replaces the one being scheduled.
    """

    def __init__(
        self,
        *,
        max_scheduled: int = 1000,
        listeners: list[RecordListener] | None = None,
    ) -> None:
        self.max_scheduled = max_scheduled
        self.listeners: list[RecordListener] = list(listeners or [])
        self.scheduled: list[PendingDelivery] = []
        self.pending_deletions: list[PendingDeletion] = []

    def schedule(self, entity: Any, record: AuditRecord, is_insert: bool) -> None:
        if len(self.scheduled) >= self.max_scheduled:
            raise AuditQueueOverflow(
                f"Maximum audit queue size exceeded ({self.max_scheduled}). "
                "Consider batch processing.",
                details={"max_scheduled": self.max_scheduled},
            )
        for listener in self.listeners:
            replacement = listener(entity, record)
            if replacement is not None:
                record = replacement
        self.scheduled.append(PendingDelivery(entity, record, is_insert))

    def add_pending_deletion(self, entity: Any, data: dict[str, Any], is_managed: bool) -> None:
        self.pending_deletions.append(PendingDeletion(entity, data, is_managed))

    def count_scheduled(self) -> int:
        return len(self.scheduled)

    def has_work(self) -> bool:
        return bool(self.scheduled or self.pending_deletions)

    def take_scheduled(self) -> list[PendingDelivery]:
        """Return and remove every buffered delivery."""
        taken, self.scheduled = self.scheduled, []
        return taken

    def clear(self) -> None:
        self.scheduled = []
        self.pending_deletions = []

"""Fan-out over several transports."""
from __future__ import annotations

from collections.abc import Iterable

from audit_trail.core.interfaces import AuditTransport
from audit_trail.core.types import AuditRecord, DeliveryContext, DispatchPhase


class ChainTransport:
    """Send each record to every sink that supports the current phase.

    The chain supports a phase if any sink does.  Sinks run in order and
    the first failure propagates, so the record counts as delivered only
    if every participating sink accepted it.
    """

    def __init__(self, transports: Iterable[AuditTransport]) -> None:
        self.transports = list(transports)

    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        for transport in self.transports:
            if not transport.supports(context.phase):
                continue
            transport.send(record, context)

    def supports(self, phase: DispatchPhase) -> bool:
        return any(t.supports(phase) for t in self.transports)

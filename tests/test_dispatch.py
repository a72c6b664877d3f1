"""Tests for the scheduled buffer and the dispatcher.

Covers:

1. **ScheduledAuditManager** -- FIFO order, cap, listeners, pending
   deletions, take/clear.
2. **AuditDispatcher** -- phase support, signing of resolved records only,
   sealing, fail-open fallback, fail-closed re-raise, fallback failure.
"""
from __future__ import annotations

import logging

import pytest

from audit_trail.core.errors import AuditQueueOverflow, RecordSealed
from audit_trail.core.interfaces import InMemoryAuditStore
from audit_trail.core.types import (
    PENDING_ID,
    AuditAction,
    AuditRecord,
    DeliveryContext,
    DispatchPhase,
)
from audit_trail.dispatch.dispatcher import AuditDispatcher
from audit_trail.dispatch.scheduled import ScheduledAuditManager
from audit_trail.integrity.service import IntegrityService


class RecordingTransport:
    """Accepts everything and remembers what it was sent."""

    def __init__(self, phases: set[DispatchPhase] | None = None) -> None:
        self.phases = phases
        self.sent: list[tuple[AuditRecord, DeliveryContext]] = []

    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        self.sent.append((record, context))

    def supports(self, phase: DispatchPhase) -> bool:
        return self.phases is None or phase in self.phases


class BrokenTransport(RecordingTransport):
    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        raise ConnectionError("sink down")


class BrokenStore(InMemoryAuditStore):
    def flush(self) -> int:
        raise OSError("disk full")


def _record(entity_id: str = "1", **kwargs) -> AuditRecord:
    return AuditRecord(
        entity_type="entities.Post",
        entity_id=entity_id,
        action=kwargs.pop("action", AuditAction.UPDATE),
        **kwargs,
    )


# ===================================================================
# ScheduledAuditManager
# ===================================================================


class TestScheduledAuditManager:
    """Buffering within a transaction."""

    def test_fifo_order(self) -> None:
        buffer = ScheduledAuditManager()
        first, second = _record("1"), _record("2")
        buffer.schedule("a", first, True)
        buffer.schedule("b", second, False)
        taken = buffer.take_scheduled()
        assert [d.record for d in taken] == [first, second]
        assert taken[0].is_insert
        assert not taken[1].is_insert
        assert buffer.count_scheduled() == 0

    def test_overflow(self) -> None:
        buffer = ScheduledAuditManager(max_scheduled=2)
        buffer.schedule(None, _record(), False)
        buffer.schedule(None, _record(), False)
        with pytest.raises(AuditQueueOverflow) as exc_info:
            buffer.schedule(None, _record(), False)
        assert exc_info.value.code == "AT-E201"
        assert "Maximum audit queue size exceeded (2)" in str(exc_info.value)
        assert buffer.count_scheduled() == 2

    def test_listener_observes_and_replaces(self) -> None:
        seen: list[str] = []
        replacement = _record("99")

        def observe(entity, record):
            seen.append(entity)

        def replace(entity, record):
            return replacement

        buffer = ScheduledAuditManager(listeners=[observe, replace])
        buffer.schedule("post", _record(), False)
        assert seen == ["post"]
        assert buffer.take_scheduled()[0].record is replacement

    def test_pending_deletions_and_clear(self) -> None:
        buffer = ScheduledAuditManager()
        assert not buffer.has_work()
        buffer.add_pending_deletion("post", {"id": 1}, True)
        assert buffer.has_work()
        assert buffer.pending_deletions[0].data == {"id": 1}
        buffer.schedule(None, _record(), False)
        buffer.clear()
        assert not buffer.has_work()


# ===================================================================
# AuditDispatcher
# ===================================================================


class TestAuditDispatcher:
    """Sign, send, seal, and the transport error policy."""

    def test_delivers_signs_and_seals(self, integrity: IntegrityService) -> None:
        transport = RecordingTransport()
        dispatcher = AuditDispatcher(transport, InMemoryAuditStore(), integrity)
        record = _record()
        assert dispatcher.dispatch(record, None, DispatchPhase.POST_FLUSH, entity="post")
        assert record.signature == integrity.generate_signature(record)
        assert record.is_sealed
        _, context = transport.sent[0]
        assert context.phase == DispatchPhase.POST_FLUSH
        assert context.entity == "post"

    def test_pending_records_are_not_signed(self, integrity: IntegrityService) -> None:
        dispatcher = AuditDispatcher(RecordingTransport(), InMemoryAuditStore(), integrity)
        record = _record(PENDING_ID)
        dispatcher.dispatch(record, None, DispatchPhase.ON_FLUSH, is_insert=True)
        assert record.signature is None

    def test_disabled_integrity_does_not_sign(self) -> None:
        dispatcher = AuditDispatcher(
            RecordingTransport(), InMemoryAuditStore(), IntegrityService()
        )
        record = _record()
        dispatcher.dispatch(record, None, DispatchPhase.POST_FLUSH)
        assert record.signature is None

    def test_unsupported_phase(self) -> None:
        transport = RecordingTransport({DispatchPhase.POST_FLUSH})
        dispatcher = AuditDispatcher(transport, InMemoryAuditStore())
        record = _record()
        assert not dispatcher.dispatch(record, None, DispatchPhase.ON_FLUSH)
        assert transport.sent == []
        assert not record.is_sealed

    def test_fail_open_falls_back_to_store(
        self, integrity: IntegrityService, caplog: pytest.LogCaptureFixture
    ) -> None:
        store = InMemoryAuditStore()
        dispatcher = AuditDispatcher(BrokenTransport(), store, integrity)
        record = _record()
        with caplog.at_level(logging.WARNING):
            assert not dispatcher.dispatch(record, None, DispatchPhase.POST_FLUSH)
        assert store.get(record.record_id) is record
        assert record.is_sealed
        assert integrity.verify_signature(record)
        assert "Audit transport failed for entities.Post#1" in caplog.text
        assert "saved via store fallback" in caplog.text

    def test_fail_open_without_fallback(self) -> None:
        store = InMemoryAuditStore()
        dispatcher = AuditDispatcher(BrokenTransport(), store, fallback_to_store=False)
        record = _record()
        assert not dispatcher.dispatch(record, None, DispatchPhase.POST_FLUSH)
        assert len(store) == 0
        assert not record.is_sealed

    def test_fail_closed_reraises(self) -> None:
        store = InMemoryAuditStore()
        dispatcher = AuditDispatcher(
            BrokenTransport(), store, fail_on_transport_error=True
        )
        with pytest.raises(ConnectionError):
            dispatcher.dispatch(_record(), None, DispatchPhase.POST_FLUSH)
        assert len(store) == 0

    def test_fallback_failure_is_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        dispatcher = AuditDispatcher(BrokenTransport(), BrokenStore())
        with caplog.at_level(logging.CRITICAL):
            assert not dispatcher.dispatch(_record(), None, DispatchPhase.POST_FLUSH)
        assert "AUDIT LOSS" in caplog.text

    def test_sealed_record_cannot_be_resigned(self, integrity: IntegrityService) -> None:
        dispatcher = AuditDispatcher(RecordingTransport(), InMemoryAuditStore(), integrity)
        record = _record()
        dispatcher.dispatch(record, None, DispatchPhase.POST_FLUSH)
        with pytest.raises(RecordSealed):
            dispatcher.dispatch(record, None, DispatchPhase.POST_FLUSH)

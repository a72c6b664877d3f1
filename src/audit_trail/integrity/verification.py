"""Bulk signature verification of stored audit records.

Verification reports problems instead of raising, and keeps scanning past
every failed record so that one report lists all of them.
"""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from audit_trail.core.interfaces import AuditLogStore
from audit_trail.core.types import AuditAction, AuditRecord
from audit_trail.integrity.service import IntegrityService

# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(slots=True)
class TamperedEntry:
    """Describes one record whose signature does not verify."""

    record_id: str
    entity_type: str
    entity_id: str
    action: str
    expected_signature: str
    actual_signature: str | None
    reason: str


@dataclass(slots=True)
class IntegrityReport:
    """Result of verifying a set of records.

    Attributes
    ----------
    entries_verified:
        Total number of records that were checked.
    tampered:
        One :class:`TamperedEntry` per signed record that fails
        verification.
    unsigned:
        Ids of records carrying no signature (``revert`` records excepted).
    """

    entries_verified: int = 0
    tampered: list[TamperedEntry] = field(default_factory=list)
    unsigned: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.tampered and not self.unsigned


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

def verify_records(
    records: Iterable[AuditRecord], integrity: IntegrityService
) -> IntegrityReport:
    """Verify every record in *records*.

    Parameters
    ----------
    records:
        Records to check, in any order.
    integrity:
        Service holding the signing secret.

    Returns
    -------
    IntegrityReport
        Counts and per-record findings.
    """
    report = IntegrityReport()
    for record in records:
        report.entries_verified += 1
        if record.signature is None:
            if record.action != AuditAction.REVERT:
                report.unsigned.append(record.record_id)
            continue
        if integrity.verify_signature(record):
            continue
        report.tampered.append(
            TamperedEntry(
                record_id=record.record_id,
                entity_type=record.entity_type,
                entity_id=record.entity_id,
                action=record.action.value,
                expected_signature=integrity.generate_signature(record),
                actual_signature=record.signature,
                reason="signature mismatch",
            )
        )
    return report


def verify_store(
    store: AuditLogStore,
    integrity: IntegrityService,
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> IntegrityReport:
    """Verify the durable records of *store*, optionally for one entity."""
    return verify_records(
        store.find(entity_type=entity_type, entity_id=entity_id), integrity
    )

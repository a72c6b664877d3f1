"""Audit trail dispatch layer.

* **ScheduledAuditManager** -- the per-transaction buffer of records
  awaiting delivery (:mod:`~audit_trail.dispatch.scheduled`).
* **AuditDispatcher** -- signing, delivery, sealing and the fail-open /
  fail-closed policy (:mod:`~audit_trail.dispatch.dispatcher`).
"""
from __future__ import annotations

from audit_trail.dispatch.dispatcher import AuditDispatcher
from audit_trail.dispatch.scheduled import RecordListener, ScheduledAuditManager

__all__ = [
    "AuditDispatcher",
    "RecordListener",
    "ScheduledAuditManager",
]

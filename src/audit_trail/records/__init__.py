"""Audit trail record construction.

* **TransactionContext** -- token, buffer and actor source of one
  transaction (:mod:`~audit_trail.records.context`).
* **ContextResolver** -- actor fields and the redacted ``context`` map.
* **AuditRecordFactory** -- builds unsigned records
  (:mod:`~audit_trail.records.factory`).
"""
from __future__ import annotations

from audit_trail.records.context import (
    CONTEXT_USER_ID,
    CONTEXT_USERNAME,
    ContextResolver,
    ResolvedContext,
    TransactionContext,
)
from audit_trail.records.factory import AuditRecordFactory, changed_fields

__all__ = [
    "CONTEXT_USER_ID",
    "CONTEXT_USERNAME",
    "ContextResolver",
    "ResolvedContext",
    "TransactionContext",
    "AuditRecordFactory",
    "changed_fields",
]

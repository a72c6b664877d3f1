"""Audit trail integrity layer.

This subpackage makes audit records tamper-evident.  It provides:

* **Canonical JSON** -- RFC 8785 serialisation of normalized values
  (:mod:`~audit_trail.integrity.canonical`).
* **IntegrityService** -- HMAC signing and constant-time verification
  (:mod:`~audit_trail.integrity.service`).
* **Verification** -- bulk checks over records or a store, reported
  rather than raised (:mod:`~audit_trail.integrity.verification`).
"""
from __future__ import annotations

from audit_trail.integrity.canonical import atom, canonical_json, normalize
from audit_trail.integrity.service import IntegrityService
from audit_trail.integrity.verification import (
    IntegrityReport,
    TamperedEntry,
    verify_records,
    verify_store,
)

__all__ = [
    # Canonical form
    "atom",
    "canonical_json",
    "normalize",
    # Signing
    "IntegrityService",
    # Verification
    "IntegrityReport",
    "TamperedEntry",
    "verify_records",
    "verify_store",
]

"""Audit trail revert layer.

* **AuditReverter** -- re-applies the state captured by a record and
  records the revert (:mod:`~audit_trail.revert.reverter`).
* **RevertValueDenormalizer** -- rebuilds typed values from stored ones
  (:mod:`~audit_trail.revert.denormalizer`).
* **SoftDeleteHandler** -- soft-delete marker and visibility filters
  (:mod:`~audit_trail.revert.soft_delete`).
"""
from __future__ import annotations

from audit_trail.revert.denormalizer import RevertValueDenormalizer
from audit_trail.revert.reverter import AuditReverter, import_type
from audit_trail.revert.soft_delete import SoftDeleteHandler

__all__ = [
    "AuditReverter",
    "RevertValueDenormalizer",
    "SoftDeleteHandler",
    "import_type",
]

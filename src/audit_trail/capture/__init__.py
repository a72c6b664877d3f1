"""Audit trail capture layer.

This subpackage turns mutations observed in a unit of work into the
values written on audit records.  It provides:

* **ValueSerializer** -- depth- and size-bounded conversion of field
  values into JSON-ready data (:mod:`~audit_trail.capture.serializer`).
* **DataMasker** -- key-based redaction and per-field masking
  (:mod:`~audit_trail.capture.masking`).
* **IdentityResolver** -- identity strings, including the ``pending``
  placeholder (:mod:`~audit_trail.capture.identity`).
* **AuditMetadataRegistry** / ``@auditable`` -- per-type audit policies
  (:mod:`~audit_trail.capture.metadata`).
* **ChangeProcessor** / **EntityProcessor** -- diffing and record
  production for a flush (:mod:`~audit_trail.capture.changes`).
* **AccessAuditor** -- ``access`` records for audited reads
  (:mod:`~audit_trail.capture.access`).
"""
from __future__ import annotations

from audit_trail.capture.access import AccessAuditor
from audit_trail.capture.changes import ChangeProcessor, EntityProcessor, values_equal
from audit_trail.capture.conditions import ConditionVoter
from audit_trail.capture.extractor import EntityDataExtractor
from audit_trail.capture.identity import IdentityResolver
from audit_trail.capture.masking import DEFAULT_MASK, REDACTED, DataMasker
from audit_trail.capture.metadata import AuditMetadataRegistry, auditable
from audit_trail.capture.serializer import MAX_DEPTH_MARKER, ValueSerializer

__all__ = [
    # Serialization
    "MAX_DEPTH_MARKER",
    "ValueSerializer",
    # Masking
    "DEFAULT_MASK",
    "REDACTED",
    "DataMasker",
    # Identity
    "IdentityResolver",
    # Policies
    "AuditMetadataRegistry",
    "ConditionVoter",
    "auditable",
    # Change capture
    "ChangeProcessor",
    "EntityDataExtractor",
    "EntityProcessor",
    "values_equal",
    # Reads
    "AccessAuditor",
]

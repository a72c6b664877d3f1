"""Audit trail error-code hierarchy.

Every failure the pipeline can surface to a caller is a concrete exception
class carrying a stable ``AT-Exxx`` code.

Hierarchy
---------
::

    AuditTrailError
    +-- RecordError       (AT-E1xx)
    +-- CaptureError      (AT-E2xx)
    +-- IntegrityError    (AT-E3xx)
    +-- TransportError    (AT-E4xx)
    +-- RevertError       (AT-E5xx)

``TamperedRecord`` is both an :class:`IntegrityError` and a
:class:`RevertError`, so callers of the reverter can catch either.

Usage
-----
Raise concrete subclasses directly::

    raise EntityNotFound("Post#42 no longer exists")

Catch by category::

    try:
        reverter.revert(record)
    except RevertError:
        # handles EntityNotFound, RevertForceRequired, TamperedRecord, ...
        ...
"""
from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class AuditTrailError(Exception):
    """Base exception for all audit trail errors.

    Attributes
    ----------
    code : str
        Error code, e.g. ``"AT-E101"``.
    message : str
        Human-readable description (MUST NOT contain masked values).
    details : dict[str, Any]
        Machine-readable context specific to the error instance.
    resolution : str
        Suggested action for the caller.
    """

    code: str = "AT-E000"
    message: str = "Unknown audit trail error"
    resolution: str = ""

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        if message is not None:
            self.message = message
        if resolution is not None:
            self.resolution = resolution
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error into a JSON-ready mapping."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["detail"] = self.details
        if self.resolution:
            payload["resolution"] = self.resolution
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ===================================================================
# Category base classes
# ===================================================================

class RecordError(AuditTrailError):
    """AT-E1xx -- Audit record construction and immutability errors."""

    code = "AT-E1XX"


class CaptureError(AuditTrailError):
    """AT-E2xx -- Change capture and buffering errors."""

    code = "AT-E2XX"


class IntegrityError(AuditTrailError):
    """AT-E3xx -- Signing and verification errors."""

    code = "AT-E3XX"


class TransportError(AuditTrailError):
    """AT-E4xx -- Delivery errors raised by transports."""

    code = "AT-E4XX"


class RevertError(AuditTrailError):
    """AT-E5xx -- Errors raised while re-applying a recorded state."""

    code = "AT-E5XX"


# ===================================================================
# AT-E1xx  Record
# ===================================================================

class RecordSealed(RecordError):
    """AT-E100: A sealed audit record was modified."""

    code = "AT-E100"
    message = "Audit record is sealed and cannot be modified"
    resolution = "Create a new audit record instead of mutating a delivered one."


class InvalidRecord(RecordError):
    """AT-E101: An audit record failed validation."""

    code = "AT-E101"
    message = "Audit record is invalid"
    resolution = "Check entity type, entity identity, action and client address."


# ===================================================================
# AT-E2xx  Capture
# ===================================================================

class ExtractionFailure(CaptureError):
    """AT-E200: A field snapshot could not be taken from an object."""

    code = "AT-E200"
    message = "Failed to extract entity data"
    resolution = "Check the field descriptors registered for the entity type."


class AuditQueueOverflow(CaptureError):
    """AT-E201: The per-transaction audit buffer reached its cap."""

    code = "AT-E201"
    message = "Maximum scheduled audits exceeded"
    resolution = (
        "Split the transaction into smaller units of work or raise "
        "max_scheduled_audits."
    )


# ===================================================================
# AT-E3xx  Integrity
# ===================================================================

class MissingIntegritySecret(IntegrityError):
    """AT-E300: Integrity was enabled without a signing secret."""

    code = "AT-E300"
    message = "Integrity is enabled but no secret is configured"
    resolution = "Set integrity_secret or disable integrity."


class TamperedRecord(IntegrityError, RevertError):
    """AT-E301: An audit record's signature does not match its content."""

    code = "AT-E301"
    message = "Audit record signature is invalid"
    resolution = "The record was modified after signing; do not act on it."


# ===================================================================
# AT-E4xx  Transport
# ===================================================================

class TransportFailure(TransportError):
    """AT-E400: A transport could not deliver an audit record."""

    code = "AT-E400"
    message = "Audit transport failed"
    resolution = "Check the sink's availability; the record may be in the fallback store."


# ===================================================================
# AT-E5xx  Revert
# ===================================================================

class EntityNotFound(RevertError):
    """AT-E500: The object an audit record refers to no longer exists."""

    code = "AT-E500"
    message = "Entity not found"


class UnsupportedRevertAction(RevertError):
    """AT-E501: The recorded action cannot be reverted."""

    code = "AT-E501"
    message = "Reverting this action is not supported"


class RevertForceRequired(RevertError):
    """AT-E502: Reverting a creation deletes data and needs ``force``."""

    code = "AT-E502"
    message = "Reverting a creation requires force"
    resolution = "Pass force=True to delete the created entity."


class RevertValidationFailed(RevertError):
    """AT-E503: The reverted object failed validation."""

    code = "AT-E503"
    message = "Reverted entity failed validation"


class NoRevertableValues(RevertError):
    """AT-E504: An update record carries no previous values."""

    code = "AT-E504"
    message = "No old values found in audit record"


# ---------------------------------------------------------------------------
# Error code -> exception class lookup
# ---------------------------------------------------------------------------

_CODE_MAP: dict[str, type[AuditTrailError]] = {
    cls.code: cls
    for cls in [
        RecordSealed,
        InvalidRecord,
        ExtractionFailure,
        AuditQueueOverflow,
        MissingIntegritySecret,
        TamperedRecord,
        TransportFailure,
        EntityNotFound,
        UnsupportedRevertAction,
        RevertForceRequired,
        RevertValidationFailed,
        NoRevertableValues,
    ]
}


def error_from_code(
    code: str,
    message: str | None = None,
    *,
    details: dict[str, Any] | None = None,
    resolution: str | None = None,
) -> AuditTrailError:
    """Instantiate the appropriate error class for *code*.

    Unknown codes produce a generic :class:`AuditTrailError`.
    """
    cls = _CODE_MAP.get(code, AuditTrailError)
    err = cls(message, details=details, resolution=resolution)
    if cls is AuditTrailError:
        err.code = code
    return err

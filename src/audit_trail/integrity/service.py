"""HMAC signing and verification of audit records.

Without the secret, an attacker who gains write access to stored records
cannot produce a signature matching modified content.  The secret MUST
be stored separately from the audit data.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Any

from audit_trail.core.config import AuditTrailConfig
from audit_trail.core.errors import MissingIntegritySecret
from audit_trail.core.types import AuditAction, AuditRecord
from audit_trail.integrity.canonical import atom, canonical_json


class IntegrityService:
    """Sign records and transport payloads with a keyed digest.

    Parameters
    ----------
    secret:
        HMAC secret.  Required when *enabled*; signing without one raises
        :class:`~audit_trail.core.errors.MissingIntegritySecret`.
    algorithm:
        Any digest name accepted by :mod:`hashlib` (default ``sha256``).
    enabled:
        Whether records are signed on dispatch and checked on revert.
    """

    def __init__(
        self,
        secret: str | bytes | None = None,
        algorithm: str = "sha256",
        *,
        enabled: bool = False,
    ) -> None:
        if enabled and not secret:
            raise MissingIntegritySecret()
        if algorithm not in hashlib.algorithms_available:
            raise ValueError(f"unsupported digest {algorithm!r}")
        self._key = secret.encode("utf-8") if isinstance(secret, str) else secret
        self.algorithm = algorithm
        self.enabled = enabled

    @classmethod
    def from_config(cls, config: AuditTrailConfig) -> IntegrityService:
        return cls(
            config.integrity_secret,
            config.integrity_algorithm,
            enabled=config.integrity_enabled,
        )

    @property
    def is_enabled(self) -> bool:
        return self.enabled

    def canonicalize(self, record: AuditRecord) -> str:
        """Return the ``|``-joined canonical form that is signed.

        Parameters
        ----------
        record:
            The record to canonicalize.

        Returns
        -------
        str
            Entity type, identity, action, canonical old values, canonical
            new values, user id, username, client address, user agent,
            transaction token and the UTC timestamp, in that order.
        """
        parts: list[Any] = [
            record.entity_type,
            record.entity_id,
            record.action.value,
            canonical_json(record.old_values),
            canonical_json(record.new_values),
            record.user_id,
            record.username,
            record.client_ip,
            record.user_agent,
            record.transaction_token,
            atom(record.created_at),
        ]
        return "|".join("" if p is None else str(p) for p in parts)

    def _digest(self, data: str | bytes) -> str:
        if not self._key:
            raise MissingIntegritySecret()
        payload = data.encode("utf-8") if isinstance(data, str) else data
        return hmac.new(self._key, payload, self.algorithm).hexdigest()

    def generate_signature(self, record: AuditRecord) -> str:
        return self._digest(self.canonicalize(record))

    def sign_payload(self, payload: str | bytes) -> str:
        """Sign an arbitrary transport body."""
        return self._digest(payload)

    def verify_signature(self, record: AuditRecord) -> bool:
        """Check *record*'s signature in constant time.

        An unsigned record is valid only if it is a ``revert`` record.
        """
        if record.signature is None:
            return record.action == AuditAction.REVERT
        return hmac.compare_digest(self.generate_signature(record), record.signature)

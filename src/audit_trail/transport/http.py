"""HTTP sink for audit records.

Records are POSTed as compact JSON.  Because an uncommitted record's
identity may still be pending, this transport only takes part in the
post-commit phases.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping

import httpx

from audit_trail.core.errors import TransportFailure
from audit_trail.core.types import AuditRecord, DeliveryContext, DispatchPhase
from audit_trail.integrity.service import IntegrityService
from audit_trail.transport.base import build_payload, encode, resolve_entity_id

logger = logging.getLogger(__name__)

_PHASES = frozenset({DispatchPhase.POST_FLUSH, DispatchPhase.POST_LOAD})


class HttpTransport:
    """POST audit records to a remote collector.

    Parameters
    ----------
    endpoint:
        Absolute URL receiving the records.
    integrity:
        When enabled, the body is signed into an ``X-Signature`` header.
    client:
        Shared :class:`httpx.Client`; one is created if omitted.
    headers:
        Extra headers sent with every request.
    timeout:
        Request timeout in seconds (default: 5).
    """

    def __init__(
        self,
        endpoint: str,
        integrity: IntegrityService | None = None,
        *,
        client: httpx.Client | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 5.0,
    ) -> None:
        self.endpoint = endpoint
        self.integrity = integrity
        self._client = client or httpx.Client()
        self._headers = dict(headers or {})
        self._timeout = timeout

    def _build_headers(self, body: str) -> dict[str, str]:
        headers = {"Content-Type": "application/json", **self._headers}
        if self.integrity is not None and self.integrity.is_enabled:
            headers["X-Signature"] = self.integrity.sign_payload(body)
        return headers

    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        """POST *record*.

        Raises
        ------
        TransportFailure
            On a network error or a non-2xx response.
        """
        entity_id = resolve_entity_id(record, context) or record.entity_id
        body = encode(build_payload(record, context, entity_id))
        try:
            response = self._client.post(
                self.endpoint,
                content=body.encode("utf-8"),
                headers=self._build_headers(body),
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise TransportFailure(
                f"HTTP audit transport failed for {record.entity_type}#{entity_id}: {exc}",
                details={"endpoint": self.endpoint},
            ) from exc

        if not response.is_success:
            logger.error(
                "HTTP audit transport failed for %s#%s with status code %d: %s",
                record.entity_type,
                entity_id,
                response.status_code,
                response.text,
            )
            raise TransportFailure(
                f"HTTP audit transport returned {response.status_code}",
                details={"endpoint": self.endpoint, "status_code": response.status_code},
            )

    def supports(self, phase: DispatchPhase) -> bool:
        return phase in _PHASES

    def close(self) -> None:
        self._client.close()

"""Helpers shared by transports."""
from __future__ import annotations

import json
import logging
from typing import Any

from audit_trail.core.types import AuditRecord, DeliveryContext, format_identifier

logger = logging.getLogger(__name__)


def resolve_entity_id(record: AuditRecord, context: DeliveryContext) -> str | None:
    """Return the identity a transport should publish for *record*.

    A known identity is confirmed only for inserts.  A pending identity is
    re-read from the entity carried by *context*; ``None`` means nothing
    better than the record's own value is available.
    """
    if not record.is_pending:
        return record.entity_id if context.is_insert else None
    if context.entity is None or context.manager is None:
        return None
    try:
        values = context.manager.metadata(context.entity).identifier_values(context.entity)
    except LookupError as exc:
        logger.debug("no metadata to resolve pending identity: %s", exc)
        return None
    return format_identifier(values.values())


def build_payload(
    record: AuditRecord, context: DeliveryContext, entity_id: str | None = None
) -> dict[str, Any]:
    """JSON-ready body describing *record* for remote sinks."""
    payload = record.to_dict()
    if entity_id is not None:
        payload["entity_id"] = entity_id
    payload["phase"] = context.phase.value
    return payload


def encode(payload: Any) -> str:
    """Compact JSON encoding used for transport bodies and their signatures."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)

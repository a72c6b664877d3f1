"""Message-queue sink for audit records.

Each record becomes an :class:`AuditMessage`.  Before publication, stamp
hooks may add headers or stop the message altogether; the transport then
adds the ``X-Api-Key`` and ``X-Signature`` headers and hands the body to a
:class:`~audit_trail.core.interfaces.MessagePublisher`.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import redis
from pydantic import BaseModel, ConfigDict, Field

from audit_trail.core.interfaces import MessagePublisher
from audit_trail.core.types import AuditRecord, DeliveryContext, DispatchPhase, thaw
from audit_trail.integrity.service import IntegrityService
from audit_trail.transport.base import encode, resolve_entity_id

logger = logging.getLogger(__name__)

_PHASES = frozenset({DispatchPhase.POST_FLUSH, DispatchPhase.POST_LOAD})


# ---------------------------------------------------------------------------
# Message model
# ---------------------------------------------------------------------------

class AuditMessage(BaseModel):
    """Wire form of an audit record on the queue."""

    model_config = ConfigDict(strict=True, frozen=True)

    record_id: str
    entity_type: str
    entity_id: str
    action: str
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changed_fields: list[str] = Field(default_factory=list)
    user_id: str | None = None
    username: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    transaction_token: str | None = None
    created_at: str = Field(description="ISO-8601 timestamp with offset.")
    context: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_record(cls, record: AuditRecord, entity_id: str | None = None) -> AuditMessage:
        return cls(
            record_id=record.record_id,
            entity_type=record.entity_type,
            entity_id=entity_id or record.entity_id,
            action=record.action.value,
            old_values=thaw(record.old_values),
            new_values=thaw(record.new_values),
            changed_fields=thaw(record.changed_fields),
            user_id=record.user_id,
            username=record.username,
            client_ip=record.client_ip,
            user_agent=record.user_agent,
            transaction_token=record.transaction_token,
            created_at=record.created_at.isoformat(),
            context=thaw(record.context),
        )

    def to_json(self) -> str:
        return encode(self.model_dump(mode="json"))


@dataclass(slots=True)
class StampEvent:
    """Passed to stamp hooks before a message is published."""

    message: AuditMessage
    headers: dict[str, str] = field(default_factory=dict)
    stopped: bool = False

    def add_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def stop(self) -> None:
        """Prevent publication of this message."""
        self.stopped = True


StampHook = Callable[[StampEvent], None]


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class QueueTransport:
    """Publish audit records to a message bus.

    Parameters
    ----------
    publisher:
        The bus adapter, e.g. :class:`RedisStreamPublisher`.
    integrity:
        When enabled, the message body is signed into ``X-Signature``.
    api_key:
        Sent as ``X-Api-Key`` when set.
    hooks:
        Stamp hooks, run in order until one stops the message.
    """

    def __init__(
        self,
        publisher: MessagePublisher,
        integrity: IntegrityService | None = None,
        *,
        api_key: str | None = None,
        hooks: Iterable[StampHook] = (),
    ) -> None:
        self.publisher = publisher
        self.integrity = integrity
        self.api_key = api_key
        self.hooks = list(hooks)

    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        entity_id = resolve_entity_id(record, context) or record.entity_id
        event = StampEvent(AuditMessage.from_record(record, entity_id))
        for hook in self.hooks:
            hook(event)
            if event.stopped:
                logger.debug("publication of %s stopped by stamp hook", record.record_id)
                return

        body = event.message.to_json()
        headers = dict(event.headers)
        if self.api_key is not None:
            headers["X-Api-Key"] = self.api_key
        if self.integrity is not None and self.integrity.is_enabled:
            headers["X-Signature"] = self.integrity.sign_payload(body)
        self.publisher.publish(body, headers)

    def supports(self, phase: DispatchPhase) -> bool:
        return phase in _PHASES


class RedisStreamPublisher:
    """Append messages to a Redis stream with ``XADD``.

    Each entry carries two fields: ``body`` (the JSON message) and
    ``headers`` (a JSON object).
    """

    def __init__(
        self,
        client: redis.Redis,
        stream: str = "audit_trail",
        *,
        maxlen: int | None = None,
    ) -> None:
        self._client = client
        self.stream = stream
        self.maxlen = maxlen

    @classmethod
    def from_url(cls, url: str, stream: str = "audit_trail", **kwargs: Any) -> RedisStreamPublisher:
        return cls(redis.Redis.from_url(url), stream, **kwargs)

    def publish(self, body: str, headers: dict[str, str]) -> None:
        self._client.xadd(
            self.stream,
            {"body": body, "headers": json.dumps(headers, sort_keys=True)},
            maxlen=self.maxlen,
            approximate=self.maxlen is not None,
        )

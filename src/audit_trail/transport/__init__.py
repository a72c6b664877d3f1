"""Audit trail transports.

Sinks implementing :class:`~audit_trail.core.interfaces.AuditTransport`:

* **StoreTransport** -- the durable baseline; supports every phase.
* **HttpTransport** -- JSON over HTTP via ``httpx``.
* **QueueTransport** -- :class:`AuditMessage` published through a
  :class:`~audit_trail.core.interfaces.MessagePublisher`, with
  :class:`RedisStreamPublisher` for Redis streams.
* **ChainTransport** -- fan-out to several sinks.
"""
from __future__ import annotations

from audit_trail.transport.chain import ChainTransport
from audit_trail.transport.http import HttpTransport
from audit_trail.transport.queue import (
    AuditMessage,
    QueueTransport,
    RedisStreamPublisher,
    StampEvent,
    StampHook,
)
from audit_trail.transport.store import StoreTransport

__all__ = [
    "AuditMessage",
    "ChainTransport",
    "HttpTransport",
    "QueueTransport",
    "RedisStreamPublisher",
    "StampEvent",
    "StampHook",
    "StoreTransport",
]

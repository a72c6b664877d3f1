"""Shared fixtures for the audit trail test suite.

Provides an in-memory persistence layer with every test type registered,
an actor, a fixed clock, and a wired :class:`AuditTrail`.
"""
from __future__ import annotations

import pytest
from entities import ACTOR, SECRET, fixed_clock, register_all

from audit_trail.capture.identity import IdentityResolver
from audit_trail.capture.masking import DataMasker
from audit_trail.capture.metadata import AuditMetadataRegistry
from audit_trail.capture.serializer import ValueSerializer
from audit_trail.core.config import AuditTrailConfig
from audit_trail.core.interfaces import (
    InMemoryAuditStore,
    InMemoryObjectManager,
    StaticActorResolver,
)
from audit_trail.dispatch.scheduled import ScheduledAuditManager
from audit_trail.integrity.service import IntegrityService
from audit_trail.records.context import TransactionContext
from audit_trail.trail import AuditTrail

# ---------------------------------------------------------------------------
# Persistence and actor fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def manager() -> InMemoryObjectManager:
    mgr = InMemoryObjectManager()
    register_all(mgr)
    return mgr


@pytest.fixture
def store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def actor_resolver() -> StaticActorResolver:
    return StaticActorResolver(ACTOR)


@pytest.fixture
def tx(actor_resolver: StaticActorResolver) -> TransactionContext:
    return TransactionContext(ScheduledAuditManager(), actor_resolver)


# ---------------------------------------------------------------------------
# Service fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def serializer() -> ValueSerializer:
    return ValueSerializer()


@pytest.fixture
def masker() -> DataMasker:
    return DataMasker()


@pytest.fixture
def registry() -> AuditMetadataRegistry:
    return AuditMetadataRegistry()


@pytest.fixture
def identity() -> IdentityResolver:
    return IdentityResolver()


@pytest.fixture
def integrity() -> IntegrityService:
    return IntegrityService(SECRET, enabled=True)


@pytest.fixture
def config() -> AuditTrailConfig:
    return AuditTrailConfig(integrity_enabled=True, integrity_secret=SECRET)


@pytest.fixture
def trail(config: AuditTrailConfig, store: InMemoryAuditStore) -> AuditTrail:
    return AuditTrail(config, store=store, clock=fixed_clock)

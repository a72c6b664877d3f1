"""Audit trail -- tamper-evident change history for persistent objects.

Mutations observed in a unit of work are diffed field by field, turned
into signed audit records and delivered to one or more sinks.  Stored
records can be verified and reverted.

Layers
------
1. Capture (:mod:`audit_trail.capture`)
2. Record construction (:mod:`audit_trail.records`)
3. Integrity (:mod:`audit_trail.integrity`)
4. Dispatch (:mod:`audit_trail.dispatch`)
5. Transports (:mod:`audit_trail.transport`)
6. Revert (:mod:`audit_trail.revert`)
"""
from __future__ import annotations

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------
from audit_trail.capture import (
    AccessAuditor,
    AuditMetadataRegistry,
    DataMasker,
    IdentityResolver,
    ValueSerializer,
    auditable,
)

# ---------------------------------------------------------------------------
# Core types, errors, config, interfaces
# ---------------------------------------------------------------------------
from audit_trail.core.config import AuditTrailConfig
from audit_trail.core.errors import (
    AuditQueueOverflow,
    # Category bases
    AuditTrailError,
    CaptureError,
    EntityNotFound,
    ExtractionFailure,
    IntegrityError,
    InvalidRecord,
    MissingIntegritySecret,
    NoRevertableValues,
    RecordError,
    RecordSealed,
    RevertError,
    RevertForceRequired,
    RevertValidationFailed,
    TamperedRecord,
    TransportError,
    TransportFailure,
    UnsupportedRevertAction,
    error_from_code,
)
from audit_trail.core.interfaces import (
    ActorResolver,
    AuditLogStore,
    AuditTransport,
    AuditVoter,
    ContextContributor,
    EntityValidator,
    InMemoryAuditStore,
    InMemoryObjectManager,
    MessagePublisher,
    ObjectManager,
    StaticActorResolver,
)
from audit_trail.core.types import (
    PENDING_ID,
    AccessPolicy,
    Actor,
    AuditAction,
    AuditPolicy,
    AuditRecord,
    CollectionChange,
    DispatchPhase,
    EntityMetadata,
    FieldDescriptor,
    FieldKind,
    UnitOfWork,
)

# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
from audit_trail.dispatch import AuditDispatcher, ScheduledAuditManager

# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------
from audit_trail.integrity import (
    IntegrityReport,
    IntegrityService,
    canonical_json,
    verify_records,
    verify_store,
)

# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
from audit_trail.records import AuditRecordFactory, TransactionContext

# ---------------------------------------------------------------------------
# Revert
# ---------------------------------------------------------------------------
from audit_trail.revert import AuditReverter, SoftDeleteHandler

# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------
from audit_trail.trail import AuditSession, AuditTrail

# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------
from audit_trail.transport import (
    AuditMessage,
    ChainTransport,
    HttpTransport,
    QueueTransport,
    RedisStreamPublisher,
    StoreTransport,
)

__all__ = [
    # Meta
    "__version__",
    # Core types & enums
    "PENDING_ID",
    "AccessPolicy",
    "Actor",
    "AuditAction",
    "AuditPolicy",
    "AuditRecord",
    "CollectionChange",
    "DispatchPhase",
    "EntityMetadata",
    "FieldDescriptor",
    "FieldKind",
    "UnitOfWork",
    # Config
    "AuditTrailConfig",
    # Error hierarchy
    "AuditTrailError",
    "RecordError",
    "CaptureError",
    "IntegrityError",
    "TransportError",
    "RevertError",
    "RecordSealed",
    "InvalidRecord",
    "ExtractionFailure",
    "AuditQueueOverflow",
    "MissingIntegritySecret",
    "TamperedRecord",
    "TransportFailure",
    "EntityNotFound",
    "UnsupportedRevertAction",
    "RevertForceRequired",
    "RevertValidationFailed",
    "NoRevertableValues",
    "error_from_code",
    # Interfaces
    "ObjectManager",
    "ActorResolver",
    "ContextContributor",
    "AuditVoter",
    "EntityValidator",
    "AuditTransport",
    "MessagePublisher",
    "AuditLogStore",
    "InMemoryAuditStore",
    "InMemoryObjectManager",
    "StaticActorResolver",
    # Capture
    "AccessAuditor",
    "AuditMetadataRegistry",
    "DataMasker",
    "IdentityResolver",
    "ValueSerializer",
    "auditable",
    # Records
    "AuditRecordFactory",
    "TransactionContext",
    # Integrity
    "IntegrityReport",
    "IntegrityService",
    "canonical_json",
    "verify_records",
    "verify_store",
    # Dispatch
    "AuditDispatcher",
    "ScheduledAuditManager",
    # Transports
    "AuditMessage",
    "ChainTransport",
    "HttpTransport",
    "QueueTransport",
    "RedisStreamPublisher",
    "StoreTransport",
    # Revert
    "AuditReverter",
    "SoftDeleteHandler",
    # Facade
    "AuditSession",
    "AuditTrail",
]

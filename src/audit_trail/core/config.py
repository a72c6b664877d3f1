"""Audit trail configuration.

Defines the validated configuration model shared by capture, record
creation, integrity, dispatch and revert.  All fields carry defaults so
that an empty ``AuditTrailConfig()`` is usable for development.
"""
from __future__ import annotations

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from audit_trail.core.errors import MissingIntegritySecret


class AuditTrailConfig(BaseModel):
    """Configuration for an audit trail.

    One instance is read by every component wired by
    :class:`~audit_trail.trail.AuditTrail`.
    """

    model_config = ConfigDict(strict=True)

    enabled: bool = Field(
        default=True,
        description="Master switch; when False nothing is captured.",
    )
    timezone: str = Field(
        default="UTC",
        description="IANA zone used for ``created_at`` on new records.",
    )
    ignored_entities: list[str] = Field(
        default_factory=list,
        description="Qualified type names that are never audited.",
    )
    ignored_properties: list[str] = Field(
        default_factory=list,
        description="Field names excluded from every diff and snapshot.",
    )

    # -- Soft delete ---------------------------------------------------------

    enable_soft_delete: bool = Field(
        default=True,
        description="Treat a non-null soft-delete field as a soft deletion.",
    )
    soft_delete_field: str = Field(
        default="deleted_at",
        description="Name of the soft-delete marker field.",
    )
    soft_delete_filters: list[str] = Field(
        default=["soft_delete"],
        description=(
            "Persistence-layer filter names hiding soft-deleted rows; "
            "disabled while the reverter looks entities up."
        ),
    )
    enable_hard_delete: bool = Field(
        default=True,
        description="Record physical deletions as ``delete``.",
    )

    # -- Dispatch ------------------------------------------------------------

    defer_transport_until_commit: bool = Field(
        default=True,
        description=(
            "Deliver non-insert records only after the commit; inserts "
            "with a known identity may still go out during the flush."
        ),
    )
    fail_on_transport_error: bool = Field(
        default=False,
        description="Re-raise transport failures (fail-closed).",
    )
    fallback_to_store: bool = Field(
        default=True,
        description="Persist records to the audit store when a transport fails.",
    )
    max_scheduled_audits: int = Field(
        default=1000,
        ge=1,
        description="Per-transaction buffer cap.",
    )
    batch_flush_threshold: int = Field(
        default=500,
        ge=1,
        description="Buffered record count that triggers a batch dispatch.",
    )

    # -- Serialization -------------------------------------------------------

    max_serialization_depth: int = Field(
        default=5,
        ge=1,
        description="Nesting depth at which values are replaced by a marker.",
    )
    max_collection_items: int = Field(
        default=100,
        ge=1,
        description="Items kept from a capped collection before truncation.",
    )
    max_context_bytes: int = Field(
        default=64 * 1024,  # 64 KiB
        ge=0,
        description="Encoded context size above which the context is replaced.",
    )

    # -- Integrity -----------------------------------------------------------

    integrity_enabled: bool = Field(
        default=False,
        description="Sign records and verify signatures on revert.",
    )
    integrity_secret: str | None = Field(
        default=None,
        repr=False,
        description="HMAC secret; required when integrity is enabled.",
    )
    integrity_algorithm: str = Field(
        default="sha256",
        description="Digest passed to :func:`hmac.new`.",
    )

    # -- Enrichment ----------------------------------------------------------

    metadata_cache_size: int = Field(
        default=256,
        ge=1,
        description="Bound of the per-type policy cache.",
    )
    track_client_ip: bool = Field(
        default=True,
        description="Copy the actor's client address onto records.",
    )
    track_user_agent: bool = Field(
        default=True,
        description="Copy the actor's user agent onto records.",
    )
    user_agent_max_length: int = Field(
        default=500,
        ge=1,
        description="User agents longer than this are cut.",
    )
    access_enabled: bool = Field(
        default=True,
        description="Record ``access`` entries for types declaring an access policy.",
    )

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @model_validator(mode="after")
    def _check_integrity(self) -> AuditTrailConfig:
        if self.integrity_enabled and not self.integrity_secret:
            raise MissingIntegritySecret(
                details={"field": "integrity_secret"},
            )
        return self

    @property
    def zone(self) -> ZoneInfo:
        """The configured :class:`~zoneinfo.ZoneInfo`."""
        return ZoneInfo(self.timezone)

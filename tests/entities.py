"""Domain types and constants used across the test suite.

They live in an importable module (not ``conftest``) so that the qualified
type names written on records resolve back to these classes on revert.
"""
from __future__ import annotations

import uuid
from datetime import UTC, datetime

from audit_trail.capture.metadata import auditable
from audit_trail.core.types import (
    AccessPolicy,
    Actor,
    EntityMetadata,
    FieldDescriptor,
    FieldKind,
)

SECRET = "test-integrity-secret"
FIXED_NOW = datetime(2024, 3, 1, 12, 30, 45, tzinfo=UTC)
ACTOR = Actor(
    user_id="42",
    username="alice",
    client_ip="203.0.113.7",
    user_agent="pytest-agent/1.0",
)


def fixed_clock() -> datetime:
    return FIXED_NOW


@auditable(sensitive=["password"], ignore=["updated_at"])
class Author:
    def __init__(self, name: str, password: str | None = None) -> None:
        self.id: int | None = None
        self.name = name
        self.password = password
        self.updated_at: datetime | None = None


@auditable
class Tag:
    def __init__(self, label: str) -> None:
        self.id: int | None = None
        self.label = label


@auditable(access=AccessPolicy(level="info", message="post viewed"))
class Post:
    def __init__(
        self,
        title: str,
        body: str = "",
        author: Author | None = None,
        rating: float = 0.0,
    ) -> None:
        self.id: int | None = None
        self.title = title
        self.body = body
        self.rating = rating
        self.author = author
        self.tags: list[Tag] = []
        self.published_at: datetime | None = None
        self.deleted_at: datetime | None = None


@auditable(access=AccessPolicy(level="warning", cooldown=60))
class Invoice:
    def __init__(self, number: str) -> None:
        self.id: int | None = None
        self.number = number


@auditable
class Document:
    """Pre-assigned UUID identifier."""

    def __init__(self, title: str) -> None:
        self.uuid = str(uuid.uuid4())
        self.title = title


@auditable
class Membership:
    """Composite identifier."""

    def __init__(self, user_id: int, group_id: int, role: str = "member") -> None:
        self.user_id = user_id
        self.group_id = group_id
        self.role = role


class Untracked:
    def __init__(self, name: str) -> None:
        self.id: int | None = None
        self.name = name


def register_all(manager) -> None:
    """Register the metadata of every test type on *manager*."""
    manager.register(EntityMetadata.of(Author, "name", "password", "updated_at"))
    manager.register(EntityMetadata.of(Tag, "label"))
    manager.register(
        EntityMetadata.of(
            Post,
            "title",
            "body",
            "rating",
            FieldDescriptor("author", FieldKind.ASSOCIATION, Author),
            FieldDescriptor("tags", FieldKind.COLLECTION, Tag),
            FieldDescriptor("published_at", FieldKind.DATETIME),
            FieldDescriptor("deleted_at", FieldKind.DATETIME),
        )
    )
    manager.register(EntityMetadata.of(Invoice, "number"))
    manager.register(
        EntityMetadata.of(Document, "title", identifier=("uuid",), generated=False)
    )
    manager.register(
        EntityMetadata.of(
            Membership, "role", identifier=("user_id", "group_id"), generated=False
        )
    )
    manager.register(EntityMetadata.of(Untracked, "name"))

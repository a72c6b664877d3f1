#!/usr/bin/env python3
"""Audit trail quickstart.

Demonstrates the core workflow:

1. Declare an auditable type and register its persistence metadata.
2. Build an audit trail with integrity signing enabled.
3. Insert and update an object through the commit hooks.
4. Verify the stored records.
5. Revert the update.

Run:
    python examples/quickstart.py
"""
from __future__ import annotations

import logging

from audit_trail import (
    Actor,
    AuditAction,
    AuditTrail,
    AuditTrailConfig,
    EntityMetadata,
    InMemoryObjectManager,
    StaticActorResolver,
    UnitOfWork,
    auditable,
)


@auditable(sensitive=["api_key"])
class Article:
    def __init__(self, title: str, api_key: str) -> None:
        self.id: int | None = None
        self.title = title
        self.api_key = api_key


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # -- Step 1: Persistence layer ---------------------------------------------
    manager = InMemoryObjectManager()
    manager.register(EntityMetadata.of(Article, "title", "api_key"))

    # -- Step 2: Audit trail ---------------------------------------------------
    trail = AuditTrail(
        AuditTrailConfig(integrity_enabled=True, integrity_secret="change-me")
    )
    actors = StaticActorResolver(Actor(user_id="1", username="editor", client_ip="127.0.0.1"))
    session = trail.session(manager, actors)
    print("[1] Audit trail created")

    # -- Step 3: Insert, then update -------------------------------------------
    article = Article("Hello", api_key="k-123")
    with manager.transaction():
        manager.persist(article)
        session.on_prepare(UnitOfWork().insert(article))
    session.on_committed()

    with manager.transaction():
        article.title = "Hello, world"
        session.on_prepare(UnitOfWork().update(article, {"title": ("Hello", "Hello, world")}))
    session.on_committed()

    for record in trail.store.find():
        print(f"[2] {record.action}: {record.entity_type}#{record.entity_id} {record.new_values}")

    # -- Step 4: Verify --------------------------------------------------------
    report = trail.verify()
    print(f"[3] Verified {report.entries_verified} records, valid={report.valid}")

    # -- Step 5: Revert the update ---------------------------------------------
    update = trail.store.find(action=AuditAction.UPDATE)[-1]
    changes = trail.reverter(manager, actor_resolver=actors).revert(update)
    print(f"[4] Reverted {changes}; title is now {article.title!r}")


if __name__ == "__main__":
    main()

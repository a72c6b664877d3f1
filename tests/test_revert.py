"""Tests for reverting audited changes.

Covers:

1. **Type resolution** -- qualified names back to classes.
2. **Update reverts** -- scalar, datetime, association and collection
   values; sensitive and identifier fields skipped; dry runs.
3. **Create and soft-delete reverts** -- force, restore, not-soft-deleted.
4. **Refusals** -- tampered records, missing objects, unsupported actions,
   missing old values, validation failures.
5. **Revert records** -- what is written for each kind of revert.
6. **Atomicity** -- a failed revert record undoes the revert.
7. **Helpers** -- soft-delete filters, value denormalization.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest
from entities import FIXED_NOW, SECRET, Author, Post, Tag

from audit_trail.core.config import AuditTrailConfig
from audit_trail.core.errors import (
    EntityNotFound,
    NoRevertableValues,
    RevertError,
    RevertForceRequired,
    RevertValidationFailed,
    TamperedRecord,
    UnsupportedRevertAction,
)
from audit_trail.core.interfaces import (
    InMemoryAuditStore,
    InMemoryObjectManager,
    StaticActorResolver,
)
from audit_trail.core.types import (
    AuditAction,
    AuditRecord,
    DeliveryContext,
    EntityMetadata,
    FieldDescriptor,
    FieldKind,
    UnitOfWork,
)
from audit_trail.revert.denormalizer import RevertValueDenormalizer
from audit_trail.revert.reverter import NOT_SOFT_DELETED, import_type
from audit_trail.revert.soft_delete import SoftDeleteHandler
from audit_trail.trail import AuditSession, AuditTrail
from audit_trail.transport.store import StoreTransport


class RejectAll:
    def validate(self, entity):
        return ["title must not be empty", "rating out of range"]


def _commit(session: AuditSession, manager: InMemoryObjectManager, uow: UnitOfWork) -> None:
    with manager.transaction():
        for entity in uow.insertions:
            manager.persist(entity)
        session.on_prepare(uow)
    session.on_committed()


def _latest(store: InMemoryAuditStore, action: AuditAction) -> AuditRecord:
    return store.find(action=action)[-1]


def _signed(trail: AuditTrail, **fields) -> AuditRecord:
    record = AuditRecord(entity_type="entities.Post", **fields)
    record.signature = trail.integrity.generate_signature(record)
    return record


@pytest.fixture
def session(
    trail: AuditTrail, manager: InMemoryObjectManager, actor_resolver: StaticActorResolver
) -> AuditSession:
    return trail.session(manager, actor_resolver)


@pytest.fixture
def post(session: AuditSession, manager: InMemoryObjectManager) -> Post:
    post = Post("Draft", rating=3.0)
    _commit(session, manager, UnitOfWork().insert(post))
    return post


# ===================================================================
# Type resolution
# ===================================================================


class TestImportType:
    """import_type"""

    def test_resolves_qualified_names(self) -> None:
        assert import_type("collections.OrderedDict") is OrderedDict
        assert import_type("entities.Post") is Post

    def test_unknown_names(self) -> None:
        assert import_type("entities.Missing") is None
        assert import_type("no_such_module.Thing") is None
        assert import_type("Post") is None

    def test_non_types_rejected(self) -> None:
        assert import_type("json.dumps") is None


# ===================================================================
# Update reverts
# ===================================================================


class TestRevertUpdate:
    """Re-applying old values."""

    def test_scalar_round_trip(
        self,
        trail: AuditTrail,
        session: AuditSession,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        actor_resolver: StaticActorResolver,
        post: Post,
    ) -> None:
        post.title = "Final"
        _commit(session, manager, UnitOfWork().update(post, {"title": ("Draft", "Final")}))
        update = _latest(store, AuditAction.UPDATE)

        changes = trail.reverter(manager, actor_resolver=actor_resolver).revert(update)

        assert changes == {"title": "Draft"}
        assert post.title == "Draft"
        revert = _latest(store, AuditAction.REVERT)
        assert revert.entity_id == str(post.id)
        assert revert.old_values == {"title": "Final"}
        assert revert.new_values == {"title": "Draft"}
        assert revert.context["reverted_record_id"] == update.record_id
        assert revert.user_id == "42"
        assert revert.is_sealed
        assert trail.integrity.verify_signature(revert)

    def test_unchanged_values_skipped(
        self, trail: AuditTrail, manager: InMemoryObjectManager, post: Post
    ) -> None:
        record = _signed(
            trail,
            entity_id=str(post.id),
            action=AuditAction.UPDATE,
            old_values={"title": "Draft", "rating": 1.0},
        )
        assert trail.reverter(manager).revert(record, dry_run=True) == {"rating": 1.0}

    def test_identifier_and_unknown_fields_skipped(
        self, trail: AuditTrail, manager: InMemoryObjectManager, post: Post
    ) -> None:
        record = _signed(
            trail,
            entity_id=str(post.id),
            action=AuditAction.UPDATE,
            old_values={"id": 99, "nickname": "x", "body": "old body"},
        )
        assert trail.reverter(manager).revert(record) == {"body": "old body"}
        assert post.id != 99
        assert not hasattr(post, "nickname")

    def test_datetime_values(
        self,
        trail: AuditTrail,
        session: AuditSession,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
    ) -> None:
        first = FIXED_NOW
        second = FIXED_NOW + timedelta(days=1)
        post.published_at = first
        _commit(session, manager, UnitOfWork().update(post, {"published_at": (None, first)}))
        post.published_at = second
        _commit(session, manager, UnitOfWork().update(post, {"published_at": (first, second)}))

        trail.reverter(manager).revert(_latest(store, AuditAction.UPDATE))

        assert post.published_at == first
        assert isinstance(post.published_at, datetime)

    def test_same_instant_in_other_zone_is_unchanged(
        self, trail: AuditTrail, manager: InMemoryObjectManager, post: Post
    ) -> None:
        post.published_at = FIXED_NOW
        paris = FIXED_NOW.astimezone(ZoneInfo("Europe/Paris"))
        record = _signed(
            trail,
            entity_id=str(post.id),
            action=AuditAction.UPDATE,
            old_values={"published_at": paris.isoformat(), "body": "b"},
        )
        assert trail.reverter(manager).revert(record, dry_run=True) == {"body": "b"}

    def test_association_values(
        self,
        trail: AuditTrail,
        session: AuditSession,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
    ) -> None:
        ann, bob = Author("ann"), Author("bob")
        post = Post("t", author=ann)
        _commit(session, manager, UnitOfWork().insert(ann, bob, post))
        post.author = bob
        _commit(session, manager, UnitOfWork().update(post, {"author": (ann, bob)}))
        update = _latest(store, AuditAction.UPDATE)
        assert update.old_values == {"author": ann.id}

        trail.reverter(manager).revert(update)

        assert post.author is ann
        assert _latest(store, AuditAction.REVERT).new_values == {"author": ann.id}

    def test_collection_values(
        self, trail: AuditTrail, session: AuditSession, manager: InMemoryObjectManager
    ) -> None:
        red, blue = Tag("red"), Tag("blue")
        post = Post("t")
        _commit(session, manager, UnitOfWork().insert(red, blue, post))
        record = _signed(
            trail,
            entity_id=str(post.id),
            action=AuditAction.UPDATE,
            old_values={"tags": [str(red.id), str(blue.id), "404"]},
        )
        trail.reverter(manager).revert(record)
        assert post.tags == [red, blue]

    def test_sensitive_fields_never_restored(
        self,
        trail: AuditTrail,
        session: AuditSession,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
    ) -> None:
        author = Author("ann", password="hunter2")
        _commit(session, manager, UnitOfWork().insert(author))
        author.name = "Ann"
        author.password = "s3cret"
        _commit(
            session,
            manager,
            UnitOfWork().update(
                author, {"name": ("ann", "Ann"), "password": ("hunter2", "s3cret")}
            ),
        )
        update = _latest(store, AuditAction.UPDATE)
        assert update.old_values == {"name": "ann", "password": "**REDACTED**"}

        changes = trail.reverter(manager).revert(update)

        assert changes == {"name": "ann"}
        assert author.password == "s3cret"

    def test_dry_run_changes_nothing(
        self,
        trail: AuditTrail,
        session: AuditSession,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
    ) -> None:
        post.title = "Final"
        _commit(session, manager, UnitOfWork().update(post, {"title": ("Draft", "Final")}))
        before = len(store)

        changes = trail.reverter(manager).revert(_latest(store, AuditAction.UPDATE), dry_run=True)

        assert changes == {"title": "Draft"}
        assert post.title == "Final"
        assert len(store) == before

    def test_missing_old_values(
        self, trail: AuditTrail, manager: InMemoryObjectManager, post: Post
    ) -> None:
        record = _signed(trail, entity_id=str(post.id), action=AuditAction.UPDATE)
        with pytest.raises(NoRevertableValues):
            trail.reverter(manager).revert(record)


# ===================================================================
# Create and soft-delete reverts
# ===================================================================


class TestRevertCreate:
    """Undoing a creation deletes the object."""

    def test_requires_force(
        self,
        trail: AuditTrail,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
    ) -> None:
        with pytest.raises(RevertForceRequired) as exc_info:
            trail.reverter(manager).revert(_latest(store, AuditAction.CREATE))
        assert exc_info.value.code == "AT-E502"
        assert manager.find(Post, str(post.id)) is post

    def test_forced_delete(
        self,
        trail: AuditTrail,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
    ) -> None:
        create = _latest(store, AuditAction.CREATE)
        changes = trail.reverter(manager).revert(create, force=True)

        assert changes == {"action": "delete"}
        assert manager.find(Post, str(post.id)) is None
        revert = _latest(store, AuditAction.REVERT)
        assert revert.entity_id == str(post.id)
        assert revert.old_values["title"] == "Draft"
        assert revert.new_values is None


class TestRevertSoftDelete:
    """Undoing a soft deletion clears the marker."""

    @pytest.fixture
    def soft_deleted(
        self,
        session: AuditSession,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
    ) -> AuditRecord:
        post.deleted_at = FIXED_NOW
        _commit(session, manager, UnitOfWork().delete(post))
        return _latest(store, AuditAction.SOFT_DELETE)

    def test_restore(
        self,
        trail: AuditTrail,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
        soft_deleted: AuditRecord,
    ) -> None:
        assert manager.find(Post, str(post.id)) is None

        changes = trail.reverter(manager).revert(soft_deleted, context={"reason": "mistake"})

        assert changes == {"action": "restore"}
        assert post.deleted_at is None
        assert manager.find(Post, str(post.id)) is post
        assert manager.enabled_filters() == ["soft_delete"]
        revert = _latest(store, AuditAction.REVERT)
        assert revert.old_values == {"deleted_at": FIXED_NOW.isoformat()}
        assert revert.new_values == {"deleted_at": None}
        assert revert.context == {
            "reason": "mistake",
            "reverted_record_id": soft_deleted.record_id,
        }

    def test_not_soft_deleted(
        self,
        trail: AuditTrail,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        soft_deleted: AuditRecord,
    ) -> None:
        reverter = trail.reverter(manager)
        reverter.revert(soft_deleted)
        assert reverter.revert(soft_deleted) == {"info": NOT_SOFT_DELETED}
        latest = _latest(store, AuditAction.REVERT)
        assert latest.old_values is None
        assert latest.new_values is None
        assert len(store.find(action=AuditAction.REVERT)) == 2


# ===================================================================
# Refusals
# ===================================================================


class TestRevertRefusals:
    """Records that cannot be reverted."""

    def test_tampered_record(
        self,
        trail: AuditTrail,
        session: AuditSession,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
    ) -> None:
        post.title = "Final"
        _commit(session, manager, UnitOfWork().update(post, {"title": ("Draft", "Final")}))
        forged = AuditRecord.from_dict(_latest(store, AuditAction.UPDATE).to_dict())
        forged.old_values = {"title": "Forged"}

        with pytest.raises(TamperedRecord) as exc_info:
            trail.reverter(manager).revert(forged)
        assert isinstance(exc_info.value, RevertError)
        assert post.title == "Final"

    def test_unsigned_record_refused_when_integrity_enabled(
        self, trail: AuditTrail, manager: InMemoryObjectManager, post: Post
    ) -> None:
        record = AuditRecord(
            entity_type="entities.Post",
            entity_id=str(post.id),
            action=AuditAction.UPDATE,
            old_values={"title": "x"},
        )
        with pytest.raises(TamperedRecord):
            trail.reverter(manager).revert(record)

    def test_integrity_disabled_skips_check(
        self, store: InMemoryAuditStore, manager: InMemoryObjectManager, post: Post
    ) -> None:
        trail = AuditTrail(store=store)
        record = AuditRecord(
            entity_type="entities.Post",
            entity_id=str(post.id),
            action=AuditAction.UPDATE,
            old_values={"title": "x"},
        )
        assert trail.reverter(manager).revert(record) == {"title": "x"}

    def test_entity_not_found(self, trail: AuditTrail, manager: InMemoryObjectManager) -> None:
        record = _signed(
            trail, entity_id="999", action=AuditAction.UPDATE, old_values={"title": "x"}
        )
        with pytest.raises(EntityNotFound) as exc_info:
            trail.reverter(manager).revert(record)
        assert exc_info.value.details == {"entity_type": "entities.Post", "entity_id": "999"}

    def test_unknown_type(self, trail: AuditTrail, manager: InMemoryObjectManager) -> None:
        record = AuditRecord(
            entity_type="no_such_module.Thing",
            entity_id="1",
            action=AuditAction.UPDATE,
            old_values={"title": "x"},
        )
        record.signature = trail.integrity.generate_signature(record)
        with pytest.raises(EntityNotFound):
            trail.reverter(manager).revert(record)

    def test_custom_type_resolver(
        self, trail: AuditTrail, manager: InMemoryObjectManager, post: Post
    ) -> None:
        record = AuditRecord(
            entity_type="blog.Post",
            entity_id=str(post.id),
            action=AuditAction.UPDATE,
            old_values={"title": "x"},
        )
        record.signature = trail.integrity.generate_signature(record)
        reverter = trail.reverter(manager, type_resolver={"blog.Post": Post}.get)
        assert reverter.revert(record, dry_run=True) == {"title": "x"}

    @pytest.mark.parametrize(
        "action", [AuditAction.DELETE, AuditAction.RESTORE, AuditAction.ACCESS]
    )
    def test_unsupported_actions(
        self,
        trail: AuditTrail,
        manager: InMemoryObjectManager,
        post: Post,
        action: AuditAction,
    ) -> None:
        record = _signed(trail, entity_id=str(post.id), action=action)
        with pytest.raises(UnsupportedRevertAction) as exc_info:
            trail.reverter(manager).revert(record)
        assert exc_info.value.details == {"action": action.value}

    def test_validation_failure_rolls_back(
        self,
        trail: AuditTrail,
        manager: InMemoryObjectManager,
        store: InMemoryAuditStore,
        post: Post,
    ) -> None:
        record = _signed(
            trail, entity_id=str(post.id), action=AuditAction.UPDATE, old_values={"title": ""}
        )
        with pytest.raises(RevertValidationFailed) as exc_info:
            trail.reverter(manager, RejectAll()).revert(record)
        assert exc_info.value.details["violations"] == [
            "title must not be empty",
            "rating out of range",
        ]
        assert post.title == "Draft"
        assert store.find(action=AuditAction.REVERT) == []


# ===================================================================
# Atomicity
# ===================================================================


class RevertSinkDown(StoreTransport):
    """Delivers everything except revert records."""

    def send(self, record: AuditRecord, context: DeliveryContext) -> None:
        if record.action == AuditAction.REVERT:
            raise RuntimeError("sink down")
        super().send(record, context)


class RevertLockedStore(InMemoryAuditStore):
    """Refuses to flush once a revert record is staged."""

    revert_staged = False

    def add(self, record: AuditRecord) -> None:
        super().add(record)
        self.revert_staged = self.revert_staged or record.action == AuditAction.REVERT

    def flush(self) -> int:
        if self.revert_staged:
            raise OSError("audit table locked")
        return super().flush()

    def discard_pending(self) -> None:
        super().discard_pending()
        self.revert_staged = False


def _updated_post(
    trail: AuditTrail, manager: InMemoryObjectManager, actor_resolver: StaticActorResolver
) -> Post:
    session = trail.session(manager, actor_resolver)
    post = Post("Draft")
    _commit(session, manager, UnitOfWork().insert(post))
    post.title = "Final"
    _commit(session, manager, UnitOfWork().update(post, {"title": ("Draft", "Final")}))
    return post


class TestRevertAtomicity:
    """A revert and its revert record succeed or fail together."""

    def test_failed_delivery_undoes_update_revert(
        self, manager: InMemoryObjectManager, actor_resolver: StaticActorResolver
    ) -> None:
        store = InMemoryAuditStore()
        config = AuditTrailConfig(
            integrity_enabled=True, integrity_secret=SECRET, fail_on_transport_error=True
        )
        trail = AuditTrail(config, store=store, transport=RevertSinkDown(store))
        post = _updated_post(trail, manager, actor_resolver)

        with pytest.raises(RuntimeError, match="sink down"):
            trail.reverter(manager).revert(_latest(store, AuditAction.UPDATE))

        assert post.title == "Final"
        assert manager.find(Post, str(post.id)) is post
        assert store.find(action=AuditAction.REVERT) == []

    def test_failed_delivery_undoes_forced_delete(
        self, manager: InMemoryObjectManager, actor_resolver: StaticActorResolver
    ) -> None:
        store = InMemoryAuditStore()
        config = AuditTrailConfig(
            integrity_enabled=True, integrity_secret=SECRET, fail_on_transport_error=True
        )
        trail = AuditTrail(config, store=store, transport=RevertSinkDown(store))
        post = _updated_post(trail, manager, actor_resolver)

        with pytest.raises(RuntimeError, match="sink down"):
            trail.reverter(manager).revert(_latest(store, AuditAction.CREATE), force=True)

        assert manager.find(Post, str(post.id)) is post

    def test_failed_store_flush_undoes_revert(
        self, manager: InMemoryObjectManager, actor_resolver: StaticActorResolver
    ) -> None:
        store = RevertLockedStore()
        config = AuditTrailConfig(integrity_enabled=True, integrity_secret=SECRET)
        trail = AuditTrail(config, store=store)
        post = _updated_post(trail, manager, actor_resolver)

        with pytest.raises(OSError, match="audit table locked"):
            trail.reverter(manager).revert(_latest(store, AuditAction.UPDATE))

        assert post.title == "Final"
        assert not store.has_pending()
        assert store.find(action=AuditAction.REVERT) == []


# ===================================================================
# Helpers
# ===================================================================


class TestSoftDeleteHandler:
    """Filter toggling and marker handling."""

    def test_filters_disabled_temporarily(self, manager: InMemoryObjectManager) -> None:
        manager.enable_filter("tenant")
        handler = SoftDeleteHandler(manager)
        with handler.filters_disabled():
            assert manager.enabled_filters() == ["tenant"]
        assert manager.enabled_filters() == ["soft_delete", "tenant"]

    def test_filters_restored_on_error(self, manager: InMemoryObjectManager) -> None:
        handler = SoftDeleteHandler(manager)
        with pytest.raises(RuntimeError), handler.filters_disabled():
            raise RuntimeError("boom")
        assert manager.enabled_filters() == ["soft_delete"]

    def test_already_disabled_filter_stays_disabled(self, manager: InMemoryObjectManager) -> None:
        manager.disable_filter("soft_delete")
        with SoftDeleteHandler(manager).filters_disabled():
            pass
        assert manager.enabled_filters() == []

    def test_marker(self, manager: InMemoryObjectManager) -> None:
        handler = SoftDeleteHandler(manager, field="deleted_at")
        post = Post("t")
        assert not handler.is_soft_deleted(post)
        post.deleted_at = FIXED_NOW
        assert handler.is_soft_deleted(post)
        handler.restore(post)
        assert post.deleted_at is None


class Event:
    pass


class TestRevertValueDenormalizer:
    """Typed values from recorded ones."""

    @pytest.fixture
    def meta(self) -> EntityMetadata:
        return EntityMetadata.of(
            Event,
            "name",
            FieldDescriptor("starts_at", FieldKind.DATETIME),
            FieldDescriptor("day", FieldKind.DATE),
            FieldDescriptor("opens", FieldKind.TIME),
            FieldDescriptor("owner", FieldKind.ASSOCIATION),
        )

    @pytest.fixture
    def denormalizer(self, manager: InMemoryObjectManager) -> RevertValueDenormalizer:
        return RevertValueDenormalizer(manager)

    def test_temporal_kinds(
        self, denormalizer: RevertValueDenormalizer, meta: EntityMetadata
    ) -> None:
        assert denormalizer.denormalize(meta, "starts_at", FIXED_NOW.isoformat()) == FIXED_NOW
        assert denormalizer.denormalize(meta, "day", "2024-03-01") == date(2024, 3, 1)
        assert denormalizer.denormalize(meta, "opens", "09:30:00") == time(9, 30)

    def test_legacy_datetime_map(
        self, denormalizer: RevertValueDenormalizer, meta: EntityMetadata
    ) -> None:
        value = {"date": "2024-03-01 13:30:45.000000", "timezone": "Europe/Paris"}
        assert denormalizer.denormalize(meta, "starts_at", value) == FIXED_NOW

    def test_passthrough(
        self, denormalizer: RevertValueDenormalizer, meta: EntityMetadata
    ) -> None:
        assert denormalizer.denormalize(meta, "name", "x") == "x"
        assert denormalizer.denormalize(meta, "unknown", [1]) == [1]
        assert denormalizer.denormalize(meta, "starts_at", None) is None

    def test_association_without_target_type(
        self, denormalizer: RevertValueDenormalizer, meta: EntityMetadata
    ) -> None:
        assert denormalizer.denormalize(meta, "owner", 1) is None

    def test_values_equal(self) -> None:
        paris = FIXED_NOW.astimezone(ZoneInfo("Europe/Paris"))
        assert RevertValueDenormalizer.values_equal(FIXED_NOW, paris)
        assert not RevertValueDenormalizer.values_equal(FIXED_NOW, FIXED_NOW + timedelta(seconds=1))
        assert RevertValueDenormalizer.values_equal("a", "a")

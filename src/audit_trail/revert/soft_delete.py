"""Soft-delete helpers used while reverting."""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from audit_trail.core.interfaces import ObjectManager


class SoftDeleteHandler:
    """Inspect and clear the soft-delete marker; toggle visibility filters."""

    def __init__(
        self,
        manager: ObjectManager,
        *,
        field: str = "deleted_at",
        filters: Iterable[str] = ("soft_delete",),
    ) -> None:
        self.manager = manager
        self.field = field
        self.filters = frozenset(filters)

    def is_soft_deleted(self, entity: Any) -> bool:
        return getattr(entity, self.field, None) is not None

    def restore(self, entity: Any) -> None:
        setattr(entity, self.field, None)

    def disable_filters(self) -> list[str]:
        """Disable the enabled soft-delete filters and return their names."""
        disabled = [name for name in self.manager.enabled_filters() if name in self.filters]
        for name in disabled:
            self.manager.disable_filter(name)
        return disabled

    def enable_filters(self, names: Iterable[str]) -> None:
        for name in names:
            self.manager.enable_filter(name)

    @contextmanager
    def filters_disabled(self) -> Iterator[None]:
        """Make soft-deleted objects visible for the duration of the block."""
        disabled = self.disable_filters()
        try:
            yield
        finally:
            self.enable_filters(disabled)

"""Conversion of arbitrary field values into JSON-ready audit values.

:class:`ValueSerializer` is stateless and depth-bounded, so it terminates
on cyclic object graphs and never emits raw binary data.
"""
from __future__ import annotations

import enum
import io
import itertools
import logging
from collections.abc import Collection, Mapping
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from audit_trail.core.types import type_name

logger = logging.getLogger(__name__)

MAX_DEPTH_MARKER = "[max depth reached]"

_SCALARS = (str, int, float, bool)


def is_uninitialized(value: Any) -> bool:
    """Return ``True`` for lazy collections that have not been loaded yet."""
    flag = getattr(value, "is_initialized", None)
    if callable(flag):
        flag = flag()
    return flag is False


def declared_identifier(value: Any) -> tuple[bool, Any]:
    """Return ``(found, identifier)`` from ``get_id()`` or an ``id`` attribute."""
    getter = getattr(value, "get_id", None)
    if callable(getter):
        return True, getter()
    if hasattr(value, "id") and not callable(value.id):
        return True, value.id
    return False, None


class ValueSerializer:
    """Serialize field values for audit snapshots.

    Parameters
    ----------
    max_depth:
        Nesting depth at which a value is replaced by
        ``"[max depth reached]"``.
    max_items:
        Items kept from a capped collection before it is replaced by a
        ``{_truncated, _total_count, _sample}`` summary.
    """

    def __init__(self, *, max_depth: int = 5, max_items: int = 100) -> None:
        self.max_depth = max_depth
        self.max_items = max_items

    def serialize(self, value: Any, depth: int = 0) -> Any:
        """Return a JSON-ready rendition of *value*.

        Lists, tuples and maps recurse element-wise; other collections
        (sets, custom collection types) are capped at ``max_items``.
        Objects render as their declared identifier, their own string
        form, or their qualified type name, in that order.
        """
        if depth >= self.max_depth:
            return MAX_DEPTH_MARKER
        if value is None:
            return None
        if isinstance(value, enum.Enum):
            return value.value
        if isinstance(value, _SCALARS):
            return value
        if isinstance(value, (datetime, date, time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, (bytes, bytearray, memoryview)):
            return f"[binary: {len(value)} bytes]"
        if isinstance(value, io.IOBase):
            return f"[stream: {type(value).__name__}]"
        if is_uninitialized(value):
            return {"_state": "uninitialized", "_total_count": "unknown"}
        if isinstance(value, Mapping):
            return {str(k): self.serialize(v, depth + 1) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.serialize(v, depth + 1) for v in value]
        if isinstance(value, Collection):
            return self._serialize_collection(value, depth)
        return self._serialize_object(value, depth)

    def serialize_association(self, value: Any) -> Any:
        """Identifier-only rendition of an association value."""
        if value is None:
            return None
        if isinstance(value, (*_SCALARS, bytes, Mapping)):
            return None
        if is_uninitialized(value):
            return {"_state": "uninitialized", "_total_count": "unknown"}
        if isinstance(value, Collection):
            return self._serialize_collection(value, 0, only_identifiers=True)
        return self._identifier(value)

    # -- internals -----------------------------------------------------------

    def _serialize_collection(
        self, value: Collection[Any], depth: int, *, only_identifiers: bool = False
    ) -> Any:
        def item(obj: Any) -> Any:
            if only_identifiers and not isinstance(obj, (*_SCALARS, Mapping)) and obj is not None:
                return self._identifier(obj)
            return self.serialize(obj, depth + 1)

        count = len(value)
        if count > self.max_items:
            logger.warning(
                "Collection exceeds max items for audit (count=%d, max=%d)",
                count,
                self.max_items,
            )
            return {
                "_truncated": True,
                "_total_count": count,
                "_sample": [item(obj) for obj in itertools.islice(value, self.max_items)],
            }
        return [item(obj) for obj in value]

    def _serialize_object(self, value: Any, depth: int) -> Any:
        found, identifier = declared_identifier(value)
        if found:
            if identifier is None or isinstance(identifier, _SCALARS):
                return identifier
            return self.serialize(identifier, depth + 1)
        if type(value).__str__ is not object.__str__:
            return str(value)
        return type_name(value)

    def _identifier(self, entity: Any) -> Any:
        found, identifier = declared_identifier(entity)
        if not found:
            return type_name(entity)
        if identifier is None or isinstance(identifier, _SCALARS):
            return identifier
        return self.serialize(identifier)

"""Conversion of recorded values back into field values."""
from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo

from audit_trail.core.interfaces import ObjectManager
from audit_trail.core.types import EntityMetadata, FieldDescriptor, FieldKind, format_identifier
from audit_trail.integrity.canonical import atom


class RevertValueDenormalizer:
    """Rebuild typed values from the JSON-ready values stored on records.

    Temporal fields are parsed from ISO strings (or legacy
    ``{"date", "timezone"}`` maps); associations are loaded from the
    object manager by their recorded identity.
    """

    def __init__(self, manager: ObjectManager) -> None:
        self.manager = manager

    def denormalize(self, metadata: EntityMetadata, name: str, value: Any) -> Any:
        if value is None:
            return None
        descriptor = metadata.fields.get(name)
        if descriptor is None:
            return value
        if descriptor.kind in (FieldKind.DATETIME, FieldKind.DATE, FieldKind.TIME):
            return self._temporal(descriptor.kind, value)
        if descriptor.kind == FieldKind.ASSOCIATION:
            return self._association(descriptor, value)
        if descriptor.kind == FieldKind.COLLECTION:
            items = value if isinstance(value, (list, tuple)) else [value]
            loaded = (self._association(descriptor, item) for item in items)
            return [obj for obj in loaded if obj is not None]
        return value

    @staticmethod
    def values_equal(current: Any, new: Any) -> bool:
        """Compare datetimes by UTC instant at seconds precision, others by ``==``."""
        if isinstance(current, datetime) and isinstance(new, datetime):
            return atom(current) == atom(new)
        return current is new or current == new

    # -- internals -----------------------------------------------------------

    @staticmethod
    def _temporal(kind: FieldKind, value: Any) -> Any:
        if isinstance(value, (datetime, date, time)):
            return value
        if isinstance(value, Mapping) and "date" in value:
            parsed = datetime.fromisoformat(str(value["date"]))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=ZoneInfo(str(value.get("timezone") or "UTC")))
        elif isinstance(value, str):
            if kind == FieldKind.TIME:
                return time.fromisoformat(value)
            parsed = datetime.fromisoformat(value)
        else:
            return None
        if kind == FieldKind.DATE:
            return parsed.date()
        if kind == FieldKind.TIME:
            return parsed.timetz()
        return parsed

    def _association(self, descriptor: FieldDescriptor, value: Any) -> Any:
        target = descriptor.target_type
        if target is None:
            return None
        if isinstance(value, target):
            return value
        if isinstance(value, (list, tuple)):
            identity = format_identifier(value)
        elif isinstance(value, (str, int, float)):
            identity = str(value)
        else:
            return None
        if identity is None:
            return None
        return self.manager.find(target, identity)

"""Full field snapshots of persistent objects."""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from audit_trail.capture.masking import DataMasker
from audit_trail.capture.metadata import AuditMetadataRegistry
from audit_trail.capture.serializer import ValueSerializer
from audit_trail.core.interfaces import ObjectManager
from audit_trail.core.types import type_name

logger = logging.getLogger(__name__)


class EntityDataExtractor:
    """Snapshot every audited field of an object.

    Scalar fields holding ``None`` are omitted; associations are always
    present, rendered identifier-only.  Sensitive fields are masked.  If
    the snapshot cannot be taken at all, a placeholder map describing the
    failure is returned instead of raising.
    """

    def __init__(
        self,
        serializer: ValueSerializer,
        masker: DataMasker,
        registry: AuditMetadataRegistry,
    ) -> None:
        self.serializer = serializer
        self.masker = masker
        self.registry = registry

    def extract(
        self, entity: Any, manager: ObjectManager, additional_ignored: Iterable[str] = ()
    ) -> dict[str, Any]:
        try:
            meta = manager.metadata(entity)
            ignored = self.registry.ignored_fields(entity, additional_ignored)
            data: dict[str, Any] = {}
            for name, descriptor in meta.fields.items():
                if name in ignored:
                    continue
                value = self._read(descriptor, entity)
                if descriptor.is_association:
                    data[name] = self.serializer.serialize_association(value)
                elif value is not None:
                    data[name] = self.serializer.serialize(value)
            return self.masker.mask(data, self.registry.sensitive_fields(entity))
        except Exception as exc:
            logger.error("Failed to extract entity data for %s: %s", type_name(entity), exc)
            return {
                "_extraction_failed": True,
                "_error": str(exc),
                "_entity_class": type_name(entity),
            }

    @staticmethod
    def _read(descriptor: Any, entity: Any) -> Any:
        try:
            return descriptor.get(entity)
        except Exception as exc:
            logger.debug("field %s unreadable: %s", descriptor.name, exc)
            return None

"""Resolution of an object's identity string."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from audit_trail.capture.serializer import declared_identifier
from audit_trail.core.interfaces import ObjectManager
from audit_trail.core.types import PENDING_ID, format_identifier

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Turn an object into the identity string written on its records.

    Identities come from the persistence metadata first and from a
    ``get_id()`` method or ``id`` attribute second.  When neither yields a
    value the identity is :data:`~audit_trail.core.types.PENDING_ID`.
    Resolution never raises.
    """

    @staticmethod
    def is_pending(identity: str | None) -> bool:
        return identity is None or identity == PENDING_ID

    def resolve(self, entity: Any, manager: ObjectManager | None = None) -> str:
        """Return the identity of *entity*, or ``"pending"``."""
        if manager is not None:
            try:
                values = manager.metadata(entity).identifier_values(entity)
                identity = format_identifier(values.values())
            except Exception as exc:
                logger.debug(
                    "identity from metadata failed for %s: %s", type(entity).__qualname__, exc
                )
                identity = None
            if identity is not None:
                return identity

        try:
            found, value = declared_identifier(entity)
        except Exception as exc:
            logger.debug("get_id failed for %s: %s", type(entity).__qualname__, exc)
            return PENDING_ID
        if found and value is not None:
            return str(value)
        return PENDING_ID

    def resolve_from_values(
        self, entity: Any, values: Mapping[str, Any] | None, manager: ObjectManager
    ) -> str | None:
        """Read the identity out of a captured snapshot.

        Returns ``None`` if any identifier field is missing from *values*.
        """
        if not values:
            return None
        try:
            fields = manager.metadata(entity).identifier_fields
        except Exception as exc:
            logger.debug(
                "identity from values failed for %s: %s", type(entity).__qualname__, exc
            )
            return None
        if any(values.get(name) is None for name in fields):
            return None
        return format_identifier(values[name] for name in fields)

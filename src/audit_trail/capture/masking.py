"""Masking of sensitive values in snapshots and context maps."""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

REDACTED = "********"
DEFAULT_MASK = "**REDACTED**"

DEFAULT_SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "secret",
    "key",
    "token",
    "auth",
    "authorization",
    "cookie",
    "session",
)


class DataMasker:
    """Replace sensitive entries with fixed placeholders.

    Two strategies are offered:

    * :meth:`redact` -- heuristic, by key name, for free-form maps such as
      record context.  Any key whose lowercase form *contains* one of
      :data:`DEFAULT_SENSITIVE_KEYS` is replaced by ``"********"``.
    * :meth:`mask` -- exact, for snapshots of types that declare their
      sensitive fields.

    Both return new maps; the input is never modified.
    """

    def __init__(self, sensitive_keys: tuple[str, ...] = DEFAULT_SENSITIVE_KEYS) -> None:
        self.sensitive_keys = tuple(k.lower() for k in sensitive_keys)

    def is_sensitive_key(self, key: Any) -> bool:
        lowered = str(key).lower()
        return any(sensitive in lowered for sensitive in self.sensitive_keys)

    def redact(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Recursively redact sensitive keys.  Idempotent."""
        redacted: dict[str, Any] = {}
        for key, value in data.items():
            if self.is_sensitive_key(key):
                redacted[key] = REDACTED
            else:
                redacted[key] = self._redact_value(value)
        return redacted

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return self.redact(value)
        if isinstance(value, (list, tuple)):
            return [self._redact_value(v) for v in value]
        return value

    def mask(self, data: Mapping[str, Any], sensitive_fields: Mapping[str, str]) -> dict[str, Any]:
        """Replace each present field in *sensitive_fields* with its mask."""
        masked = dict(data)
        for name, mask in sensitive_fields.items():
            if name in masked:
                masked[name] = mask
        return masked

"""Canonical forms used for signing.

Values are first *normalized* so that equivalent data signs identically
regardless of numeric type, timezone, or map ordering, then serialised
as RFC 8785 (JCS) canonical JSON.
"""
from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import UTC, date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def atom(value: datetime) -> str:
    """Format *value* in UTC at seconds precision (``2024-01-31T12:00:00+00:00``).

    Naive datetimes are taken to be UTC already.  Sub-second parts are
    dropped, so record timestamps are stored at seconds precision to keep
    the signed and stored values equal.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S+00:00")


def _legacy_datetime(data: Mapping[str, Any]) -> str | None:
    """Normalize a ``{"date": ..., "timezone": ...}`` map, if it is one."""
    raw, zone = data.get("date"), data.get("timezone")
    if not isinstance(raw, str) or not isinstance(zone, str):
        return None
    try:
        parsed = datetime.fromisoformat(raw)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=ZoneInfo(zone))
    except (ValueError, ZoneInfoNotFoundError):
        return None
    return atom(parsed)


def normalize(value: Any) -> Any:
    """Return the signing-normal form of *value*.

    * ints and floats become strings (booleans are left alone);
    * datetimes (any subclass, any zone) become UTC ATOM strings, as do
      legacy ``{"date", "timezone"}`` maps;
    * dates and times become ISO strings;
    * maps are normalized recursively with their keys sorted.
    """
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, datetime):
        return atom(value)
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, Mapping):
        legacy = _legacy_datetime(value)
        if legacy is not None:
            return legacy
        return {str(k): normalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [normalize(v) for v in value]
    return value


def _jcs_serialize_value(value: Any) -> str:
    """Serialise a single JSON value per RFC 8785 (JCS).

    * Strings: minimal UTF-8 encoding, mandatory escapes only.
    * Numbers: shortest representation, integers preferred when the value
      has no fractional part.
    * Booleans / null: lowercase literals.
    * Objects: keys sorted by Unicode code-point order.
    * Arrays: elements in order.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            msg = "NaN and Infinity are not valid JSON values"
            raise ValueError(msg)
        if value == int(value):
            return str(int(value))
        return repr(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        elements = ",".join(_jcs_serialize_value(v) for v in value)
        return f"[{elements}]"
    if isinstance(value, Mapping):
        pairs = ",".join(
            f"{json.dumps(k, ensure_ascii=False)}:{_jcs_serialize_value(value[k])}"
            for k in sorted(value.keys())
        )
        return "{" + pairs + "}"
    msg = f"Unsupported type for JCS serialisation: {type(value)}"
    raise TypeError(msg)


def canonical_json(data: Any) -> str:
    """Return the RFC 8785 canonical JSON of the normalized *data*.

    ``None`` renders as ``null``.
    """
    return _jcs_serialize_value(normalize(data))

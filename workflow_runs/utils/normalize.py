"""Normalization helpers for free-form run payloads.

Triggers, step results and policy maps arrive from upstream agents as loosely
shaped JSON. These helpers coerce individual values into the narrow types the
lifecycle engine works with, always returning a safe fallback instead of
raising.

Key Exports:
    first_present: Look up the first present key among several aliases.
    optional_string: Coerce a scalar into a trimmed, non-empty string or None.
    normalize_step: Coerce a step identifier, falling back to "unknown".
    normalize_datetime: Coerce a value into a second-precision UTC datetime.

Example:
    >>> policy = {"allow_full_run": "no"}
    >>> boolean(first_present(policy, "full_run", "allow_full_run"), True)
    False
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

UNKNOWN = "unknown"

_REASON_TYPE_PATTERN = re.compile(r"[^a-zA-Z0-9._-]")
_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


def first_present(mapping: Any, *keys: str, default: Any = None) -> Any:
    """Return the value of the first key present in ``mapping``.

    Presence is what matters: a key holding ``None`` or an empty string still
    wins over later aliases.

    Args:
        mapping: Candidate mapping; non-mappings yield ``default``.
        *keys: Key aliases in precedence order.
        default: Value returned when no key is present.

    Returns:
        The value stored under the first present key, or ``default``.
    """
    if not isinstance(mapping, Mapping):
        return default
    for key in keys:
        if key in mapping:
            return mapping[key]
    return default


def as_mapping(value: Any) -> dict[str, Any]:
    """Return ``value`` as a plain dict, or an empty dict for non-mappings."""
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def mapping_list(value: Any) -> list[dict[str, Any]]:
    """Keep only the mapping entries of a list."""
    if not isinstance(value, list | tuple):
        return []
    return [dict(item) for item in value if isinstance(item, Mapping)]


def optional_string(value: Any) -> str | None:
    """Coerce a scalar into a trimmed non-empty string.

    Booleans are rejected so that flags are never mistaken for identifiers.

    Returns:
        The string form, or None for blanks, booleans and non-scalars.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, int | float):
        return str(value)
    return None


def string_or(value: Any, fallback: str) -> str:
    """Return :func:`optional_string` of ``value`` or ``fallback``."""
    return optional_string(value) or fallback


def normalize_step(value: Any, fallback: str | None = UNKNOWN) -> str:
    """Normalize a step identifier.

    Args:
        value: Candidate step name.
        fallback: Step used when ``value`` is blank; blank fallbacks collapse
            to ``"unknown"``.
    """
    if isinstance(value, str) and value.strip():
        return value.strip()
    return optional_string(fallback) or UNKNOWN


def optional_positive_int(value: Any) -> int | None:
    """Parse a strictly positive integer from an int or numeric string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def optional_bool(value: Any) -> bool | None:
    """Parse a boolean flag from bools, ints and common strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def boolean(value: Any, default: bool) -> bool:
    """Parse a boolean flag, returning ``default`` when it is unrecognized."""
    parsed = optional_bool(value)
    return default if parsed is None else parsed


def sanitize_reason_type(value: Any) -> str:
    """Turn a reason into a machine-readable token.

    Characters outside ``[a-zA-Z0-9._-]`` become underscores; blanks become
    ``"unknown"``.
    """
    text = optional_string(value)
    if text is None:
        return UNKNOWN
    return _REASON_TYPE_PATTERN.sub("_", text)


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(UTC).replace(microsecond=0)


def optional_datetime(value: Any) -> datetime | None:
    """Parse a datetime or ISO-8601 string into second-precision UTC.

    Naive datetimes are assumed to already be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).replace(microsecond=0)


def normalize_datetime(value: Any) -> datetime:
    """Like :func:`optional_datetime` but falls back to :func:`utc_now`."""
    return optional_datetime(value) or utc_now()


def isoformat(value: datetime) -> str:
    """Serialize a UTC datetime using a ``Z`` suffix."""
    return value.astimezone(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def optional_iso8601(value: Any) -> str | None:
    """Re-serialize a parseable datetime value, or None."""
    parsed = optional_datetime(value)
    return isoformat(parsed) if parsed else None


def reject_none(mapping: Mapping[str, Any]) -> dict[str, Any]:
    """Drop keys whose value is None."""
    return {key: value for key, value in mapping.items() if value is not None}

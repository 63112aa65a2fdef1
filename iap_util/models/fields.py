"""
Typed field extraction for raw vendor JSON.

Vendor parsers read through these helpers so that a missing or wrongly typed
field always surfaces as InvalidFieldError naming the offending key. Callers
translate it into the vendor-specific error for their path.
"""

import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any


_FRACTION_RE = re.compile(r"\.\d+")
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


class InvalidFieldError(ValueError):
    """Raised when a raw vendor field is missing or has the wrong type."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def require_obj(data: object, field: str) -> Mapping[str, Any]:
    """Assert that a decoded JSON value is an object."""
    if not isinstance(data, Mapping):
        raise InvalidFieldError(field, f"expected object, got {type(data).__name__}")
    return data


def require_str(data: Mapping[str, Any], key: str) -> str:
    if key not in data or data[key] is None:
        raise InvalidFieldError(key, "required field is missing")
    value = data[key]
    if not isinstance(value, str):
        raise InvalidFieldError(key, f"expected string, got {type(value).__name__}")
    return value


def optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidFieldError(key, f"expected string, got {type(value).__name__}")
    return value


def require_int(data: Mapping[str, Any], key: str) -> int:
    """Read an integer, accepting the decimal strings Google uses for int64."""
    if key not in data or data[key] is None:
        raise InvalidFieldError(key, "required field is missing")
    return _coerce_int(data[key], key)


def optional_int(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    return _coerce_int(value, key)


def optional_bool(data: Mapping[str, Any], key: str, default: bool = False) -> bool:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise InvalidFieldError(key, f"expected bool, got {type(value).__name__}")
    return value


def optional_obj(data: Mapping[str, Any], key: str) -> Mapping[str, Any] | None:
    value = data.get(key)
    if value is None:
        return None
    return require_obj(value, key)


def optional_list(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidFieldError(key, f"expected array, got {type(value).__name__}")
    return value


def millis_to_datetime(ms: int) -> datetime:
    """Convert a UNIX epoch timestamp in milliseconds to an aware UTC datetime."""
    return _EPOCH + timedelta(milliseconds=ms)


def _millis_field(key: str, ms: int) -> datetime:
    try:
        return millis_to_datetime(ms)
    except (OverflowError, ValueError) as exc:
        raise InvalidFieldError(key, f"timestamp out of range: {ms}") from exc


def require_millis(data: Mapping[str, Any], key: str) -> datetime:
    return _millis_field(key, require_int(data, key))


def optional_millis(data: Mapping[str, Any], key: str) -> datetime | None:
    value = optional_int(data, key)
    return _millis_field(key, value) if value is not None else None


def optional_rfc3339(data: Mapping[str, Any], key: str) -> datetime | None:
    """Read an RFC 3339 timestamp such as "2024-05-01T10:00:00.123Z"."""
    value = optional_str(data, key)
    if value is None:
        return None
    # Google emits up to nanosecond precision; datetime holds microseconds.
    normalized = _FRACTION_RE.sub(lambda m: m.group(0)[:7], value.replace("Z", "+00:00"))
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise InvalidFieldError(key, f"invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _coerce_int(value: object, key: str) -> int:
    if isinstance(value, bool):
        raise InvalidFieldError(key, "expected integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise InvalidFieldError(key, f"invalid integer {value!r}") from exc
    raise InvalidFieldError(key, f"expected integer, got {type(value).__name__}")

"""Property value validation and encoding.

Property values form a closed set: strings, finite numbers, booleans,
``None``, dates and datetimes, and lists/tuples or string-keyed dicts of
those. Two encodings are provided:

- ``to_wire()``: JSON-ready form sent to the server (dates as ISO-8601
  strings). Applied once when an event is built, so queued events are
  plain JSON.
- ``encode_tagged()`` / ``decode_tagged()``: lossless form used for
  persisted super properties, where dates keep their type.
"""

from __future__ import annotations

import copy
import math
from datetime import date, datetime, timezone
from typing import Any, Mapping

from .errors import PropertyValidationError

_DATETIME_TAG = "$datetime"
_DATE_TAG = "$date"
# Wraps a user mapping whose only key is itself a tag
_MAP_TAG = "$map"
_TAGS = frozenset({_DATETIME_TAG, _DATE_TAG, _MAP_TAG})


def validate_value(value: Any, path: str = "value", _parents: frozenset[int] = frozenset()) -> None:
    """Raise ``PropertyValidationError`` if *value* is not a supported Value."""
    if value is None or isinstance(value, (str, bool)):
        return
    if isinstance(value, int):
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise PropertyValidationError(path, "non-finite numbers cannot be sent")
        return
    # datetime is a subclass of date, both are accepted
    if isinstance(value, date):
        return
    if isinstance(value, (list, tuple, Mapping)):
        if id(value) in _parents:
            raise PropertyValidationError(path, "value contains itself")
        parents = _parents | {id(value)}
        if isinstance(value, Mapping):
            for key, item in value.items():
                if not isinstance(key, str):
                    raise PropertyValidationError(path, f"key {key!r} is not a string")
                validate_value(item, f"{path}.{key}", parents)
        else:
            for index, item in enumerate(value):
                validate_value(item, f"{path}[{index}]", parents)
        return
    raise PropertyValidationError(path, f"unsupported type {type(value).__name__}")


def validate_properties(properties: Mapping[str, Any] | None) -> dict[str, Any]:
    """Validate a property mapping and return a deep copy of it.

    ``None`` is treated as an empty mapping.
    """
    if properties is None:
        return {}
    if not isinstance(properties, Mapping):
        raise PropertyValidationError("properties", "expected a mapping")
    try:
        for key, value in properties.items():
            if not isinstance(key, str):
                raise PropertyValidationError(repr(key), "property names must be strings")
            validate_value(value, key)
        return copy.deepcopy(dict(properties))
    except RecursionError:
        raise PropertyValidationError("properties", "values are nested too deeply") from None


def format_datetime(value: datetime) -> str:
    """Format as UTC ISO-8601 with millisecond precision and a ``Z`` suffix.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def to_wire(value: Any) -> Any:
    """Convert a validated value into its JSON-ready wire form."""
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_wire(item) for item in value]
    if isinstance(value, Mapping):
        return {key: to_wire(item) for key, item in value.items()}
    return value


def encode_tagged(value: Any) -> Any:
    """Encode a validated value for persistence, tagging dates."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return {_DATETIME_TAG: value.isoformat()}
    if isinstance(value, date):
        return {_DATE_TAG: value.isoformat()}
    if isinstance(value, (list, tuple)):
        return [encode_tagged(item) for item in value]
    if isinstance(value, Mapping):
        encoded = {key: encode_tagged(item) for key, item in value.items()}
        if len(encoded) == 1 and next(iter(encoded)) in _TAGS:
            return {_MAP_TAG: encoded}
        return encoded
    return value


def decode_tagged(value: Any) -> Any:
    """Reverse ``encode_tagged``.

    Raises ``ValueError`` on a malformed date tag.
    """
    if isinstance(value, list):
        return [decode_tagged(item) for item in value]
    if isinstance(value, dict):
        if len(value) == 1:
            tag, inner = next(iter(value.items()))
            if tag == _DATETIME_TAG and isinstance(inner, str):
                return datetime.fromisoformat(inner)
            if tag == _DATE_TAG and isinstance(inner, str):
                return date.fromisoformat(inner)
            if tag == _MAP_TAG and isinstance(inner, dict):
                return {key: decode_tagged(item) for key, item in inner.items()}
        return {key: decode_tagged(item) for key, item in value.items()}
    return value

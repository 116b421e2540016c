"""Dot-separated JSON path lookup.

``data.items.0.id`` walks object keys and, for arrays, numeric indexes.
Empty segments are ignored, so an empty path addresses the value itself.
"""

from typing import Any, Iterable, NamedTuple

MISSING_FIELD = "missing field"
UNEXPECTED_FIELD = "unexpected field"


class PathNotFound(LookupError):
    """Raised when a path segment cannot be followed."""

    def __init__(self, path: str, segment: str, reason: str):
        self.path = path
        self.segment = segment
        self.reason = reason
        super().__init__(f"path '{path}': {reason}")


def split_path(path: str) -> list[str]:
    return [part for part in str(path).split(".") if part]


def resolve_path(value: Any, path: str) -> Any:
    """Return the value found at ``path`` inside ``value``.

    Raises:
        PathNotFound: If a key is missing, an index is out of range or not
            numeric, or a segment tries to descend into a scalar.
    """
    current = value
    for segment in split_path(path):
        if isinstance(current, dict):
            if segment not in current:
                raise PathNotFound(path, segment, f"key '{segment}' not found")
            current = current[segment]
        elif isinstance(current, list):
            if not segment.isdigit():
                raise PathNotFound(
                    path, segment, f"'{segment}' is not an array index"
                )
            index = int(segment)
            if index >= len(current):
                raise PathNotFound(
                    path,
                    segment,
                    f"index {index} out of range (length {len(current)})",
                )
            current = current[index]
        else:
            raise PathNotFound(
                path,
                segment,
                f"cannot read '{segment}' from {type_name(current)}",
            )
    return current


def has_path(value: Any, path: str) -> bool:
    try:
        resolve_path(value, path)
    except PathNotFound:
        return False
    return True


def type_name(value: Any) -> str:
    """JSON type name of a Python value, for messages."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def values_equal(expected: Any, actual: Any) -> bool:
    """Type-aware JSON equality.

    Booleans never equal numbers, ints equal floats of the same value, and
    containers are compared recursively with the same rules.
    """
    if isinstance(expected, bool) or isinstance(actual, bool):
        return (
            isinstance(expected, bool)
            and isinstance(actual, bool)
            and expected == actual
        )
    if isinstance(expected, (int, float)) and isinstance(actual, (int, float)):
        return expected == actual
    if isinstance(expected, dict) and isinstance(actual, dict):
        return expected.keys() == actual.keys() and all(
            values_equal(expected[key], actual[key]) for key in expected
        )
    if isinstance(expected, list) and isinstance(actual, list):
        return len(expected) == len(actual) and all(
            values_equal(e, a) for e, a in zip(expected, actual)
        )
    if type(expected) is not type(actual):
        return False
    return expected == actual


class Difference(NamedTuple):
    """One place where two JSON documents disagree."""
    path: str
    reason: str
    expected: Any = None
    actual: Any = None


def is_ignored(path: str, patterns: Iterable[str]) -> bool:
    """True when any pattern matches ``path`` segment for segment.

    A pattern matches only paths with the same number of segments; a ``*``
    segment matches any single key or index.
    """
    segments = split_path(path)
    for pattern in patterns:
        parts = split_path(pattern)
        if len(parts) == len(segments) and all(
            part == "*" or part == segment for part, segment in zip(parts, segments)
        ):
            return True
    return False


def diff_values(
    expected: Any,
    actual: Any,
    ignore_fields: Iterable[str] = (),
    path: str = "",
) -> list[Difference]:
    """List every difference between ``expected`` and ``actual``.

    Objects are compared over the union of their keys, so extra fields in
    ``actual`` are differences too. Arrays report a length difference and
    then compare the elements both sides have. Ignored paths are skipped
    together with everything below them.
    """
    ignore_fields = list(ignore_fields)

    if isinstance(expected, dict) and isinstance(actual, dict):
        differences = []
        for key in sorted(set(expected) | set(actual), key=str):
            child = _join_path(path, key)
            if is_ignored(child, ignore_fields):
                continue
            if key not in actual:
                differences.append(Difference(child, MISSING_FIELD, expected=expected[key]))
            elif key not in expected:
                differences.append(Difference(child, UNEXPECTED_FIELD, actual=actual[key]))
            else:
                differences.extend(diff_values(expected[key], actual[key], ignore_fields, child))
        return differences

    if isinstance(expected, list) and isinstance(actual, list):
        differences = []
        if len(expected) != len(actual):
            differences.append(Difference(
                path,
                "array length differs",
                len(expected),
                len(actual),
            ))
        for index, (item_expected, item_actual) in enumerate(zip(expected, actual)):
            child = _join_path(path, index)
            if not is_ignored(child, ignore_fields):
                differences.extend(diff_values(item_expected, item_actual, ignore_fields, child))
        return differences

    if values_equal(expected, actual):
        return []
    if type_name(expected) != type_name(actual):
        reason = f"{type_name(actual)} instead of {type_name(expected)}"
    else:
        reason = "value differs"
    return [Difference(path, reason, expected, actual)]


def _join_path(path: str, segment: Any) -> str:
    return f"{path}.{segment}" if path else str(segment)

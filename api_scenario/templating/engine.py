"""``{{ ... }}`` placeholder expansion.

Strings get textual substitution. Structured values (request bodies,
expected JSON values) are walked recursively; a string leaf that consists of
exactly one placeholder is replaced by the resolved value itself, so numbers,
booleans, objects and arrays keep their JSON type.
"""

import json
import re
from typing import Any, Iterator

from .scope import VariableScope

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(.+?)\s*\}\}")
WHOLE_PLACEHOLDER_PATTERN = re.compile(r"^\{\{\s*(.+?)\s*\}\}$")


def has_placeholders(text: str) -> bool:
    return isinstance(text, str) and PLACEHOLDER_PATTERN.search(text) is not None


def to_text(value: Any) -> str:
    """Textual form of a substituted value.

    Strings are inserted verbatim, everything else as compact JSON
    (``true``, ``null``, ``42``, ``{"a":1}``).
    """
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def expand_string(text: str, scope: VariableScope) -> str:
    """Substitute every placeholder in ``text``.

    Raises:
        UnresolvedVariable: On the first placeholder that cannot be resolved.
    """
    if not has_placeholders(text):
        return text
    return PLACEHOLDER_PATTERN.sub(
        lambda match: to_text(scope.resolve(match.group(1))), text
    )


def expand_value(value: Any, scope: VariableScope) -> Any:
    """Expand every string leaf of a nested JSON-like value."""
    if isinstance(value, str):
        whole = WHOLE_PLACEHOLDER_PATTERN.match(value)
        if whole is not None and "{{" not in whole.group(1):
            return scope.resolve(whole.group(1))
        return expand_string(value, scope)
    if isinstance(value, dict):
        return {key: expand_value(item, scope) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_value(item, scope) for item in value]
    return value


def expand_mapping(values: dict[str, Any], scope: VariableScope) -> dict[str, str]:
    """Expand a header/query mapping; values are always text."""
    return {
        str(key): expand_string(to_text(item), scope)
        for key, item in values.items()
    }


def iter_expressions(value: Any) -> Iterator[str]:
    """Yield every placeholder expression found in a nested value."""
    if isinstance(value, str):
        for match in PLACEHOLDER_PATTERN.finditer(value):
            yield match.group(1).strip()
    elif isinstance(value, dict):
        for key, item in value.items():
            yield from iter_expressions(key)
            yield from iter_expressions(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from iter_expressions(item)

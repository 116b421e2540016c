"""Templating module - variable scope and placeholder expansion."""

from .engine import (
    expand_mapping,
    expand_string,
    expand_value,
    has_placeholders,
    iter_expressions,
    to_text,
)
from .scope import VariableScope, parse_step_reference

__all__ = [
    "VariableScope",
    "expand_mapping",
    "expand_string",
    "expand_value",
    "has_placeholders",
    "iter_expressions",
    "parse_step_reference",
    "to_text",
]

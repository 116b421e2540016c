"""Per-scenario variable scope.

Holds flat bindings (initial ``vars`` plus values written by ``save``) and
the captured output of every successful step that has an id. A scope is
created for one scenario execution and never shared with another.
"""

import copy
import logging
import re
from typing import Any, Iterator, Optional

from ..errors import UnresolvedVariable
from ..json_path import PathNotFound, resolve_path, split_path

logger = logging.getLogger(__name__)

STEP_REFERENCE_PATTERN = re.compile(r"^steps\.([^.\s]+)\.outputs(?:\.(.*))?$")
VARS_PREFIX = "vars."


def parse_step_reference(expression: str) -> Optional[tuple[str, str]]:
    """Split ``steps.<id>.outputs.<path>`` into ``(id, path)``.

    Returns None when the expression is not a step reference.
    """
    match = STEP_REFERENCE_PATTERN.match(expression.strip())
    if match is None:
        return None
    return match.group(1), match.group(2) or ""


class VariableScope:
    """Mutable variable store for one scenario run."""

    def __init__(self, variables: Optional[dict[str, Any]] = None):
        self._variables: dict[str, Any] = copy.deepcopy(dict(variables or {}))
        self._outputs: dict[str, Any] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._variables

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    @property
    def variables(self) -> dict[str, Any]:
        return dict(self._variables)

    @property
    def outputs(self) -> dict[str, Any]:
        return dict(self._outputs)

    def set(self, name: str, value: Any) -> None:
        logger.debug("Saved variable '%s' = %r", name, value)
        self._variables[name] = value

    def update(self, values: dict[str, Any]) -> None:
        for name, value in values.items():
            self.set(name, value)

    def get(self, name: str, default: Any = None) -> Any:
        return self._variables.get(name, default)

    def record_output(self, step_id: str, output: Any) -> None:
        """Store the captured body of a successful step under its id."""
        self._outputs[step_id] = output

    def has_output(self, step_id: str) -> bool:
        return step_id in self._outputs

    def resolve(self, expression: str) -> Any:
        """Resolve a placeholder expression to its value.

        Raises:
            UnresolvedVariable: If the name, step id or path is unknown.
        """
        expression = expression.strip()
        reference = parse_step_reference(expression)
        if reference is not None:
            return self._resolve_output(expression, *reference)

        name = expression
        if name.startswith(VARS_PREFIX):
            name = name[len(VARS_PREFIX):]
        if not name:
            raise UnresolvedVariable(expression, "empty expression")
        if name in self._variables:
            return self._variables[name]

        # "user.id" walks into a saved object named "user"
        head, *rest = split_path(name) or [name]
        if rest and head in self._variables:
            try:
                return resolve_path(self._variables[head], ".".join(rest))
            except PathNotFound as exc:
                raise UnresolvedVariable(expression, exc.reason) from exc
        raise UnresolvedVariable(expression, f"unknown variable '{name}'")

    def _resolve_output(self, expression: str, step_id: str, path: str) -> Any:
        if step_id not in self._outputs:
            raise UnresolvedVariable(
                expression, f"step '{step_id}' has no captured output"
            )
        try:
            return resolve_path(self._outputs[step_id], path)
        except PathNotFound as exc:
            raise UnresolvedVariable(expression, exc.reason) from exc

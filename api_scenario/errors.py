"""Error taxonomy for scenario loading and execution.

Load-time problems raise ParseError. Everything raised while a step runs is
caught by the executor and recorded on the StepResult instead of escaping.
"""

from typing import Any, Optional


class ScenarioError(Exception):
    """Base class for every error raised by the engine."""


class ParseError(ScenarioError):
    """Malformed or structurally invalid scenario file."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        line: Optional[int] = None,
        block: Optional[int] = None,
    ):
        self.message = message
        self.source = source
        self.line = line
        self.block = block
        super().__init__(str(self))

    @property
    def location(self) -> str:
        """Best available locator, e.g. ``a.scenario.md:12 (block 2)``."""
        parts = self.source or "<inline>"
        if self.line is not None:
            parts += f":{self.line}"
        if self.block is not None:
            parts += f" (block {self.block})"
        return parts

    def __str__(self) -> str:
        return f"{self.location}: {self.message}"


class UnresolvedVariable(ScenarioError):
    """A ``{{ ... }}`` placeholder could not be resolved."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"cannot resolve '{{{{ {expression} }}}}': {reason}")


class RequestError(ScenarioError):
    """Transport-level failure (connection refused, timeout, broken stream)."""


class CaptureError(ScenarioError):
    """A ``save`` path did not resolve against the captured response."""

    def __init__(self, name: str, path: str, reason: str):
        self.name = name
        self.path = path
        super().__init__(f"cannot save '{name}' from path '{path}': {reason}")


class AssertionFailure(ScenarioError):
    """One or more expectation mismatches."""

    def __init__(self, mismatches: list[Any]):
        self.mismatches = list(mismatches)
        noun = "mismatch" if len(self.mismatches) == 1 else "mismatches"
        summary = "; ".join(str(m) for m in self.mismatches)
        super().__init__(f"{len(self.mismatches)} assertion {noun}: {summary}")


class SSETimeout(ScenarioError):
    """Event-stream matchers were not satisfied before the wait bound.

    ``mismatches`` holds whatever else failed on the same step.
    """

    def __init__(self, index: int, matcher: str, timeout: float, mismatches: Optional[list[Any]] = None):
        self.index = index
        self.matcher = matcher
        self.timeout = timeout
        self.mismatches = list(mismatches or [])
        message = f"timed out after {timeout:g}s waiting for sse event[{index}] {matcher}"
        if self.mismatches:
            message += "; also " + "; ".join(str(m) for m in self.mismatches)
        super().__init__(message)

"""Scenario data models for API test scenarios.

Both file formats (inline YAML and prose Markdown) are parsed into these
dataclasses. They are frozen: a loaded scenario is never mutated by a run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class HttpMethod(str, Enum):
    """Supported HTTP methods."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class ExpectationKind(str, Enum):
    """Assertion kinds a step may declare under ``expect``."""
    STATUS = "status"
    JSON = "json"
    JSON_EQ = "json_eq"
    JSON_LENGTHS = "json_lengths"
    HEADERS = "headers"
    CONTAINS = "contains"
    SSE = "sse"


VALID_METHODS = {e.value for e in HttpMethod}
# json_ignore_fields qualifies json_eq and is not a kind of its own.
VALID_EXPECTATION_KEYS = {e.value for e in ExpectationKind} | {"json_ignore_fields"}
DEFAULT_TIMEOUT = 30.0
DEFAULT_SSE_EVENT = "message"


@dataclass(frozen=True)
class ScenarioConfig:
    """Settings shared by every step of a scenario."""
    base_url: Optional[str] = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = DEFAULT_TIMEOUT
    continue_on_failure: bool = False


@dataclass(frozen=True)
class HttpRequest:
    """Request template for a step. Every string may hold placeholders."""
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    body: Any = None


@dataclass(frozen=True)
class JsonEquality:
    """Whole-document comparison.

    Paths in ``ignore_fields`` are dot-separated; a ``*`` segment matches
    any single key or index.
    """
    value: Any
    ignore_fields: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SseEventMatcher:
    """Matches one frame of an event stream.

    ``data`` is either a string compared with the raw payload, or a mapping
    of JSON path to expected value checked against the parsed payload.
    """
    event: Optional[str] = None
    data: Any = None
    data_contains: Optional[str] = None
    data_exists: list[str] = field(default_factory=list)
    data_eq: Optional[JsonEquality] = None
    save: dict[str, str] = field(default_factory=dict)

    def describe(self) -> str:
        parts = []
        if self.event is not None:
            parts.append(f"event={self.event!r}")
        if isinstance(self.data, str):
            parts.append(f"data={self.data!r}")
        elif self.data:
            checks = ", ".join(f"{k}={v!r}" for k, v in self.data.items())
            parts.append(f"data{{{checks}}}")
        if self.data_contains is not None:
            parts.append(f"data_contains={self.data_contains!r}")
        if self.data_exists:
            parts.append(f"data_exists={self.data_exists!r}")
        if self.data_eq is not None:
            parts.append(f"data_eq={self.data_eq.value!r}")
        return "(" + ", ".join(parts) + ")" if parts else "(any event)"


@dataclass(frozen=True)
class SseExpectation:
    """Ordered event matchers with an optional wait bound in seconds.

    ``has_events`` names event types that must appear at least once, in any
    order. ``has_no_events`` names event types that must never appear; the
    stream is then read until it ends or the wait bound elapses.
    """
    events: list[SseEventMatcher] = field(default_factory=list)
    timeout: Optional[float] = None
    has_events: list[str] = field(default_factory=list)
    has_no_events: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Expectation:
    """Declared response checks. ``None``/empty kinds are not evaluated."""
    status: Optional[int] = None
    json: dict[str, Any] = field(default_factory=dict)
    json_eq: Optional[JsonEquality] = None
    json_lengths: dict[str, int] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    contains: list[str] = field(default_factory=list)
    sse: Optional[SseExpectation] = None

    @property
    def declared_kinds(self) -> list[ExpectationKind]:
        kinds = []
        if self.status is not None:
            kinds.append(ExpectationKind.STATUS)
        if self.json:
            kinds.append(ExpectationKind.JSON)
        if self.json_eq is not None:
            kinds.append(ExpectationKind.JSON_EQ)
        if self.json_lengths:
            kinds.append(ExpectationKind.JSON_LENGTHS)
        if self.headers:
            kinds.append(ExpectationKind.HEADERS)
        if self.contains:
            kinds.append(ExpectationKind.CONTAINS)
        if self.sse is not None:
            kinds.append(ExpectationKind.SSE)
        return kinds

    @property
    def is_empty(self) -> bool:
        return not self.declared_kinds


@dataclass(frozen=True)
class Step:
    """A single request/expectation/save unit."""
    name: str
    request: HttpRequest
    expect: Expectation = field(default_factory=Expectation)
    id: Optional[str] = None
    description: Optional[str] = None
    save: dict[str, str] = field(default_factory=dict)
    # Expanded before the request is sent; the step runs only when it reads "true".
    condition: Optional[str] = None

    @property
    def label(self) -> str:
        if self.id and self.id != self.name:
            return f"{self.name} [{self.id}]"
        return self.name


@dataclass(frozen=True)
class Scenario:
    """A complete API test scenario."""
    name: str
    steps: list[Step] = field(default_factory=list)
    description: Optional[str] = None
    tags: frozenset[str] = field(default_factory=frozenset)
    config: ScenarioConfig = field(default_factory=ScenarioConfig)
    vars: dict[str, Any] = field(default_factory=dict)
    source: str = "<inline>"

    @property
    def total_steps(self) -> int:
        """Total number of steps."""
        return len(self.steps)

    @property
    def step_ids(self) -> list[str]:
        return [step.id for step in self.steps if step.id]


@dataclass
class ValidationError:
    """A single validation error."""
    path: str
    message: str
    severity: str = "error"  # "error" or "warning"

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class ValidationResult:
    """Result of scenario validation."""
    valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def __str__(self) -> str:
        if self.valid:
            msg = "Valid"
            if self.warnings:
                msg += f" ({self.warning_count} warnings)"
            return msg
        return f"Invalid: {self.error_count} errors, {self.warning_count} warnings"

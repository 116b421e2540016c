"""Step and scenario outcome records.

These are what the executor returns and what the reporter renders. Every
step of a scenario gets exactly one StepResult, including the steps skipped
after an abort.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..errors import (
    AssertionFailure,
    CaptureError,
    RequestError,
    SSETimeout,
    UnresolvedVariable,
)
from ..validators.assertion_engine import Mismatch


class StepStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ErrorKind(str, Enum):
    """Why a step did not pass."""
    UNRESOLVED_VARIABLE = "unresolved_variable"
    REQUEST_ERROR = "request_error"
    ASSERTION_FAILURE = "assertion_failure"
    SSE_TIMEOUT = "sse_timeout"
    CAPTURE_ERROR = "capture_error"
    SKIPPED_DUE_TO_PRIOR_FAILURE = "skipped_due_to_prior_failure"


class RunState(str, Enum):
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"


_ERROR_KINDS = [
    (UnresolvedVariable, ErrorKind.UNRESOLVED_VARIABLE),
    (RequestError, ErrorKind.REQUEST_ERROR),
    (AssertionFailure, ErrorKind.ASSERTION_FAILURE),
    (SSETimeout, ErrorKind.SSE_TIMEOUT),
    (CaptureError, ErrorKind.CAPTURE_ERROR),
]


@dataclass
class StepError:
    """Structured failure attached to a StepResult."""
    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: Exception) -> "StepError":
        """Map an engine exception to its error kind.

        Raises:
            TypeError: If ``exc`` is not one of the step-level errors.
        """
        for exc_type, kind in _ERROR_KINDS:
            if isinstance(exc, exc_type):
                break
        else:
            raise TypeError(f"Not a step error: {type(exc).__name__}")

        details: dict[str, Any] = {}
        if isinstance(exc, UnresolvedVariable):
            details = {"expression": exc.expression, "reason": exc.reason}
        elif isinstance(exc, SSETimeout):
            details = {"index": exc.index, "matcher": exc.matcher, "timeout": exc.timeout}
        elif isinstance(exc, CaptureError):
            details = {"name": exc.name, "path": exc.path}
        return cls(kind=kind, message=str(exc), details=details)

    @classmethod
    def skipped(cls, failed_step: str) -> "StepError":
        return cls(
            kind=ErrorKind.SKIPPED_DUE_TO_PRIOR_FAILURE,
            message=f"skipped because step '{failed_step}' failed",
            details={"failed_step": failed_step},
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.details:
            data["details"] = dict(self.details)
        return data


@dataclass
class StepResult:
    """Outcome of one step."""
    index: int
    name: str
    status: StepStatus
    step_id: Optional[str] = None
    duration_ms: float = 0.0
    error: Optional[StepError] = None
    mismatches: list[Mismatch] = field(default_factory=list)
    request: Optional[dict[str, Any]] = None
    response: Optional[dict[str, Any]] = None
    skip_reason: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == StepStatus.PASSED

    @property
    def skipped(self) -> bool:
        return self.status == StepStatus.SKIPPED

    @property
    def skipped_by_condition(self) -> bool:
        """Skipped because its condition was false, not because of a failure."""
        return self.skipped and self.skip_reason is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "index": self.index,
            "name": self.name,
            "status": self.status.value,
            "success": self.success,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.step_id:
            data["id"] = self.step_id
        if self.skip_reason:
            data["skip_reason"] = self.skip_reason
        if self.error:
            data["error"] = self.error.to_dict()
        if self.mismatches:
            data["mismatches"] = [m.to_dict() for m in self.mismatches]
        if self.request is not None:
            data["request"] = self.request
        if self.response is not None:
            data["response"] = self.response
        return data


@dataclass
class ScenarioResult:
    """Outcome of one scenario run."""
    name: str
    source: str = "<inline>"
    tags: list[str] = field(default_factory=list)
    steps: list[StepResult] = field(default_factory=list)
    state: RunState = RunState.RUNNING
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        """True iff every step passed or was skipped by its own condition.

        Steps skipped after a failure do not count as passed.
        """
        return all(step.success or step.skipped_by_condition for step in self.steps)

    @property
    def aborted(self) -> bool:
        return self.state == RunState.ABORTED

    @property
    def passed_count(self) -> int:
        return sum(1 for step in self.steps if step.status == StepStatus.PASSED)

    @property
    def failed_count(self) -> int:
        return sum(1 for step in self.steps if step.status == StepStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return sum(1 for step in self.steps if step.status == StepStatus.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "source": self.source,
            "tags": list(self.tags),
            "success": self.success,
            "state": self.state.value,
            "duration_ms": round(self.duration_ms, 2),
            "summary": {
                "total": len(self.steps),
                "passed": self.passed_count,
                "failed": self.failed_count,
                "skipped": self.skipped_count,
            },
            "steps": [step.to_dict() for step in self.steps],
        }

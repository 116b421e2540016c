"""Runner module - scenario execution."""

from .executor import (
    ExecutionConfig,
    ScenarioExecutor,
    collect_saves,
    expand_expectation,
    expand_request,
    run_scenarios,
)
from .results import (
    ErrorKind,
    RunState,
    ScenarioResult,
    StepError,
    StepResult,
    StepStatus,
)

__all__ = [
    "ErrorKind",
    "ExecutionConfig",
    "RunState",
    "ScenarioExecutor",
    "ScenarioResult",
    "StepError",
    "StepResult",
    "StepStatus",
    "collect_saves",
    "expand_expectation",
    "expand_request",
    "run_scenarios",
]

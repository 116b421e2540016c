"""Scenario module - YAML and Markdown scenario parsing."""

from .schema import (
    Expectation,
    ExpectationKind,
    HttpMethod,
    HttpRequest,
    JsonEquality,
    Scenario,
    ScenarioConfig,
    SseEventMatcher,
    SseExpectation,
    Step,
    ValidationError,
    ValidationResult,
)
from .parser import (
    is_scenario_file,
    parse_duration,
    parse_scenario,
    parse_scenario_data,
    parse_scenario_yaml,
)
from .markdown_parser import parse_markdown_scenario
from .validator import validate_scenario
from .discovery import LoadFailure, LoadResult, find_scenario_files, load_scenarios

__all__ = [
    "Expectation",
    "ExpectationKind",
    "HttpMethod",
    "HttpRequest",
    "JsonEquality",
    "LoadFailure",
    "LoadResult",
    "Scenario",
    "ScenarioConfig",
    "SseEventMatcher",
    "SseExpectation",
    "Step",
    "ValidationError",
    "ValidationResult",
    "find_scenario_files",
    "is_scenario_file",
    "load_scenarios",
    "parse_duration",
    "parse_markdown_scenario",
    "parse_scenario",
    "parse_scenario_data",
    "parse_scenario_yaml",
    "validate_scenario",
]

"""YAML scenario parser for the scenario runner.

Parses inline YAML scenario files into Scenario dataclass objects and
dispatches ``.scenario.md`` files to the Markdown parser.
"""

import logging
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ..errors import ParseError
from .schema import (
    DEFAULT_TIMEOUT,
    Expectation,
    HttpRequest,
    JsonEquality,
    Scenario,
    ScenarioConfig,
    SseEventMatcher,
    SseExpectation,
    Step,
    VALID_EXPECTATION_KEYS,
)
from .validator import validate_scenario

logger = logging.getLogger(__name__)

MARKDOWN_SUFFIX = ".scenario.md"
YAML_SUFFIXES = (".yaml", ".yml")
SCENARIO_KEYS = {"name", "description", "tags", "config", "vars", "steps"}
CONFIG_KEYS = {"base_url", "headers", "timeout", "continue_on_failure"}
STEP_KEYS = {"id", "name", "description", "condition", "request", "expect", "save"}
REQUEST_KEYS = {"method", "url", "headers", "query", "body"}
SSE_KEYS = {"events", "timeout", "has_events", "has_no_events"}
SSE_EVENT_KEYS = {"event", "data", "data_contains", "data_exists", "data_eq", "ignore_fields", "save"}

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def is_markdown_scenario(path: Union[str, Path]) -> bool:
    """True when the file name ends with ``.scenario.md``."""
    return Path(path).name.endswith(MARKDOWN_SUFFIX)


def is_scenario_file(path: Union[str, Path]) -> bool:
    """True for ``.yaml``, ``.yml`` and ``.scenario.md`` files."""
    path = Path(path)
    return is_markdown_scenario(path) or path.suffix in YAML_SUFFIXES


def parse_scenario(file_path: Union[str, Path]) -> Scenario:
    """Parse a scenario file into a Scenario object.

    Args:
        file_path: Path to a ``.yaml``/``.yml`` or ``.scenario.md`` file.

    Returns:
        Parsed and validated Scenario object.

    Raises:
        FileNotFoundError: If the scenario file doesn't exist.
        ParseError: If the file is malformed or structurally invalid.
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"Scenario file not found: {file_path}")

    if not is_scenario_file(file_path):
        raise ParseError(
            f"Expected .yaml, .yml or {MARKDOWN_SUFFIX} file, got: {file_path.name}",
            source=str(file_path),
        )

    try:
        text = file_path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(
            f"File is not valid UTF-8: {e.reason} at byte {e.start}",
            source=str(file_path),
        ) from e
    logger.debug("Loading scenario from %s", file_path)

    if is_markdown_scenario(file_path):
        # Imported here: markdown_parser builds on this module's helpers.
        from .markdown_parser import parse_markdown_scenario

        return parse_markdown_scenario(text, source=str(file_path))
    return parse_scenario_yaml(text, source=str(file_path))


def parse_scenario_yaml(text: str, source: str = "<inline>") -> Scenario:
    """Parse an inline YAML scenario document."""
    data = load_yaml(text, source)
    if data is None:
        raise ParseError("Empty scenario file", source=source)
    return parse_scenario_data(data, source=source)


def parse_scenario_data(data: Any, source: str = "<inline>") -> Scenario:
    """Parse a scenario from a dictionary (already loaded YAML).

    Args:
        data: Dictionary with scenario data.
        source: Source identifier for error messages.

    Returns:
        Parsed Scenario object.

    Raises:
        ParseError: If required fields are missing or malformed.
    """
    if not isinstance(data, dict):
        raise ParseError(
            f"Scenario must be a YAML mapping, got {type(data).__name__}",
            source=source,
        )

    if "steps" not in data:
        raise ParseError("Missing required field 'steps'", source=source)
    steps_data = data["steps"]
    if not isinstance(steps_data, list):
        raise ParseError("'steps' must be a list", source=source)

    steps = [
        build_step(step_data, f"steps[{i}]", source)
        for i, step_data in enumerate(steps_data)
    ]
    return build_scenario(data, steps, source=source)


def build_scenario(
    metadata: dict,
    steps: list[Step],
    source: str,
    config: Optional[ScenarioConfig] = None,
) -> Scenario:
    """Assemble and validate a Scenario from top-level metadata and steps."""
    _warn_unknown_keys(metadata, SCENARIO_KEYS, "scenario", source)

    name = metadata.get("name")
    if name is None or not str(name).strip():
        raise ParseError("Missing required field 'name'", source=source)

    description = metadata.get("description")
    vars_data = metadata.get("vars") or {}
    if not isinstance(vars_data, dict):
        raise ParseError("'vars' must be a mapping", source=source)

    scenario = Scenario(
        name=str(name),
        description=str(description) if description is not None else None,
        tags=frozenset(_string_list(metadata.get("tags"), "tags", source)),
        config=config or build_config(metadata.get("config"), source),
        vars={str(k): v for k, v in vars_data.items()},
        steps=steps,
        source=source,
    )

    validation = validate_scenario(scenario)
    for warning in validation.warnings:
        logger.warning("%s: %s", source, warning)
    if not validation.valid:
        first = validation.errors[0]
        raise ParseError(str(first), source=source)
    return scenario


def build_config(data: Any, source: str) -> ScenarioConfig:
    if data is None:
        return ScenarioConfig()
    if not isinstance(data, dict):
        raise ParseError("'config' must be a mapping", source=source)
    if "steps" in data:
        raise ParseError("'steps' is not allowed inside 'config'", source=source)
    _warn_unknown_keys(data, CONFIG_KEYS, "config", source)

    base_url = data.get("base_url")
    return ScenarioConfig(
        base_url=str(base_url) if base_url is not None else None,
        headers=_string_map(data.get("headers"), "config.headers", source),
        timeout=parse_duration(data.get("timeout", DEFAULT_TIMEOUT), "config.timeout", source),
        continue_on_failure=_boolean(
            data.get("continue_on_failure", False), "config.continue_on_failure", source
        ),
    )


def build_step(data: Any, context: str, source: str) -> Step:
    """Build one Step from its mapping form."""
    if not isinstance(data, dict):
        raise ParseError(f"{context} must be a mapping", source=source)
    _require_fields(data, ["name", "request", "expect"], context, source)
    _warn_unknown_keys(data, STEP_KEYS, context, source)

    step_id = data.get("id")
    description = data.get("description")
    condition = data.get("condition")
    if isinstance(condition, (dict, list)):
        raise ParseError(f"{context}.condition must be a string", source=source)
    return Step(
        id=str(step_id) if step_id is not None else None,
        name=str(data["name"]),
        description=str(description) if description is not None else None,
        request=_build_request(data["request"], f"{context}.request", source),
        expect=_build_expectation(data["expect"], f"{context}.expect", source),
        save=_string_map(data.get("save"), f"{context}.save", source),
        condition=_scalar_text(condition) if condition is not None else None,
    )


def _build_request(data: Any, context: str, source: str) -> HttpRequest:
    if not isinstance(data, dict):
        raise ParseError(f"{context} must be a mapping", source=source)
    _require_fields(data, ["method", "url"], context, source)
    _warn_unknown_keys(data, REQUEST_KEYS, context, source)

    return HttpRequest(
        method=str(data["method"]).upper(),
        url=str(data["url"]),
        headers=_string_map(data.get("headers"), f"{context}.headers", source),
        query=_string_map(data.get("query"), f"{context}.query", source),
        body=data.get("body"),
    )


def _build_expectation(data: Any, context: str, source: str) -> Expectation:
    if data is None:
        return Expectation()
    if not isinstance(data, dict):
        raise ParseError(f"{context} must be a mapping", source=source)

    unknown = set(data) - VALID_EXPECTATION_KEYS
    if unknown:
        raise ParseError(
            f"Unknown expectation kind(s) {sorted(unknown)} in {context}. "
            f"Must be one of: {', '.join(sorted(VALID_EXPECTATION_KEYS))}",
            source=source,
        )

    status = data.get("status")
    if status is not None and (isinstance(status, bool) or not isinstance(status, int)):
        raise ParseError(f"{context}.status must be an integer", source=source)

    json_checks = data.get("json") or {}
    if not isinstance(json_checks, dict):
        raise ParseError(f"{context}.json must be a mapping", source=source)

    lengths = data.get("json_lengths") or {}
    if not isinstance(lengths, dict):
        raise ParseError(f"{context}.json_lengths must be a mapping", source=source)
    for path, expected in lengths.items():
        if isinstance(expected, bool) or not isinstance(expected, int) or expected < 0:
            raise ParseError(
                f"{context}.json_lengths['{path}'] must be a non-negative integer",
                source=source,
            )

    ignore_fields = _string_list(data.get("json_ignore_fields"), f"{context}.json_ignore_fields", source)
    if ignore_fields and "json_eq" not in data:
        logger.warning("%s: %s.json_ignore_fields has no effect without json_eq", source, context)
    json_eq = JsonEquality(data["json_eq"], ignore_fields) if "json_eq" in data else None

    sse = data.get("sse")
    return Expectation(
        status=status,
        json={str(k): v for k, v in json_checks.items()},
        json_eq=json_eq,
        json_lengths={str(k): v for k, v in lengths.items()},
        headers=_string_map(data.get("headers"), f"{context}.headers", source),
        contains=_string_list(data.get("contains"), f"{context}.contains", source),
        sse=_build_sse(sse, f"{context}.sse", source) if sse is not None else None,
    )


def _build_sse(data: Any, context: str, source: str) -> SseExpectation:
    # A bare list is shorthand for {events: [...]}
    if isinstance(data, list):
        data = {"events": data}
    if not isinstance(data, dict):
        raise ParseError(f"{context} must be a mapping or a list", source=source)
    _warn_unknown_keys(data, SSE_KEYS, context, source)

    events_data = data.get("events") or []
    if not isinstance(events_data, list):
        raise ParseError(f"{context}.events must be a list", source=source)

    events = []
    for i, event_data in enumerate(events_data):
        event_context = f"{context}.events[{i}]"
        if not isinstance(event_data, dict):
            raise ParseError(f"{event_context} must be a mapping", source=source)
        _warn_unknown_keys(event_data, SSE_EVENT_KEYS, event_context, source)

        matcher_data = event_data.get("data")
        if matcher_data is not None and not isinstance(matcher_data, (str, dict)):
            raise ParseError(
                f"{event_context}.data must be a string or a mapping of JSON paths",
                source=source,
            )
        event_name = event_data.get("event")
        data_contains = event_data.get("data_contains")
        ignore_fields = _string_list(event_data.get("ignore_fields"), f"{event_context}.ignore_fields", source)
        if ignore_fields and "data_eq" not in event_data:
            logger.warning("%s: %s.ignore_fields has no effect without data_eq", source, event_context)
        events.append(SseEventMatcher(
            event=str(event_name) if event_name is not None else None,
            data=matcher_data,
            data_contains=str(data_contains) if data_contains is not None else None,
            data_exists=_string_list(event_data.get("data_exists"), f"{event_context}.data_exists", source),
            data_eq=JsonEquality(event_data["data_eq"], ignore_fields) if "data_eq" in event_data else None,
            save=_string_map(event_data.get("save"), f"{event_context}.save", source),
        ))

    timeout = data.get("timeout")
    return SseExpectation(
        events=events,
        has_events=_string_list(data.get("has_events"), f"{context}.has_events", source),
        has_no_events=_string_list(data.get("has_no_events"), f"{context}.has_no_events", source),
        timeout=parse_duration(timeout, f"{context}.timeout", source) if timeout is not None else None,
    )


def parse_duration(value: Any, context: str = "timeout", source: Optional[str] = None) -> float:
    """Convert ``30``, ``2.5``, ``"500ms"``, ``"30s"`` or ``"2m"`` to seconds."""
    if isinstance(value, bool):
        raise ParseError(f"{context} must be a duration, got {value!r}", source=source)
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_PATTERN.match(str(value))
    if match is None:
        raise ParseError(
            f"{context} must be a number of seconds or a duration like '500ms', '30s', '2m'; got {value!r}",
            source=source,
        )
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


def load_yaml(text: str, source: str, line_offset: int = 0, block: Optional[int] = None) -> Any:
    """``yaml.safe_load`` with YAML errors mapped to ParseError.

    ``line_offset`` is added to the 1-based line reported by the YAML parser
    so that embedded documents report file lines.
    """
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        line = mark.line + 1 + line_offset if mark is not None else None
        problem = getattr(e, "problem", None) or str(e)
        raise ParseError(f"Malformed YAML: {problem}", source=source, line=line, block=block) from e


def _require_fields(
    data: dict, fields: list[str], context: str, source: str
) -> None:
    """Check that required fields exist in a dictionary."""
    for field_name in fields:
        if field_name not in data:
            raise ParseError(
                f"Missing required field '{field_name}' in {context}",
                source=source,
            )


def _warn_unknown_keys(data: dict, known: set[str], context: str, source: str) -> None:
    unknown = sorted(str(k) for k in set(data) - known)
    if unknown:
        logger.warning("%s: ignoring unknown field(s) %s in %s", source, unknown, context)


def _string_map(data: Any, context: str, source: str) -> dict[str, str]:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ParseError(f"{context} must be a mapping", source=source)
    return {str(k): _scalar_text(v) for k, v in data.items()}


def _string_list(data: Any, context: str, source: str) -> list[str]:
    if data is None:
        return []
    if isinstance(data, str):
        return [data]
    if not isinstance(data, (list, set, tuple)):
        raise ParseError(f"{context} must be a list", source=source)
    return [str(item) for item in data]


def _boolean(value: Any, context: str, source: str) -> bool:
    if not isinstance(value, bool):
        raise ParseError(f"{context} must be true or false", source=source)
    return value


def _scalar_text(value: Any) -> str:
    # YAML reads `true`/`1` as typed scalars; headers and paths are text.
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)

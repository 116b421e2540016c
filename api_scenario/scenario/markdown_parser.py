"""Markdown scenario parser.

A ``.scenario.md`` file has a YAML front matter block between ``---`` lines,
free-form narrative text, and one or more fenced blocks tagged
``yaml scenario``::

    ---
    name: create and fetch an item
    vars:
      item_name: widget
    ---

    # Items

    Narrative text is ignored by the parser.

    ```yaml scenario
    steps:
      - id: create
        name: create item
        request: {method: POST, url: /items, body: {name: "{{ item_name }}"}}
        expect: {status: 201}
    ```

The front matter supplies the same metadata as an inline file, except
``steps``. Steps come only from the fenced blocks and are concatenated in
document order. A block may also carry a ``config`` mapping which is merged
over the front matter config (headers key by key, later blocks win).
"""

import re
from dataclasses import dataclass
from typing import Any

from ..errors import ParseError
from .parser import build_config, build_scenario, build_step, load_yaml
from .schema import Scenario, Step

FRONT_MATTER_DELIMITER = "---"
FENCE = "```"
SCENARIO_BLOCK_INFO = "yaml scenario"
_STEPS_KEY_PATTERN = re.compile(r"^steps\s*:")


@dataclass
class CodeBlock:
    """A fenced ``yaml scenario`` block."""
    index: int  # 1-based, document order
    line: int  # 1-based line of the opening fence
    content: str


def parse_markdown_scenario(text: str, source: str = "<inline>") -> Scenario:
    """Parse a Markdown scenario document into a Scenario.

    Raises:
        ParseError: With the line and block of the offending region.
    """
    front_matter = _front_matter_text(text, source)
    metadata = load_yaml(front_matter, source, line_offset=1)
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise ParseError("Front matter must be a YAML mapping", source=source, line=1)
    if "steps" in metadata:
        raise ParseError(
            "'steps' is not allowed in front matter; put steps in ```yaml scenario blocks",
            source=source,
            line=_steps_line(front_matter),
        )

    blocks = extract_scenario_blocks(text, source)
    if not blocks:
        raise ParseError(
            f"No ```{SCENARIO_BLOCK_INFO} code blocks found in Markdown file",
            source=source,
        )

    front_config = metadata.get("config") or {}
    if not isinstance(front_config, dict):
        raise ParseError("'config' must be a mapping", source=source, line=1)

    config_data: dict[str, Any] = dict(front_config)
    steps: list[Step] = []
    for block in blocks:
        block_steps, block_config = _parse_block(block, source)
        steps.extend(block_steps)
        if block_config:
            config_data = _merge_config(config_data, block_config)

    return build_scenario(
        metadata,
        steps,
        source=source,
        config=build_config(config_data, source),
    )


def extract_scenario_blocks(text: str, source: str = "<inline>") -> list[CodeBlock]:
    """Return every ``yaml scenario`` fenced block in document order.

    Other fenced blocks (``json``, plain ``yaml`` ...) are narrative and are
    skipped, including their content.
    """
    blocks: list[CodeBlock] = []
    in_scenario = False
    in_other = False
    start_line = 0
    content: list[str] = []

    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if in_scenario:
            if stripped == FENCE:
                blocks.append(CodeBlock(index=len(blocks) + 1, line=start_line, content="\n".join(content)))
                in_scenario = False
            else:
                content.append(line)
        elif in_other:
            if stripped == FENCE:
                in_other = False
        elif stripped.startswith(FENCE):
            if _is_scenario_fence(stripped):
                in_scenario = True
                start_line = number
                content = []
            else:
                in_other = True

    if in_scenario:
        raise ParseError(
            f"Unterminated ```{SCENARIO_BLOCK_INFO} block",
            source=source,
            line=start_line,
            block=len(blocks) + 1,
        )
    return blocks


def _is_scenario_fence(stripped: str) -> bool:
    info = stripped[len(FENCE):].strip().lower()
    return " ".join(info.split()) == SCENARIO_BLOCK_INFO


def _front_matter_text(text: str, source: str) -> str:
    lines = text.lstrip("\ufeff").splitlines()
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        raise ParseError(
            f"Markdown front matter must start with '{FRONT_MATTER_DELIMITER}'",
            source=source,
            line=1,
        )
    for index, line in enumerate(lines[1:], start=1):
        if line.strip() == FRONT_MATTER_DELIMITER:
            return "\n".join(lines[1:index])
    raise ParseError(
        f"Closing '{FRONT_MATTER_DELIMITER}' for front matter not found",
        source=source,
        line=1,
    )


def _steps_line(front_matter: str) -> int:
    for number, line in enumerate(front_matter.splitlines(), start=2):
        if _STEPS_KEY_PATTERN.match(line):
            return number
    return 1


def _parse_block(block: CodeBlock, source: str) -> tuple[list[Step], dict[str, Any]]:
    data = load_yaml(block.content, source, line_offset=block.line, block=block.index)
    if not isinstance(data, dict):
        raise ParseError(
            "Scenario block must be a mapping with a 'steps' list",
            source=source,
            line=block.line,
            block=block.index,
        )
    if "steps" not in data:
        raise ParseError(
            "Missing required field 'steps' in scenario block",
            source=source,
            line=block.line,
            block=block.index,
        )
    steps_data = data["steps"]
    if not isinstance(steps_data, list):
        raise ParseError("'steps' must be a list", source=source, line=block.line, block=block.index)

    config_data = data.get("config") or {}
    if not isinstance(config_data, dict):
        raise ParseError("'config' must be a mapping", source=source, line=block.line, block=block.index)

    steps = []
    for i, step_data in enumerate(steps_data):
        try:
            steps.append(build_step(step_data, f"steps[{i}]", source))
        except ParseError as e:
            raise ParseError(e.message, source=source, line=block.line, block=block.index) from e
    return steps, config_data


def _merge_config(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if key == "headers" and isinstance(value, dict):
            headers = dict(merged.get("headers") or {})
            headers.update(value)
            merged["headers"] = headers
        else:
            merged[key] = value
    return merged

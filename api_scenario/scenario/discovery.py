"""Scenario file discovery.

Enumerates scenario files under files and directories and loads them. A file
that fails to parse is reported on its own and does not stop the others.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

from ..errors import ParseError
from .parser import is_scenario_file, parse_scenario
from .schema import Scenario

logger = logging.getLogger(__name__)


@dataclass
class LoadFailure:
    """A scenario file that could not be loaded."""
    path: Path
    error: ParseError

    def __str__(self) -> str:
        return str(self.error)


@dataclass
class LoadResult:
    """Scenarios loaded from a set of paths."""
    scenarios: list[Scenario] = field(default_factory=list)
    failures: list[LoadFailure] = field(default_factory=list)
    filtered_out: int = 0

    @property
    def has_failures(self) -> bool:
        return len(self.failures) > 0


def find_scenario_files(paths: Iterable[Union[str, Path]]) -> list[Path]:
    """Expand files and directories into a sorted list of scenario files.

    Directories are walked recursively and only ``.yaml``, ``.yml`` and
    ``.scenario.md`` files are kept. Explicit file arguments are returned
    as given so that an unsupported extension surfaces as a ParseError.

    Raises:
        FileNotFoundError: If a path does not exist.
    """
    found: list[Path] = []
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            matches = sorted(p for p in path.rglob("*") if p.is_file() and is_scenario_file(p))
            logger.debug("Found %d scenario files in %s", len(matches), path)
            found.extend(matches)
        elif path.exists():
            found.append(path)
        else:
            raise FileNotFoundError(f"Scenario path not found: {path}")

    unique: list[Path] = []
    for path in found:
        if path not in unique:
            unique.append(path)
    return unique


def matches_filter(
    scenario: Scenario,
    name_filter: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
) -> bool:
    """Name filter is a case-insensitive substring; any listed tag matches."""
    if name_filter and name_filter.lower() not in scenario.name.lower():
        return False
    wanted = set(tags or [])
    if wanted and not wanted & scenario.tags:
        return False
    return True


def load_scenarios(
    paths: Iterable[Union[str, Path]],
    name_filter: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
) -> LoadResult:
    """Load every scenario file under ``paths``.

    Args:
        paths: Files and/or directories.
        name_filter: Keep scenarios whose name contains this text.
        tags: Keep scenarios carrying at least one of these tags.

    Returns:
        LoadResult with the scenarios, per-file failures and filter count.
    """
    result = LoadResult()
    tags = list(tags or [])

    for path in find_scenario_files(paths):
        try:
            scenario = parse_scenario(path)
        except ParseError as e:
            logger.error("Failed to load scenario: %s", e)
            result.failures.append(LoadFailure(path=path, error=e))
            continue

        if matches_filter(scenario, name_filter, tags):
            result.scenarios.append(scenario)
        else:
            result.filtered_out += 1

    logger.info(
        "Loaded %d scenarios (%d failed, %d filtered out)",
        len(result.scenarios),
        len(result.failures),
        result.filtered_out,
    )
    return result

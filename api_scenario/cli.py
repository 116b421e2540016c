"""CLI entry point for the API scenario runner.

    api-scenario <paths...> [options]
"""

import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .reporting.json_reporter import REPORT_FORMATS, JsonReporter
from .runner.executor import DEFAULT_CONCURRENCY, ExecutionConfig, run_scenarios
from .scenario.discovery import load_scenarios

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO if verbose else logging.WARNING)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True, path_type=Path))
@click.option("--filter", "name_filter", help="Run only scenarios whose name contains this text.")
@click.option("--tag", "tags", multiple=True, help="Run only scenarios with this tag (repeatable).")
@click.option("--base-url", envvar="API_SCENARIO_BASE_URL", help="Override every scenario's base URL.")
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    envvar="API_SCENARIO_TIMEOUT",
    help="Per-request timeout in seconds.",
)
@click.option(
    "--continue-on-failure",
    is_flag=True,
    help="Keep running steps after a failure.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=DEFAULT_CONCURRENCY,
    show_default=True,
    help="Number of scenarios run at the same time.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option(
    "--report-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Also save the report into this directory.",
)
@click.option(
    "--report-format",
    type=click.Choice(REPORT_FORMATS),
    default="text",
    show_default=True,
    help="Report output format.",
)
@click.version_option(__version__, prog_name="api-scenario")
def main(
    paths: tuple[Path, ...],
    name_filter: Optional[str],
    tags: tuple[str, ...],
    base_url: Optional[str],
    timeout: Optional[float],
    continue_on_failure: bool,
    concurrency: int,
    verbose: bool,
    report_dir: Optional[Path],
    report_format: str,
):
    """Run API test scenarios from YAML and Markdown files.

    Exits 0 when every scenario loaded and passed, 1 otherwise.
    """
    configure_logging(verbose)
    start_time = time.perf_counter()

    try:
        loaded = load_scenarios(paths, name_filter=name_filter, tags=tags)
    except OSError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not loaded.scenarios and not loaded.has_failures:
        click.echo("No scenarios found.", err=True)
        sys.exit(1)

    config = ExecutionConfig(
        base_url=base_url,
        timeout=timeout,
        continue_on_failure=continue_on_failure or None,
    )

    try:
        results = asyncio.run(run_scenarios(loaded.scenarios, config, max_concurrency=concurrency))
    except KeyboardInterrupt:
        click.echo("Interrupted by user", err=True)
        sys.exit(130)

    duration_ms = (time.perf_counter() - start_time) * 1000
    reporter = JsonReporter()
    report = reporter.generate(results, duration_ms=duration_ms, load_failures=loaded.failures)
    click.echo(reporter.render(report, report_format), nl=False)

    if report_dir:
        report_path = reporter.save_to_dir(report, report_dir, report_format)
        click.echo(f"Report saved to {report_path}", err=True)

    if report["status"] != "passed":
        sys.exit(1)


if __name__ == "__main__":
    main()

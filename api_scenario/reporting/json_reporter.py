"""Report generator for scenario run results.

Builds one report dictionary from the scenario results of a run and renders
it as JSON, YAML or plain text.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from ..runner.results import ScenarioResult
from ..scenario.discovery import LoadFailure

REPORT_FORMATS = ("json", "yaml", "text")
FORMAT_EXTENSIONS = {"json": "json", "yaml": "yaml", "text": "txt"}


class JsonReporter:
    """Generates reports from scenario results."""

    def generate(
        self,
        results: list[ScenarioResult],
        duration_ms: float = 0,
        load_failures: Optional[list[LoadFailure]] = None,
    ) -> dict[str, Any]:
        """Generate a report from run results.

        Args:
            results: One result per executed scenario.
            duration_ms: Wall-clock duration of the whole run.
            load_failures: Scenario files that could not be loaded.

        Returns:
            Report dictionary ready for serialization.
        """
        load_failures = load_failures or []
        passed = sum(1 for r in results if r.success)
        success = passed == len(results) and not load_failures

        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "status": "passed" if success else "failed",
            "summary": {
                "total": len(results),
                "passed": passed,
                "failed": len(results) - passed,
                "load_errors": len(load_failures),
                "steps": {
                    "total": sum(len(r.steps) for r in results),
                    "passed": sum(r.passed_count for r in results),
                    "failed": sum(r.failed_count for r in results),
                    "skipped": sum(r.skipped_count for r in results),
                },
                "duration_ms": round(duration_ms, 2),
            },
            "scenarios": [r.to_dict() for r in results],
            "load_errors": [
                {"path": str(f.path), "message": str(f.error)} for f in load_failures
            ],
        }

    def render(self, report: dict[str, Any], fmt: str = "json") -> str:
        """Render a report as ``json``, ``yaml`` or ``text``.

        Raises:
            ValueError: If ``fmt`` is not a known format.
        """
        if fmt == "json":
            return self.to_json_string(report)
        if fmt == "yaml":
            return yaml.safe_dump(report, sort_keys=False, allow_unicode=True)
        if fmt == "text":
            return self.to_text(report)
        raise ValueError(f"Unknown report format: {fmt} (expected one of {', '.join(REPORT_FORMATS)})")

    def save(self, report: dict[str, Any], path: Path, fmt: str = "json") -> Path:
        """Save report to a file.

        Args:
            report: Report dictionary.
            path: Output file path.
            fmt: Output format.

        Returns:
            Path to the saved file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            f.write(self.render(report, fmt))

        return path

    def save_to_dir(self, report: dict[str, Any], report_dir: Path, fmt: str = "json") -> Path:
        """Save report as ``report-<timestamp>.<ext>`` inside ``report_dir``."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        return self.save(report, Path(report_dir) / f"report-{stamp}.{FORMAT_EXTENSIONS[fmt]}", fmt)

    def to_json_string(self, report: dict[str, Any], pretty: bool = True) -> str:
        """Convert report to JSON string.

        Args:
            report: Report dictionary.
            pretty: If True, format with indentation.

        Returns:
            JSON string.
        """
        if pretty:
            return json.dumps(report, indent=2, ensure_ascii=False, default=str)
        return json.dumps(report, ensure_ascii=False, default=str)

    def to_text(self, report: dict[str, Any]) -> str:
        """Human-readable summary with one line per step."""
        lines = []
        for failure in report.get("load_errors", []):
            lines.append(f"[LOAD ERROR] {failure['message']}")

        for scenario in report["scenarios"]:
            status = "PASS" if scenario["success"] else "FAIL"
            lines.append(f"[{status}] {scenario['name']} ({scenario['source']})")
            for step in scenario["steps"]:
                marker = {"passed": "PASS", "failed": "FAIL", "skipped": "SKIP"}[step["status"]]
                line = f"  [{marker}] {step['name']}"
                if step["status"] == "passed":
                    line += f" ({step['duration_ms']:.0f} ms)"
                elif step.get("skip_reason"):
                    line += f" ({step['skip_reason']})"
                lines.append(line)
                error = step.get("error")
                if error and step["status"] == "failed":
                    if step.get("mismatches") and error["kind"] == "assertion_failure":
                        for mismatch in step["mismatches"]:
                            lines.append(f"      - {mismatch['message']}")
                    else:
                        lines.append(f"      {error['kind']}: {error['message']}")

        lines.append("")
        lines.append(self.summary_message(report))
        return "\n".join(lines) + "\n"

    def summary_message(self, report: dict[str, Any]) -> str:
        """One-line verdict for the whole run."""
        summary = report["summary"]
        message = (
            f"{summary['passed']}/{summary['total']} scenarios passed "
            f"({summary['steps']['passed']} steps passed, "
            f"{summary['steps']['failed']} failed, "
            f"{summary['steps']['skipped']} skipped) in {summary['duration_ms']:.0f} ms"
        )
        if summary["load_errors"]:
            message += f"; {summary['load_errors']} files failed to load"
        return message

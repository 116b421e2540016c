"""Reporting module - run report rendering."""

from .json_reporter import REPORT_FORMATS, JsonReporter

__all__ = ["JsonReporter", "REPORT_FORMATS"]

"""Declarative API scenario runner."""

__version__ = "0.1.0"

"""Validators module - response assertions and event-stream matching."""

from .assertion_engine import (
    AssertionEngine,
    AssertionReport,
    AssertionResult,
    CapturedResponse,
    Mismatch,
    parse_body,
)
from .sse_validator import (
    FrameParser,
    LineSplitter,
    SseFrame,
    StreamOutcome,
    StreamValidator,
    match_frame,
    parse_frames,
)

__all__ = [
    "AssertionEngine",
    "AssertionReport",
    "AssertionResult",
    "CapturedResponse",
    "FrameParser",
    "LineSplitter",
    "Mismatch",
    "SseFrame",
    "StreamOutcome",
    "StreamValidator",
    "match_frame",
    "parse_body",
    "parse_frames",
]

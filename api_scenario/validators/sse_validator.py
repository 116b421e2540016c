"""Server-sent event stream validation.

The stream is read incrementally and split into frames as bytes arrive.
Each frame is compared with the first matcher that has not matched yet;
frames that do not match are skipped as noise. Consumption stops once the
stream is satisfied or carries a forbidden event, when the server closes it,
or when the wait bound elapses. A stream with forbidden event types is read
until it closes or the wait bound elapses.
"""

import asyncio
import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from ..errors import CaptureError, RequestError, SSETimeout
from ..json_path import PathNotFound, diff_values, has_path, resolve_path, values_equal
from ..scenario.schema import DEFAULT_SSE_EVENT, ExpectationKind, SseEventMatcher, SseExpectation
from ..transport.http_client import HttpResponse
from .assertion_engine import Mismatch

logger = logging.getLogger(__name__)

LINE_BREAK = re.compile(r"\r\n|\r|\n")
# Extra time given to the reader thread to notice the deadline itself before
# the awaiting side gives up on it.
CANCEL_GRACE = 1.0
# Socket read timeouts may fire marginally before the monotonic deadline.
DEADLINE_SLACK = 0.1
SSE_SAVE_PREFIX = "sse."


def _parse_json(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


@dataclass
class SseFrame:
    """A dispatched event."""
    event: str = DEFAULT_SSE_EVENT
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None

    @property
    def is_json(self) -> bool:
        return _parse_json(self.data)[0]

    @property
    def json(self) -> Any:
        """Parsed payload, or None when the payload is not JSON."""
        return _parse_json(self.data)[1]

    @property
    def value(self) -> Any:
        """Parsed payload when it is JSON, raw text otherwise."""
        is_json, parsed = _parse_json(self.data)
        return parsed if is_json else self.data

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"event": self.event, "data": self.data}
        if self.id is not None:
            data["id"] = self.id
        return data


class LineSplitter:
    """Splits streamed text on CRLF, LF or CR.

    A CR at the end of one chunk followed by an LF at the start of the next
    is a single line break.
    """

    def __init__(self):
        self._buffer = ""
        self._pending_cr = False

    def feed(self, chunk: str) -> list[str]:
        if self._pending_cr and chunk.startswith("\n"):
            chunk = chunk[1:]
        self._pending_cr = False
        if not chunk:
            return []
        text = self._buffer + chunk
        lines = LINE_BREAK.split(text)
        self._buffer = lines.pop()
        self._pending_cr = text.endswith("\r")
        return lines

    def flush(self) -> list[str]:
        """Return the unterminated trailing line, if any."""
        rest, self._buffer = self._buffer, ""
        return [rest] if rest else []


class FrameParser:
    """Builds frames from event-stream lines."""

    def __init__(self):
        self._reset()

    def _reset(self) -> None:
        self._event: Optional[str] = None
        self._data: list[str] = []
        self._id: Optional[str] = None
        self._retry: Optional[int] = None
        self._seen = False

    def feed_line(self, line: str) -> Optional[SseFrame]:
        """Process one line; returns a frame when a blank line dispatches one."""
        if line == "":
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
            self._seen = True
        elif name == "data":
            self._data.append(value)
            self._seen = True
        elif name == "id":
            if "\0" not in value:
                self._id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)
        return None

    def finish(self) -> Optional[SseFrame]:
        """Dispatch whatever is pending when the stream ends."""
        return self._dispatch()

    def _dispatch(self) -> Optional[SseFrame]:
        if not self._seen:
            self._reset()
            return None
        frame = SseFrame(
            event=self._event or DEFAULT_SSE_EVENT,
            data="\n".join(self._data),
            id=self._id,
            retry=self._retry,
        )
        self._reset()
        return frame


def parse_frames(text: str) -> list[SseFrame]:
    """Parse a complete event-stream body into frames."""
    splitter = LineSplitter()
    parser = FrameParser()
    frames = []
    for line in splitter.feed(text) + splitter.flush():
        frame = parser.feed_line(line)
        if frame is not None:
            frames.append(frame)
    frame = parser.finish()
    if frame is not None:
        frames.append(frame)
    return frames


def match_frame(matcher: SseEventMatcher, frame: SseFrame) -> bool:
    """Check one frame against one matcher.

    A string ``data`` must equal the payload. A mapping ``data`` maps JSON
    paths to expected values inside the parsed payload. ``data_eq`` compares
    the whole parsed payload, skipping its ``ignore_fields``.
    """
    if matcher.event is not None and frame.event != matcher.event:
        return False
    if matcher.data_contains is not None and matcher.data_contains not in frame.data:
        return False

    if isinstance(matcher.data, str):
        if frame.data != matcher.data:
            return False
    elif matcher.data or matcher.data_exists or matcher.data_eq is not None:
        is_json, payload = _parse_json(frame.data)
        if not is_json:
            return False
        for path, expected in (matcher.data or {}).items():
            try:
                actual = resolve_path(payload, path)
            except PathNotFound:
                return False
            if not values_equal(expected, actual):
                return False
        if not all(has_path(payload, path) for path in matcher.data_exists):
            return False
        if matcher.data_eq is not None and diff_values(
            matcher.data_eq.value, payload, matcher.data_eq.ignore_fields
        ):
            return False
    return True


@dataclass
class StreamOutcome:
    """Progress of one stream consumption.

    The reader thread mutates it under ``lock``; the awaiting side takes the
    same lock to stop the reader before reading the results.
    """
    matchers: list[SseEventMatcher] = field(default_factory=list)
    required: list[str] = field(default_factory=list)
    forbidden: list[str] = field(default_factory=list)
    frames: list[SseFrame] = field(default_factory=list)
    matched_frames: list[SseFrame] = field(default_factory=list)
    chunks: list[str] = field(default_factory=list)
    seen_events: set[str] = field(default_factory=set)
    wait: float = 0.0
    timed_out: bool = False
    ended: bool = False
    cancelled: bool = False
    error: Optional[str] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def for_expectation(cls, expectation: SseExpectation, wait: float = 0.0) -> "StreamOutcome":
        return cls(
            matchers=list(expectation.events),
            required=list(expectation.has_events),
            forbidden=list(expectation.has_no_events),
            wait=wait,
        )

    @property
    def next_index(self) -> int:
        return len(self.matched_frames)

    @property
    def complete(self) -> bool:
        """Every ordered matcher has matched."""
        return self.next_index >= len(self.matchers)

    @property
    def next_matcher(self) -> Optional[SseEventMatcher]:
        if self.complete:
            return None
        return self.matchers[self.next_index]

    @property
    def missing_events(self) -> list[str]:
        return [name for name in self.required if name not in self.seen_events]

    @property
    def forbidden_seen(self) -> list[str]:
        return [name for name in self.forbidden if name in self.seen_events]

    @property
    def satisfied(self) -> bool:
        """Ordered matchers and required event types are all accounted for."""
        return self.complete and not self.missing_events

    @property
    def done(self) -> bool:
        """Nothing further in the stream can change the verdict."""
        if self.forbidden_seen:
            return True
        return self.satisfied and not self.forbidden

    @property
    def expired(self) -> bool:
        """The wait bound elapsed before the stream was satisfied."""
        return self.timed_out and not self.satisfied and not self.forbidden_seen

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def accept(self, frame: SseFrame) -> bool:
        """Record a frame; returns True once reading can stop."""
        self.frames.append(frame)
        self.seen_events.add(frame.event)
        matcher = self.next_matcher
        if matcher is not None and match_frame(matcher, frame):
            logger.debug("SSE event[%d] matched %s", self.next_index, matcher.describe())
            self.matched_frames.append(frame)
        return self.done

    def grouped_value(self) -> dict[str, list[Any]]:
        """Payloads of every received frame, grouped by event name."""
        grouped: dict[str, list[Any]] = {}
        for frame in self.frames:
            grouped.setdefault(frame.event, []).append(frame.value)
        return grouped

    def mismatches(self) -> list[Mismatch]:
        """Mismatches of a stream that stopped before the wait bound.

        Unmatched matchers and missing event types of an expired stream are
        reported by ``timeout_error`` instead. Forbidden events are always
        reported.
        """
        mismatches = []
        if not self.timed_out:
            stopped = "stream ended" if self.ended else "stream stopped"
            matcher = self.next_matcher
            if matcher is not None:
                mismatches.append(Mismatch(
                    kind=ExpectationKind.SSE,
                    message=(
                        f"sse: {stopped} before event[{self.next_index}] {matcher.describe()} "
                        f"matched ({len(self.frames)} events received)"
                    ),
                    path=f"events[{self.next_index}]",
                    expected=matcher.describe(),
                    actual=stopped,
                ))
            for name in self.missing_events:
                mismatches.append(Mismatch(
                    kind=ExpectationKind.SSE,
                    message=f"sse: {stopped} without a {name!r} event",
                    path="has_events",
                    expected=name,
                    actual=sorted(self.seen_events),
                ))
        for name in self.forbidden_seen:
            mismatches.append(Mismatch(
                kind=ExpectationKind.SSE,
                message=f"sse: received forbidden event {name!r}",
                path="has_no_events",
                expected=f"no {name!r} events",
                actual=name,
            ))
        return mismatches

    def timeout_error(self, mismatches: Optional[list[Mismatch]] = None) -> SSETimeout:
        """SSETimeout naming what was still awaited when the wait ran out."""
        matcher = self.next_matcher
        if matcher is not None:
            return SSETimeout(self.next_index, matcher.describe(), self.wait, mismatches)
        return SSETimeout(
            len(self.matchers),
            f"has_events {self.missing_events!r}",
            self.wait,
            mismatches,
        )

    def collect_saves(self) -> dict[str, Any]:
        """Values named by matcher ``save`` clauses.

        Raises:
            CaptureError: If a save path is missing from its matched payload.
        """
        saved: dict[str, Any] = {}
        for matcher, frame in zip(self.matchers, self.matched_frames):
            for name, path in matcher.save.items():
                is_json, payload = _parse_json(frame.data)
                if not is_json:
                    if path:
                        raise CaptureError(name, path, "event data is not JSON")
                    payload = frame.data
                try:
                    saved[name] = resolve_path(payload, path)
                except PathNotFound as e:
                    raise CaptureError(name, path, e.reason) from e
        return saved


class StreamValidator:
    """Consumes an event stream against ordered matchers."""

    def consume(
        self,
        response: HttpResponse,
        outcome: StreamOutcome,
        deadline: float,
        cancel: Optional[threading.Event] = None,
    ) -> StreamOutcome:
        """Read frames until done, blocking the calling thread.

        Args:
            response: Open streaming response.
            outcome: Outcome to fill in; shared with the awaiting side.
            deadline: ``time.monotonic()`` value after which reading stops.
            cancel: Event that stops frame processing when set. It is
                checked under ``outcome.lock``.

        Returns:
            The same outcome.
        """
        if outcome.done:
            return outcome
        cancel = cancel or threading.Event()
        splitter = LineSplitter()
        parser = FrameParser()

        try:
            for chunk in response.iter_text():
                with outcome.lock:
                    if cancel.is_set():
                        outcome.cancelled = True
                        return outcome
                    outcome.chunks.append(chunk)
                    for line in splitter.feed(chunk):
                        frame = parser.feed_line(line)
                        if frame is not None and outcome.accept(frame):
                            return outcome
                        if time.monotonic() >= deadline:
                            outcome.timed_out = True
                            return outcome
                    if time.monotonic() >= deadline:
                        outcome.timed_out = True
                        return outcome

            with outcome.lock:
                if cancel.is_set():
                    outcome.cancelled = True
                    return outcome
                for line in splitter.flush():
                    frame = parser.feed_line(line)
                    if frame is not None and outcome.accept(frame):
                        return outcome
                frame = parser.finish()
                if frame is not None and outcome.accept(frame):
                    return outcome
                outcome.ended = True
        except requests.RequestException as e:
            with outcome.lock:
                # The read timeout equals the wait bound, so a timed out read
                # means the deadline has passed.
                if cancel.is_set():
                    outcome.cancelled = True
                elif time.monotonic() >= deadline - DEADLINE_SLACK or isinstance(e, requests.Timeout):
                    outcome.timed_out = True
                else:
                    outcome.error = str(e)
        return outcome

    async def validate(
        self,
        response: HttpResponse,
        expectation: SseExpectation,
        timeout: float,
    ) -> StreamOutcome:
        """Consume ``response`` in a worker thread and return the outcome.

        The response is closed when this returns, raises or is cancelled.
        A stream that runs out of time is not an exception here: check
        ``outcome.expired`` and raise ``outcome.timeout_error()`` once the
        other expectations of the step have been evaluated.

        Args:
            response: Open streaming response.
            expectation: Expanded SSE expectation.
            timeout: Step timeout; caps ``expectation.timeout``.

        Returns:
            StreamOutcome. Its ``mismatches()`` names what a stream that
            stopped early never delivered.

        Raises:
            RequestError: If the connection breaks mid-stream.
        """
        wait = wait_bound(expectation, timeout)
        outcome = StreamOutcome.for_expectation(expectation, wait)
        cancel = threading.Event()
        deadline = time.monotonic() + wait

        if not response.is_event_stream:
            logger.warning(
                "Expected an event stream from %s but got Content-Type %r",
                response.request.url,
                response.content_type,
            )

        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.consume, response, outcome, deadline, cancel),
                timeout=wait + CANCEL_GRACE,
            )
        except asyncio.TimeoutError:
            with outcome.lock:
                cancel.set()
                outcome.timed_out = True
        finally:
            with outcome.lock:
                cancel.set()
            response.close()

        logger.debug(
            "SSE stream from %s: %d events, %d/%d matched",
            response.request.url,
            len(outcome.frames),
            outcome.next_index,
            len(outcome.matchers),
        )
        if outcome.error is not None:
            raise RequestError(f"Event stream from {response.request.url} failed: {outcome.error}")
        return outcome


def wait_bound(expectation: SseExpectation, timeout: float) -> float:
    """``sse.timeout`` capped by the step timeout."""
    if expectation.timeout is None:
        return timeout
    return min(expectation.timeout, timeout)


def strip_sse_prefix(path: str) -> str:
    """Save paths on stream steps may be written as ``sse.<event>.<n>...``."""
    if path.startswith(SSE_SAVE_PREFIX):
        return path[len(SSE_SAVE_PREFIX):]
    return path


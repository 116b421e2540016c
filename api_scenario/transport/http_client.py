"""HTTP client for dispatching scenario requests.

Wraps a ``requests.Session``. Every response is opened in streaming mode so
the caller decides, after seeing the headers, whether to read the whole body
or hand the live stream to the SSE validator. The client never retries.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

import requests
from requests.structures import CaseInsensitiveDict

from ..errors import RequestError

logger = logging.getLogger(__name__)

EVENT_STREAM_TYPE = "text/event-stream"
# Close-delimited and length-delimited streams block until a full chunk
# arrives, so they are read in small pieces. Chunked streams are read one
# transfer chunk at a time.
STREAM_CHUNK_SIZE = 1


@dataclass
class RequestInfo:
    """A fully expanded request, ready to send."""
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    query: dict[str, str] = field(default_factory=dict)
    body: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "method": self.method,
            "url": self.url,
            "headers": dict(self.headers),
        }
        if self.query:
            data["query"] = dict(self.query)
        if self.body is not None:
            data["body"] = self.body
        return data


def build_url(base_url: Optional[str], url: str) -> str:
    """Prefix ``base_url`` onto a relative ``url``.

    Absolute URLs (containing ``://``) are returned unchanged.
    """
    if "://" in url or not base_url:
        return url
    if not url:
        return base_url
    return f"{base_url.rstrip('/')}/{url.lstrip('/')}"


def merge_headers(defaults: dict[str, str], overrides: dict[str, str]) -> dict[str, str]:
    """Merge header maps; override names win case-insensitively."""
    merged: CaseInsensitiveDict = CaseInsensitiveDict(defaults)
    merged.update(overrides)
    return dict(merged.items())


class HttpResponse:
    """Response whose body has not been read yet.

    Use ``read_text()`` for a one-shot read or ``iter_text()`` to consume a
    stream. ``close()`` releases the connection and is safe to call twice.
    """

    def __init__(self, raw: requests.Response, request: RequestInfo):
        self._raw = raw
        self.request = request
        self.status = raw.status_code
        self.headers: CaseInsensitiveDict = CaseInsensitiveDict(raw.headers)
        self._closed = False
        # Event streams are always UTF-8. Other bodies are UTF-8 unless a
        # charset is declared; requests would fall back to latin-1 for text/*.
        if self.is_event_stream or "charset=" not in self.content_type.lower():
            self._raw.encoding = "utf-8"

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "")

    @property
    def is_event_stream(self) -> bool:
        return EVENT_STREAM_TYPE in self.content_type.lower()

    @property
    def is_chunked(self) -> bool:
        return "chunked" in self.headers.get("Transfer-Encoding", "").lower()

    @property
    def closed(self) -> bool:
        return self._closed

    def read_text(self) -> str:
        """Read and decode the full body, then close the response.

        Raises:
            RequestError: If the connection breaks while reading.
        """
        try:
            return self._raw.text
        except requests.RequestException as e:
            raise RequestError(f"Failed to read response body from {self.request.url}: {e}") from e
        finally:
            self.close()

    def iter_text(self) -> Iterator[str]:
        """Yield decoded body text as it arrives."""
        chunk_size = None if self.is_chunked else STREAM_CHUNK_SIZE
        yield from self._raw.iter_content(chunk_size=chunk_size, decode_unicode=True)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._raw.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


class HttpClient:
    """HTTP transport for scenario steps."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        default_headers: Optional[dict[str, str]] = None,
    ):
        """Initialize HTTP client.

        Args:
            session: Session to send requests with. A new one is created
                (and owned) when omitted.
            default_headers: Headers sent with every request unless the
                request sets them itself.
        """
        self._owns_session = session is None
        self._session = session or requests.Session()
        if default_headers:
            self._session.headers.update(default_headers)

    def send(
        self,
        request: RequestInfo,
        timeout: float,
        read_timeout: Optional[float] = None,
    ) -> HttpResponse:
        """Send a request and return once the response headers arrive.

        Args:
            request: Expanded request.
            timeout: Connect timeout, and read timeout unless overridden.
            read_timeout: Maximum silence between received bytes.

        Returns:
            HttpResponse with the body still unread.

        Raises:
            RequestError: On connection errors, timeouts or invalid URLs.
        """
        kwargs: dict[str, Any] = {
            "headers": request.headers,
            "params": request.query or None,
            "timeout": (timeout, read_timeout if read_timeout is not None else timeout),
            "stream": True,
        }
        if request.body is not None:
            if isinstance(request.body, str):
                kwargs["data"] = request.body.encode("utf-8")
            else:
                kwargs["json"] = request.body

        logger.debug("Sending %s %s", request.method, request.url)
        start = time.perf_counter()
        try:
            raw = self._session.request(request.method, request.url, **kwargs)
        except requests.Timeout as e:
            raise RequestError(f"{request.method} {request.url} timed out after {timeout:g}s: {e}") from e
        except requests.ConnectionError as e:
            raise RequestError(f"Connection failed for {request.method} {request.url}: {e}") from e
        except requests.RequestException as e:
            raise RequestError(f"{request.method} {request.url} failed: {e}") from e
        elapsed_ms = (time.perf_counter() - start) * 1000

        logger.debug("Received status %s from %s in %.0f ms", raw.status_code, request.url, elapsed_ms)
        return HttpResponse(raw, request)

    def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session:
            self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

"""Transport module - HTTP communication."""

from .http_client import (
    HttpClient,
    HttpResponse,
    RequestInfo,
    build_url,
    merge_headers,
)

__all__ = [
    "HttpClient",
    "HttpResponse",
    "RequestInfo",
    "build_url",
    "merge_headers",
]

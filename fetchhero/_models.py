from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ._headers import Headers, normalize_headers

__all__ = (
    "NormalizedRequest",
    "PolicyResponse",
    "ResponseSnapshot",
    "BypassDescriptor",
    "CacheEntry",
    "snapshot_response",
    "policy_response",
    "rehydrate_response",
    "CACHE_STATUS_HEADER",
)

CACHE_STATUS_HEADER = "x-fh-cache-status"

# The stored body is already decoded, so the framing headers of the original
# response no longer describe it.
BODY_FRAMING_HEADERS = ("content-encoding", "content-length", "transfer-encoding")


@dataclass
class NormalizedRequest:
    method: str
    url: str
    headers: Headers = field(default_factory=Headers)

    @property
    def is_cacheable(self) -> bool:
        """Only GET and HEAD are eligible for the bypass shortcut."""
        return self.method in ("GET", "HEAD")


@dataclass
class PolicyResponse:
    status: int
    headers: Headers = field(default_factory=Headers)


@dataclass
class ResponseSnapshot:
    url: str
    status: int
    status_text: str
    headers: Headers
    body: bytes


@dataclass
class BypassDescriptor:
    ttl_ms: float
    stored_at_ms: float

    def is_active(self, now_ms: float) -> bool:
        return now_ms < self.stored_at_ms + self.ttl_ms


@dataclass
class CacheEntry:
    policy: Dict[str, Any]
    response: ResponseSnapshot
    bypass: Optional[BypassDescriptor] = None


def _response_url(response: httpx.Response, fallback: str) -> str:
    try:
        return str(response.url)
    except RuntimeError:
        # responses built by hand have no request attached
        return fallback


def policy_response(response: httpx.Response) -> PolicyResponse:
    return PolicyResponse(status=response.status_code, headers=normalize_headers(response.headers))


async def snapshot_response(response: httpx.Response, fallback_url: str) -> ResponseSnapshot:
    """
    Capture a response for storage.

    The body is read through `aread`, which keeps it available on the
    original response, so the caller can still consume it.
    """
    body = await response.aread()
    return ResponseSnapshot(
        url=_response_url(response, fallback_url),
        status=response.status_code,
        status_text=response.reason_phrase,
        headers=normalize_headers(response.headers),
        body=body,
    )


def rehydrate_response(
    snapshot: ResponseSnapshot,
    headers: Headers,
    request: NormalizedRequest,
) -> httpx.Response:
    """Build a fresh `httpx.Response` from a stored snapshot and policy headers."""
    response_headers = [
        (key, value) for key, value in headers.multi_items() if key not in BODY_FRAMING_HEADERS
    ]
    extensions = {}
    if snapshot.status_text:
        extensions["reason_phrase"] = snapshot.status_text.encode("ascii", errors="ignore")
    return httpx.Response(
        status_code=snapshot.status,
        headers=response_headers,
        content=snapshot.body,
        extensions=extensions,
        request=httpx.Request(request.method, snapshot.url or request.url),
    )

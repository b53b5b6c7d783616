from __future__ import annotations

import typing as tp
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from typing_extensions import assert_never

from ._exceptions import InvalidInputError
from ._headers import Headers, HeaderTypes, normalize_headers
from ._models import NormalizedRequest

if tp.TYPE_CHECKING:  # pragma: no cover
    from ._config import RequestOptions

__all__ = (
    "RequestInit",
    "UrlInput",
    "RequestObjectInput",
    "CallShape",
    "resolve_call_shape",
    "normalize_url",
    "normalize_request",
    "build_origin_request",
    "origin_headers",
    "build_cache_key",
)


@dataclass
class RequestInit:
    """
    Per-call request settings, the second half of a `fetch(input, init)` call.

    `fh` carries per-call overrides of the caching and retrying options.
    """

    method: tp.Optional[str] = None
    headers: tp.Optional[HeaderTypes] = None
    content: tp.Optional[bytes] = None
    fh: tp.Optional["RequestOptions"] = None


@dataclass(frozen=True)
class UrlInput:
    url: str


@dataclass(frozen=True)
class RequestObjectInput:
    source: tp.Any
    url: str
    method: tp.Optional[str] = None
    headers: tp.Optional[HeaderTypes] = None
    content: tp.Optional[bytes] = None


CallShape = tp.Union[UrlInput, RequestObjectInput]

# recomputed by httpx for whatever body is sent
REQUEST_FRAMING_HEADERS = ("content-length", "transfer-encoding")


def _member(source: tp.Any, name: str) -> tp.Any:
    if isinstance(source, tp.Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _without_auto_host(request: httpx.Request) -> tp.List[tp.Tuple[str, str]]:
    # httpx adds a Host header to every request, it carries no more than the url does
    netloc = request.url.netloc.decode("ascii")
    return [(key, value) for key, value in request.headers.multi_items() if not (key == "host" and value == netloc)]


def resolve_call_shape(input: tp.Any) -> CallShape:
    """
    Classify the first argument of a call.

    Strings and `httpx.URL` are bare URLs. `httpx.Request` objects, mappings
    and arbitrary objects carrying a `url` or `href` member are request
    objects. Anything else has no URL and is rejected.
    """
    if isinstance(input, (str, httpx.URL)):
        return UrlInput(url=str(input))

    if isinstance(input, httpx.Request):
        return RequestObjectInput(
            source=input,
            url=str(input.url),
            method=input.method,
            headers=_without_auto_host(input),
            content=input.content,
        )

    url = _member(input, "url") or _member(input, "href")
    if url is None:
        raise InvalidInputError(f"Invalid input, could not derive a URL from {type(input).__name__!r}")

    return RequestObjectInput(
        source=input,
        url=str(url),
        method=_member(input, "method"),
        headers=_member(input, "headers"),
        content=_member(input, "content"),
    )


def normalize_url(url: str) -> str:
    """
    Canonicalize an absolute URL.

    The scheme and host are lower-cased, the fragment is dropped, query
    parameters are sorted by name (repeated names keep their relative order)
    and trailing slashes are removed from the path. Applying the function to
    its own output returns the same string.
    """
    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise InvalidInputError(f"Invalid input, could not parse url {url!r}") from exc

    if not parts.scheme or not parts.netloc:
        raise InvalidInputError(f"Invalid input, {url!r} is not an absolute url")

    userinfo, at, hostport = parts.netloc.rpartition("@")
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True), key=lambda item: item[0]))
    path = parts.path.rstrip("/") or "/"

    return urlunsplit((parts.scheme.lower(), f"{userinfo}{at}{hostport.lower()}", path, query, ""))


def normalize_request(shape: CallShape, init: tp.Optional[RequestInit] = None) -> NormalizedRequest:
    """
    Build the canonical request descriptor for a call.

    Method and headers given in `init` win over those of a request object,
    which win over the defaults (`GET`, no headers).
    """
    init = init or RequestInit()

    if isinstance(shape, UrlInput):
        method = init.method or "GET"
        headers = init.headers
    elif isinstance(shape, RequestObjectInput):
        method = init.method or shape.method or "GET"
        headers = init.headers if init.headers is not None else shape.headers
    else:
        assert_never(shape)

    return NormalizedRequest(
        method=method.upper(),
        url=normalize_url(shape.url),
        headers=normalize_headers(headers),
    )


def build_origin_request(
    shape: CallShape,
    init: tp.Optional[RequestInit],
    request: NormalizedRequest,
) -> httpx.Request:
    """
    Build the request handed to the origin for a regular (non-conditional) call.

    The caller's own URL is used rather than the canonical one. An
    `httpx.Request` passed without overrides goes through untouched.
    """
    init = init or RequestInit()
    overridden = init.method is not None or init.headers is not None or init.content is not None

    if not overridden and isinstance(shape, RequestObjectInput) and isinstance(shape.source, httpx.Request):
        return shape.source

    content = init.content
    if content is None and isinstance(shape, RequestObjectInput):
        content = shape.content

    return httpx.Request(
        request.method,
        shape.url,
        headers=origin_headers(request.headers),
        content=content,
    )


def origin_headers(headers: Headers) -> tp.List[tp.Tuple[str, str]]:
    return [(key, value) for key, value in headers.multi_items() if key not in REQUEST_FRAMING_HEADERS]


def build_cache_key(request: NormalizedRequest, namespace: tp.Optional[str] = None) -> str:
    request_part = f"{request.method}:{request.url}"

    if namespace:
        return f"{namespace}:{request_part}"

    return request_part

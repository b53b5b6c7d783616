from __future__ import annotations

from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    Union,
)

from ._utils import HEADERS_ENCODING

"""
Header helpers: a case-insensitive multimap, normalisation of the header
encodings callers hand us, and a lenient Cache-Control parser.
"""

__all__ = (
    "Headers",
    "HeaderTypes",
    "CacheControl",
    "Vary",
    "normalize_headers",
    "parse_cache_control",
    "format_cache_control",
)

HeaderValue = Union[str, bytes]
HeaderTypes = Union[
    "Headers",
    Mapping[str, Union[HeaderValue, Iterable[HeaderValue]]],
    Iterable[Tuple[HeaderValue, HeaderValue]],
]


def _decode(value: HeaderValue) -> str:
    if isinstance(value, bytes):
        return value.decode(HEADERS_ENCODING)
    return str(value)


class Headers(MutableMapping[str, str]):
    """
    Header multimap keyed by lower-cased names.

    Every name maps to an ordered list of values. Item access joins the values
    with ", ", `get_list` returns them untouched.
    """

    def __init__(self, headers: Optional[Mapping[str, Union[str, List[str]]]] = None) -> None:
        self._headers: Dict[str, List[str]] = {}
        for key, value in (headers or {}).items():
            self._headers[key.lower()] = [value] if isinstance(value, str) else list(value)

    def get_list(self, key: str) -> Optional[List[str]]:
        return self._headers.get(key.lower(), None)

    def add(self, key: str, value: str) -> None:
        self._headers.setdefault(key.lower(), []).append(value)

    def multi_items(self) -> List[Tuple[str, str]]:
        return [(key, value) for key, values in self._headers.items() for value in values]

    def copy(self) -> "Headers":
        return Headers(self._headers)

    def to_dict(self) -> Dict[str, List[str]]:
        return {key: list(values) for key, values in self._headers.items()}

    def __getitem__(self, key: str) -> str:
        return ", ".join(self._headers[key.lower()])

    def __setitem__(self, key: str, value: str) -> None:
        self._headers[key.lower()] = [value]

    def __delitem__(self, key: str) -> None:
        del self._headers[key.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._headers!r})"

    def __eq__(self, other_headers: Any) -> bool:
        return isinstance(other_headers, Headers) and self._headers == other_headers._headers


def normalize_headers(headers: Optional[HeaderTypes]) -> Headers:
    """
    Build a `Headers` multimap from any of the supported encodings.

    Accepted encodings are a mapping (values may be a single string or a list
    of strings), an ordered sequence of `(name, value)` pairs, and header
    collection objects exposing `multi_items()` such as `httpx.Headers`.
    Repeated names accumulate, in order, instead of overwriting each other.
    """
    result = Headers()

    if headers is None:
        return result

    if hasattr(headers, "multi_items"):
        pairs: Iterable[Tuple[HeaderValue, HeaderValue]] = headers.multi_items()
    elif isinstance(headers, Mapping):
        pairs = []
        for key, value in headers.items():
            if isinstance(value, (str, bytes)):
                pairs.append((key, value))
            else:
                pairs.extend((key, item) for item in value)
    else:
        pairs = headers

    for key, value in pairs:
        result.add(_decode(key), _decode(value))
    return result


class Vary:
    def __init__(self, values: List[str]) -> None:
        self.values = values

    @classmethod
    def from_value(cls, vary_value: str) -> "Vary":
        values = []

        for field_name in vary_value.split(","):
            field_name = field_name.strip().lower()
            if field_name:
                values.append(field_name)
        return Vary(values)


def is_token(c: str) -> bool:
    """
    Check if character is valid in an HTTP token (RFC 7230 Section 3.2.6).

    Token characters are US-ASCII, not control characters and not separators.
    """
    if not c:
        return False
    b = ord(c)
    if b > 127 or b <= 31 or b == 127:
        return False
    return c not in '()<>@,;:\\"/[]?={} \t'


def http_unquote(raw: str) -> Tuple[int, str]:
    """
    Unquote an HTTP quoted-string.

    The raw string must begin with a double quote. Returns the number of
    characters consumed and the unquoted value, or `(-1, "")` when the string
    is not terminated.

        >>> http_unquote('"max-age" rest')
        (9, 'max-age')
    """
    if not raw or raw[0] != '"':
        return -1, ""

    buf: List[str] = []
    i = 1

    while i < len(raw):
        char = raw[i]

        if char == '"':
            return i + 1, "".join(buf)

        if char == "\\":
            if i + 1 >= len(raw):
                return -1, ""
            buf.append(raw[i + 1])
            i += 2
        else:
            buf.append(char)
            i += 1

    return -1, ""


class CacheControl:
    """
    Cache-Control directives for both requests and responses.

    Supported directives come from RFC 9111 (RFC 7234), RFC 8246 (immutable)
    and RFC 5861 (stale-while-revalidate, stale-if-error). Unset numeric
    directives are None. `no_cache` and `private` are either a bool or the
    list of field names they were qualified with. Unrecognised directives are
    kept verbatim in `extensions`.
    """

    def __init__(self) -> None:
        self.max_age: Optional[int] = None
        self.no_store: bool = False

        # Request-specific
        self.max_stale: Optional[int] = None
        self.min_fresh: Optional[int] = None

        # Response-specific
        self.must_revalidate: bool = False
        self.public: bool = False
        self.proxy_revalidate: bool = False
        self.s_maxage: Optional[int] = None
        self.immutable: bool = False

        self.no_cache: Union[bool, List[str]] = False
        self.private: Union[bool, List[str]] = False

        self.stale_if_error: Optional[int] = None
        self.stale_while_revalidate: Optional[int] = None

        self.extensions: List[str] = []

    def has_extension(self, name: str) -> bool:
        return any(extension.split("=", 1)[0] == name for extension in self.extensions)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {format_cache_control(self)}>"


MAX_DELTA_SECONDS = 2147483647


def parse_int_value(value: str) -> Optional[int]:
    try:
        val = int(value)
    except (ValueError, OverflowError):
        return None
    return min(val, MAX_DELTA_SECONDS) if val >= 0 else None


def parse_field_names(value: str) -> List[str]:
    return [field.strip().lower() for field in value.split(",") if field.strip()]


def parse(value: str) -> CacheControl:
    """
    Parse a Cache-Control header value character by character.

    Malformed directives are skipped rather than rejected, so a broken header
    from an origin never fails the request that carried it.
    """
    cc = CacheControl()

    i = 0
    length = len(value)

    while i < length:
        while i < length and value[i] in (" ", "\t", ","):
            i += 1

        if i >= length:
            break

        j = i
        while j < length and is_token(value[j]):
            j += 1

        if j == i:
            i += 1
            continue

        token = value[i:j].lower()
        token_has_fields = token in ("no-cache", "private")

        while j < length and value[j] in (" ", "\t"):
            j += 1

        if j < length and value[j] == "=":
            k = j + 1

            while k < length and value[k] in (" ", "\t"):
                k += 1

            if k >= length:
                i = k
                continue

            if value[k] == '"':
                eaten, result = http_unquote(value[k:])
                if eaten == -1:
                    i = k + 1
                    continue

                i = k + eaten
                handle_directive_with_value(cc, token, result)
            else:
                z = k
                while z < length:
                    if value[z] in (" ", "\t") or (value[z] == "," and not token_has_fields):
                        break
                    z += 1

                result = value[k:z].rstrip(",")
                i = z
                handle_directive_with_value(cc, token, result)
        else:
            handle_directive_without_value(cc, token)
            i = j

    return cc


def handle_directive_with_value(cc: CacheControl, token: str, value: str) -> None:
    if token == "max-age":
        cc.max_age = parse_int_value(value)
    elif token == "s-maxage":
        cc.s_maxage = parse_int_value(value)
    elif token == "max-stale":
        cc.max_stale = parse_int_value(value)
    elif token == "min-fresh":
        cc.min_fresh = parse_int_value(value)
    elif token == "stale-if-error":
        cc.stale_if_error = parse_int_value(value)
    elif token == "stale-while-revalidate":
        cc.stale_while_revalidate = parse_int_value(value)
    elif token == "no-cache":
        cc.no_cache = parse_field_names(value)
    elif token == "private":
        cc.private = parse_field_names(value)
    else:
        cc.extensions.append(f"{token}={value}")


def handle_directive_without_value(cc: CacheControl, token: str) -> None:
    if token == "max-stale":
        # any staleness is acceptable
        cc.max_stale = MAX_DELTA_SECONDS
    elif token == "no-cache":
        cc.no_cache = True
    elif token == "private":
        cc.private = True
    elif token == "no-store":
        cc.no_store = True
    elif token == "must-revalidate":
        cc.must_revalidate = True
    elif token == "public":
        cc.public = True
    elif token == "proxy-revalidate":
        cc.proxy_revalidate = True
    elif token == "immutable":
        cc.immutable = True
    else:
        cc.extensions.append(token)


def parse_cache_control(value: Optional[str]) -> CacheControl:
    """
    Parse a Cache-Control header from either a request or a response.

        >>> cc = parse_cache_control("public, max-age=60, stale-while-revalidate=30")
        >>> cc.public, cc.max_age, cc.stale_while_revalidate
        (True, 60, 30)
        >>> parse_cache_control('private="set-cookie, authorization"').private
        ['set-cookie', 'authorization']
    """
    if not value:
        return CacheControl()
    return parse(value)


_NUMERIC_DIRECTIVES = (
    ("max-age", "max_age"),
    ("s-maxage", "s_maxage"),
    ("max-stale", "max_stale"),
    ("min-fresh", "min_fresh"),
    ("stale-while-revalidate", "stale_while_revalidate"),
    ("stale-if-error", "stale_if_error"),
)

_BOOLEAN_DIRECTIVES = (
    ("no-store", "no_store"),
    ("must-revalidate", "must_revalidate"),
    ("public", "public"),
    ("proxy-revalidate", "proxy_revalidate"),
    ("immutable", "immutable"),
)


def format_cache_control(cc: CacheControl) -> str:
    """Serialise directives back into a Cache-Control header value."""
    directives: List[str] = []

    for name, attribute in (("no-cache", "no_cache"), ("private", "private")):
        value = getattr(cc, attribute)
        if value is True:
            directives.append(name)
        elif value:
            directives.append(f'{name}="{", ".join(value)}"')

    for name, attribute in _BOOLEAN_DIRECTIVES:
        if getattr(cc, attribute):
            directives.append(name)

    for name, attribute in _NUMERIC_DIRECTIVES:
        value = getattr(cc, attribute)
        if value is not None:
            directives.append(f"{name}={value}")

    directives.extend(cc.extensions)
    return ", ".join(directives)

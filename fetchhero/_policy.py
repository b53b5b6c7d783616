from __future__ import annotations

import logging
import re
import typing as tp
from dataclasses import dataclass

from ._headers import Headers, Vary, format_cache_control, parse_cache_control
from ._models import NormalizedRequest, PolicyResponse
from ._utils import BaseClock, Clock, format_http_date, get_safe_url, parse_date

logger = logging.getLogger("fetchhero.policy")

__all__ = (
    "CachePolicy",
    "CachePolicyOptions",
    "PolicyEvaluator",
    "RevalidatedPolicy",
    "UNDERSTOOD_STATUSES",
    "CACHEABLE_BY_DEFAULT",
)

UNDERSTOOD_STATUSES = frozenset({200, 203, 204, 206, 300, 301, 302, 303, 307, 308, 404, 405, 410, 414, 501})
CACHEABLE_BY_DEFAULT = frozenset({200, 203, 204, 300, 301, 404, 405, 410, 414, 501})
ERROR_STATUSES = frozenset({500, 502, 503, 504})

HOP_BY_HOP_HEADERS = frozenset(
    {
        "date",
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
EXCLUDED_FROM_REVALIDATION_UPDATE = frozenset(
    {"content-length", "content-encoding", "transfer-encoding", "content-range"}
)

ONE_DAY = 86_400
SERIALIZATION_VERSION = 1

_WEAK_ETAG = re.compile(r"^\s*W/")
_INFORMATIONAL_WARNING = re.compile(r"^\s*1[0-9][0-9]")


@dataclass
class CachePolicyOptions:
    """
    Options of the default cache policy.

    :param shared: Behave as a shared (proxy) cache: honour `private`,
        `s-maxage` and `proxy-revalidate`, and refuse authenticated responses
        unless explicitly allowed.
    :param cache_heuristic: Fraction of the time since `Last-Modified` used as
        freshness lifetime when the response has no explicit expiration.
    :param immutable_min_time_to_live: Minimum freshness, in milliseconds, of
        responses marked `immutable`.
    :param ignore_cargo_cult: Ignore the `pre-check, post-check` combination
        some servers send together with `no-cache, no-store`.
    """

    shared: bool = True
    cache_heuristic: float = 0.1
    immutable_min_time_to_live: float = 24 * 3600 * 1000
    ignore_cargo_cult: bool = False


@dataclass
class RevalidatedPolicy:
    policy: "CachePolicy"
    modified: bool
    matches: bool


class PolicyEvaluator(tp.Protocol):
    def __init__(
        self,
        request: NormalizedRequest,
        response: PolicyResponse,
        options: tp.Optional[CachePolicyOptions] = None,
        clock: tp.Optional[BaseClock] = None,
    ) -> None: ...

    def storable(self) -> bool: ...

    def satisfies_without_revalidation(self, request: NormalizedRequest) -> bool: ...

    def time_to_live(self) -> float: ...

    def response_headers(self) -> Headers: ...

    def revalidation_headers(self, request: NormalizedRequest) -> Headers: ...

    def revalidated_policy(self, request: NormalizedRequest, response: PolicyResponse) -> tp.Any: ...

    def to_object(self) -> tp.Dict[str, tp.Any]: ...

    @classmethod
    def from_object(cls, obj: tp.Dict[str, tp.Any], clock: tp.Optional[BaseClock] = None) -> tp.Any: ...


def _strip_weak(etag: str) -> str:
    return _WEAK_ETAG.sub("", etag)


def _copy_without_hop_by_hop_headers(in_headers: Headers) -> Headers:
    headers = Headers({name: values for name, values in in_headers.to_dict().items() if name not in HOP_BY_HOP_HEADERS})

    # 9.1. Connection
    if "connection" in in_headers:
        for name in in_headers["connection"].split(","):
            headers.pop(name.strip().lower(), None)

    if "warning" in headers:
        warnings = [value for value in headers["warning"].split(",") if not _INFORMATIONAL_WARNING.match(value)]
        if warnings:
            headers["warning"] = ",".join(warnings).strip()
        else:
            del headers["warning"]

    return headers


class CachePolicy:
    """
    Freshness and storability rules of RFC 7234 and RFC 5861 for one stored response.

    Times are tracked in seconds internally; `time_to_live` reports
    milliseconds so it can be handed straight to a store.
    """

    def __init__(
        self,
        request: NormalizedRequest,
        response: PolicyResponse,
        options: tp.Optional[CachePolicyOptions] = None,
        clock: tp.Optional[BaseClock] = None,
    ) -> None:
        self._options = options or CachePolicyOptions()
        self._clock = clock or Clock()
        self._response_time = self._clock.now()
        self._status = response.status
        self._res_headers = response.headers.copy()
        self._method = request.method
        self._url = request.url
        self._host = request.headers.get("host")
        self._no_authorization = "authorization" not in request.headers
        # request headers are only needed to evaluate `Vary`
        self._req_headers = request.headers.copy() if "vary" in response.headers else None
        self._reqcc_value = request.headers.get("cache-control")

        rescc = parse_cache_control(self._res_headers.get("cache-control"))
        if self._options.ignore_cargo_cult and rescc.has_extension("pre-check") and rescc.has_extension("post-check"):
            logger.debug(
                (
                    f"Ignoring the pre-check/post-check cache directives of the resource located at "
                    f"{get_safe_url(self._url)}."
                )
            )
            rescc.extensions = [
                extension
                for extension in rescc.extensions
                if extension.split("=", 1)[0] not in ("pre-check", "post-check")
            ]
            rescc.no_cache = False
            rescc.no_store = False
            rescc.must_revalidate = False
            self._res_headers["cache-control"] = format_cache_control(rescc)
            self._res_headers.pop("expires", None)
            self._res_headers.pop("pragma", None)

        self._parse_directives()

    def _parse_directives(self) -> None:
        self._rescc = parse_cache_control(self._res_headers.get("cache-control"))
        self._reqcc = parse_cache_control(self._reqcc_value)

        # RFC 7234 5.4: Pragma stands in for Cache-Control: no-cache when the latter is absent
        if "cache-control" not in self._res_headers and "no-cache" in self._res_headers.get("pragma", ""):
            self._rescc.no_cache = True

    def now(self) -> float:
        return self._clock.now()

    def storable(self) -> bool:
        """
        Determines whether the response may be stored at all.

        Only GET and HEAD responses are ever storable.
        `https://www.rfc-editor.org/rfc/rfc7234#section-3` lists the rules.
        """
        if self._reqcc.no_store:
            reason = "the request contains the no-store directive"
        elif self._method not in ("GET", "HEAD"):
            reason = f"the request method ({self._method}) is not cacheable"
        elif self._status not in UNDERSTOOD_STATUSES:
            reason = f"its status code ({self._status}) is not understood by the cache"
        elif self._rescc.no_store:
            reason = "the response contains the no-store directive"
        elif self._options.shared and self._rescc.private:
            reason = "the response contains the private directive and the cache is shared"
        elif self._options.shared and not self._no_authorization and not self._allows_storing_authenticated():
            reason = "the request is authenticated and the cache is shared"
        elif not (
            "expires" in self._res_headers
            or self._rescc.max_age is not None
            or (self._options.shared and self._rescc.s_maxage is not None)
            or self._rescc.public
            or self._status in CACHEABLE_BY_DEFAULT
        ):
            reason = "it does not contain any explicit or heuristic freshness information"
        else:
            logger.debug(f"Considering the resource located at {get_safe_url(self._url)} as storable.")
            return True

        logger.debug(f"Considering the resource located at {get_safe_url(self._url)} as not storable since {reason}.")
        return False

    def _has_explicit_expiration(self) -> bool:
        return bool(
            (self._options.shared and self._rescc.s_maxage is not None)
            or self._rescc.max_age is not None
            or "expires" in self._res_headers
        )

    def _allows_storing_authenticated(self) -> bool:
        # RFC 7234 3.2: authenticated responses need an explicit permission
        return bool(self._rescc.must_revalidate or self._rescc.public or self._rescc.s_maxage is not None)

    def date(self) -> float:
        server_date = parse_date(self._res_headers.get("date"))
        if server_date is not None:
            return server_date
        return self._response_time

    def _age_value(self) -> float:
        try:
            return max(0.0, float(self._res_headers.get("age", 0)))
        except ValueError:
            return 0.0

    def age(self) -> float:
        """Current age of the response in seconds."""
        resident_time = self.now() - self._response_time
        return self._age_value() + resident_time

    def max_age(self) -> float:
        """
        Freshness lifetime of the response in seconds.

        For an active cache this lifetime is authoritative, the `Age` of the
        response is subtracted elsewhere.
        """
        if not self.storable() or self._rescc.no_cache:
            return 0

        # Shared responses with cookies are cacheable according to the RFC, but unwise to store by default.
        if self._options.shared and "set-cookie" in self._res_headers and not self._rescc.public:
            if not self._rescc.immutable:
                return 0

        if self._res_headers.get("vary", "").strip() == "*":
            return 0

        if self._options.shared:
            if self._rescc.proxy_revalidate:
                return 0
            # a shared cache recipient MUST ignore Expires when s-maxage is present
            if self._rescc.s_maxage is not None:
                return self._rescc.s_maxage

        if self._rescc.max_age is not None:
            return self._rescc.max_age

        default_min_ttl = self._options.immutable_min_time_to_live / 1000 if self._rescc.immutable else 0

        server_date = self.date()
        if "expires" in self._res_headers:
            expires = parse_date(self._res_headers["expires"])
            # invalid dates, notably "0", mean "already expired"
            if expires is None or expires < server_date:
                return 0
            return max(default_min_ttl, expires - server_date)

        last_modified = parse_date(self._res_headers.get("last-modified"))
        if last_modified is not None and server_date > last_modified:
            return max(default_min_ttl, (server_date - last_modified) * self._options.cache_heuristic)

        return default_min_ttl

    def time_to_live(self) -> float:
        """
        Milliseconds the entry is worth keeping, counting the RFC 5861 stale windows.
        """
        age = self.max_age() - self.age()
        stale_if_error_age = age + (self._rescc.stale_if_error or 0)
        stale_while_revalidate_age = age + (self._rescc.stale_while_revalidate or 0)
        return round(max(0, age, stale_if_error_age, stale_while_revalidate_age) * 1000)

    def stale(self) -> bool:
        return self.max_age() <= self.age()

    def _use_stale_if_error(self) -> bool:
        return self.max_age() + (self._rescc.stale_if_error or 0) > self.age()

    def satisfies_without_revalidation(self, request: NormalizedRequest) -> bool:
        """
        Specifies whether the stored response can be served for `request` as is.

        This mirrors RFC 7234 section 4, "Constructing Responses from Caches".
        """
        safe_url = get_safe_url(request.url)
        request_cc = parse_cache_control(request.headers.get("cache-control"))

        if request_cc.no_cache or "no-cache" in request.headers.get("pragma", ""):
            logger.debug(
                f"Considering the resource located at {safe_url} as needing revalidation "
                "since the request contains the no-cache directive."
            )
            return False

        if request_cc.max_age is not None and self.age() > request_cc.max_age:
            logger.debug(
                f"Considering the resource located at {safe_url} as needing revalidation "
                "since its age exceeds the max-age directive of the request."
            )
            return False

        if request_cc.min_fresh is not None and self.time_to_live() < 1000 * request_cc.min_fresh:
            logger.debug(
                f"Considering the resource located at {safe_url} as needing revalidation "
                "since the time left for freshness is less than the min-fresh directive."
            )
            return False

        if self.stale():
            allows_stale = (
                request_cc.max_stale is not None
                and not self._rescc.must_revalidate
                and request_cc.max_stale > self.age() - self.max_age()
            )
            if not allows_stale:
                logger.debug(
                    f"Considering the resource located at {safe_url} as needing revalidation since it is not fresh."
                )
                return False

        if not self._request_matches(request, allow_head_method=False):
            logger.debug(
                f"Considering the resource located at {safe_url} as invalid for cache use "
                "since the request does not match the stored one."
            )
            return False

        logger.debug(f"Considering the resource located at {safe_url} as valid for cache use.")
        return True

    def _request_matches(self, request: NormalizedRequest, allow_head_method: bool) -> bool:
        return (
            (not self._url or self._url == request.url)
            and self._host == request.headers.get("host")
            and (
                not request.method
                or self._method == request.method
                or (allow_head_method and request.method == "HEAD")
            )
            and self._vary_matches(request)
        )

    def _vary_matches(self, request: NormalizedRequest) -> bool:
        vary = self._res_headers.get("vary")
        if not vary:
            return True
        if vary.strip() == "*":
            return False

        stored = self._req_headers or Headers()
        for name in Vary.from_value(vary).values:
            if request.headers.get(name) != stored.get(name):
                return False
        return True

    def response_headers(self) -> Headers:
        """Headers to send along with the stored response when it is served."""
        headers = _copy_without_hop_by_hop_headers(self._res_headers)
        age = self.age()

        # RFC 7234 5.5.4: heuristic expiration beyond a day
        if age > ONE_DAY and not self._has_explicit_expiration() and self.max_age() > ONE_DAY:
            previous = f"{headers['warning']}, " if "warning" in headers else ""
            headers["warning"] = previous + '113 - "rfc7234 5.5.4"'

        headers["age"] = str(round(age))
        headers["date"] = format_http_date(self.now())
        return headers

    def revalidation_headers(self, request: NormalizedRequest) -> Headers:
        """
        Headers for a conditional request revalidating the stored response.

        See also (https://www.rfc-editor.org/rfc/rfc7234#section-4.3.1)
        """
        headers = _copy_without_hop_by_hop_headers(request.headers)

        # range requests are not understood
        headers.pop("if-range", None)

        if not self._request_matches(request, allow_head_method=True) or not self.storable():
            headers.pop("if-none-match", None)
            headers.pop("if-modified-since", None)
            return headers

        etag = self._res_headers.get("etag")
        if etag:
            headers["if-none-match"] = f"{headers['if-none-match']}, {etag}" if "if-none-match" in headers else etag

        forbids_weak_validators = (
            "accept-ranges" in headers
            or "if-match" in headers
            or "if-unmodified-since" in headers
            or (self._method and self._method != "GET")
        )

        if forbids_weak_validators:
            headers.pop("if-modified-since", None)

            if "if-none-match" in headers:
                etags = [value for value in headers["if-none-match"].split(",") if not _WEAK_ETAG.match(value)]
                if etags:
                    headers["if-none-match"] = ",".join(etags).strip()
                else:
                    del headers["if-none-match"]
        elif "last-modified" in self._res_headers and "if-modified-since" not in headers:
            headers["if-modified-since"] = self._res_headers["last-modified"]

        if "if-none-match" in headers or "if-modified-since" in headers:
            logger.debug(f"Revalidating the resource located at {get_safe_url(request.url)} conditionally.")
        return headers

    def revalidated_policy(self, request: NormalizedRequest, response: PolicyResponse) -> RevalidatedPolicy:
        """
        Handles the response to a revalidation request.

        A matching 304 response refreshes the stored headers and keeps the
        stored body (`modified` is False). Anything else replaces the stored
        response.

        This method mirrors RFC 7234 section 4.3.4.
        """
        if self._use_stale_if_error() and response.status in ERROR_STATUSES:
            logger.debug(
                f"Serving the stored resource located at {get_safe_url(request.url)} "
                f"since the origin answered {response.status} within the stale-if-error window."
            )
            return RevalidatedPolicy(policy=self, modified=False, matches=False)

        stored_etag = self._res_headers.get("etag")
        new_etag = response.headers.get("etag")

        if response.status != 304:
            matches = False
        elif new_etag and not _WEAK_ETAG.match(new_etag):
            # only responses sharing the strong validator may be updated
            matches = bool(stored_etag) and _strip_weak(stored_etag) == new_etag
        elif stored_etag and new_etag:
            matches = _strip_weak(stored_etag) == _strip_weak(new_etag)
        elif "last-modified" in self._res_headers:
            matches = self._res_headers["last-modified"] == response.headers.get("last-modified")
        else:
            # neither side carries a validator, the single stored response is selected
            matches = (
                not stored_etag
                and "last-modified" not in self._res_headers
                and not new_etag
                and "last-modified" not in response.headers
            )

        if not matches:
            return RevalidatedPolicy(
                policy=type(self)(request, response, self._options, self._clock),
                modified=response.status != 304,
                matches=False,
            )

        # header fields of the 304 replace the stored ones, body framing excepted
        merged: tp.Dict[str, tp.List[str]] = {}
        for name, values in self._res_headers.to_dict().items():
            updated = response.headers.get_list(name)
            if updated is not None and name not in EXCLUDED_FROM_REVALIDATION_UPDATE:
                merged[name] = list(updated)
            else:
                merged[name] = values

        new_response = PolicyResponse(status=self._status, headers=Headers(merged))
        return RevalidatedPolicy(
            policy=type(self)(request, new_response, self._options, self._clock),
            modified=False,
            matches=True,
        )

    def to_object(self) -> tp.Dict[str, tp.Any]:
        return {
            "v": SERIALIZATION_VERSION,
            "t": self._response_time,
            "sh": self._options.shared,
            "ch": self._options.cache_heuristic,
            "imm": self._options.immutable_min_time_to_live,
            "icc": self._options.ignore_cargo_cult,
            "st": self._status,
            "resh": self._res_headers.to_dict(),
            "m": self._method,
            "u": self._url,
            "h": self._host,
            "a": self._no_authorization,
            "reqh": self._req_headers.to_dict() if self._req_headers is not None else None,
            "reqcc": self._reqcc_value,
        }

    @classmethod
    def from_object(cls, obj: tp.Dict[str, tp.Any], clock: tp.Optional[BaseClock] = None) -> "CachePolicy":
        if obj.get("v") != SERIALIZATION_VERSION:
            raise ValueError(f"Unsupported cache policy version: {obj.get('v')!r}")

        policy = cls.__new__(cls)
        policy._options = CachePolicyOptions(
            shared=obj["sh"],
            cache_heuristic=obj["ch"],
            immutable_min_time_to_live=obj["imm"],
            ignore_cargo_cult=obj.get("icc", False),
        )
        policy._clock = clock or Clock()
        policy._response_time = obj["t"]
        policy._status = obj["st"]
        policy._res_headers = Headers(obj["resh"])
        policy._method = obj["m"]
        policy._url = obj["u"]
        policy._host = obj["h"]
        policy._no_authorization = obj["a"]
        policy._req_headers = Headers(obj["reqh"]) if obj["reqh"] is not None else None
        policy._reqcc_value = obj["reqcc"]
        policy._parse_directives()
        return policy

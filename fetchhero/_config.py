from __future__ import annotations

import typing as tp
from dataclasses import dataclass, field

from ._policy import CachePolicyOptions
from ._storages import StoreTypes

__all__ = (
    "BypassOptions",
    "HttpCacheOptions",
    "BackoffOptions",
    "RetryingOptions",
    "FetchHeroOptions",
    "HttpCacheOverrides",
    "RetryingOverrides",
    "RequestOptions",
    "EffectiveCacheOptions",
    "EffectiveOptions",
    "RetryConfig",
    "resolve_options",
)

DEFAULT_RETRY_ON = (500, 502, 503, 504)


@dataclass
class BypassOptions:
    """
    Forced caching of GET and HEAD responses.

    :param ttl: Seconds a response is served from the cache without any
        freshness check, whatever its cache directives say. 0 disables it.
    """

    ttl: float = 0


@dataclass
class HttpCacheOptions:
    enabled: bool = True
    options: CachePolicyOptions = field(default_factory=CachePolicyOptions)
    store: StoreTypes = None
    namespace: tp.Optional[str] = None
    bypass: BypassOptions = field(default_factory=BypassOptions)


@dataclass
class BackoffOptions:
    """
    Exponential backoff between retries: `min_timeout * factor ** (n - 1)`
    seconds, capped at `max_timeout`, plus up to `jitter` random seconds.
    """

    min_timeout: float = 1.0
    factor: float = 2.0
    max_timeout: float = 30.0
    jitter: float = 1.0


@dataclass
class RetryingOptions:
    enabled: bool = True
    max_attempts: int = 5
    retry_on: tp.Sequence[int] = DEFAULT_RETRY_ON
    backoff: BackoffOptions = field(default_factory=BackoffOptions)


@dataclass
class FetchHeroOptions:
    """
    Instance-level configuration.

    Leaving `http_cache` unset means no cache at all, leaving `retrying`
    unset means a single attempt per call.
    """

    http_cache: tp.Optional[HttpCacheOptions] = None
    retrying: tp.Optional[RetryingOptions] = None


@dataclass
class HttpCacheOverrides:
    enabled: tp.Optional[bool] = None
    options: tp.Optional[CachePolicyOptions] = None
    namespace: tp.Optional[str] = None
    bypass: tp.Optional[BypassOptions] = None


@dataclass
class RetryingOverrides:
    enabled: tp.Optional[bool] = None
    max_attempts: tp.Optional[int] = None
    retry_on: tp.Optional[tp.Sequence[int]] = None
    backoff: tp.Optional[BackoffOptions] = None


@dataclass
class RequestOptions:
    """Per-call overrides, passed as `RequestInit(fh=...)`."""

    http_cache: tp.Optional[HttpCacheOverrides] = None
    retrying: tp.Optional[RetryingOverrides] = None


@dataclass(frozen=True)
class RetryConfig:
    enabled: bool = False
    max_attempts: int = 5
    retryable_statuses: tp.FrozenSet[int] = frozenset(DEFAULT_RETRY_ON)
    backoff: BackoffOptions = field(default_factory=BackoffOptions)


@dataclass(frozen=True)
class EffectiveCacheOptions:
    enabled: bool
    options: CachePolicyOptions
    namespace: tp.Optional[str]
    bypass_ttl: float


@dataclass(frozen=True)
class EffectiveOptions:
    http_cache: EffectiveCacheOptions
    retrying: RetryConfig


T = tp.TypeVar("T")


def _pick(override: tp.Optional[T], default: T) -> T:
    return default if override is None else override


def resolve_options(
    instance: tp.Optional[FetchHeroOptions],
    call: tp.Optional[RequestOptions] = None,
) -> EffectiveOptions:
    """
    Layer per-call overrides over the instance options, field by field.

    Sequences such as `retry_on` are replaced by the per-call value, never
    merged with the instance value.
    """
    instance = instance or FetchHeroOptions()
    call = call or RequestOptions()

    cache = instance.http_cache or HttpCacheOptions(enabled=False)
    cache_overrides = call.http_cache or HttpCacheOverrides()
    bypass = _pick(cache_overrides.bypass, cache.bypass)

    http_cache = EffectiveCacheOptions(
        enabled=_pick(cache_overrides.enabled, cache.enabled),
        options=_pick(cache_overrides.options, cache.options),
        namespace=_pick(cache_overrides.namespace, cache.namespace),
        bypass_ttl=bypass.ttl,
    )

    retrying = instance.retrying or RetryingOptions(enabled=False)
    retrying_overrides = call.retrying or RetryingOverrides()

    retry_config = RetryConfig(
        enabled=_pick(retrying_overrides.enabled, retrying.enabled),
        max_attempts=_pick(retrying_overrides.max_attempts, retrying.max_attempts),
        retryable_statuses=frozenset(_pick(retrying_overrides.retry_on, retrying.retry_on)),
        backoff=_pick(retrying_overrides.backoff, retrying.backoff),
    )

    return EffectiveOptions(http_cache=http_cache, retrying=retry_config)

from ._config import (
    BackoffOptions as BackoffOptions,
    BypassOptions as BypassOptions,
    EffectiveOptions as EffectiveOptions,
    FetchHeroOptions as FetchHeroOptions,
    HttpCacheOptions as HttpCacheOptions,
    HttpCacheOverrides as HttpCacheOverrides,
    RequestOptions as RequestOptions,
    RetryConfig as RetryConfig,
    RetryingOptions as RetryingOptions,
    RetryingOverrides as RetryingOverrides,
    resolve_options as resolve_options,
)
from ._exceptions import (
    FetchHeroError as FetchHeroError,
    InvalidInputError as InvalidInputError,
    StoreError as StoreError,
)
from ._fetch import FetchHero as FetchHero, OriginFetch as OriginFetch, fetch_hero as fetch_hero
from ._headers import (
    CacheControl as CacheControl,
    Headers as Headers,
    normalize_headers as normalize_headers,
    parse_cache_control as parse_cache_control,
)
from ._mock import MockAsyncOrigin as MockAsyncOrigin
from ._models import (
    CACHE_STATUS_HEADER as CACHE_STATUS_HEADER,
    BypassDescriptor as BypassDescriptor,
    CacheEntry as CacheEntry,
    NormalizedRequest as NormalizedRequest,
    PolicyResponse as PolicyResponse,
    ResponseSnapshot as ResponseSnapshot,
)
from ._normalize import (
    RequestInit as RequestInit,
    build_cache_key as build_cache_key,
    normalize_request as normalize_request,
    normalize_url as normalize_url,
    resolve_call_shape as resolve_call_shape,
)
from ._policy import (
    CachePolicy as CachePolicy,
    CachePolicyOptions as CachePolicyOptions,
    PolicyEvaluator as PolicyEvaluator,
    RevalidatedPolicy as RevalidatedPolicy,
)
from ._retry import attempt as attempt
from ._serializers import (
    BaseSerializer as BaseSerializer,
    JSONSerializer as JSONSerializer,
    PickleSerializer as PickleSerializer,
)
from ._storages import (
    AsyncBaseStorage as AsyncBaseStorage,
    AsyncInMemoryStorage as AsyncInMemoryStorage,
    AsyncRedisStorage as AsyncRedisStorage,
    AsyncSQLiteStorage as AsyncSQLiteStorage,
    ConnectionStringStore as ConnectionStringStore,
    InMemoryStore as InMemoryStore,
    create_storage as create_storage,
)
from ._utils import BaseClock as BaseClock, Clock as Clock

__all__ = (
    # Decorator
    "FetchHero",
    "fetch_hero",
    "OriginFetch",
    "RequestInit",
    # Options
    "FetchHeroOptions",
    "HttpCacheOptions",
    "BypassOptions",
    "RetryingOptions",
    "BackoffOptions",
    "RequestOptions",
    "HttpCacheOverrides",
    "RetryingOverrides",
    "EffectiveOptions",
    "RetryConfig",
    "resolve_options",
    # Normalization
    "normalize_url",
    "normalize_request",
    "resolve_call_shape",
    "build_cache_key",
    # Policy
    "CachePolicy",
    "CachePolicyOptions",
    "PolicyEvaluator",
    "RevalidatedPolicy",
    # Models
    "NormalizedRequest",
    "PolicyResponse",
    "ResponseSnapshot",
    "BypassDescriptor",
    "CacheEntry",
    "CACHE_STATUS_HEADER",
    # Headers
    "Headers",
    "CacheControl",
    "normalize_headers",
    "parse_cache_control",
    # Storages
    "AsyncBaseStorage",
    "AsyncInMemoryStorage",
    "AsyncSQLiteStorage",
    "AsyncRedisStorage",
    "InMemoryStore",
    "ConnectionStringStore",
    "create_storage",
    # Serializers
    "BaseSerializer",
    "JSONSerializer",
    "PickleSerializer",
    # Retry
    "attempt",
    # Clocks
    "BaseClock",
    "Clock",
    # Testing
    "MockAsyncOrigin",
    # Exceptions
    "FetchHeroError",
    "InvalidInputError",
    "StoreError",
)

__version__ = "0.1.0"

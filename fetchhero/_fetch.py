from __future__ import annotations

import logging
import typing as tp
from types import TracebackType

import httpx
from typing_extensions import assert_never

from ._config import FetchHeroOptions, RetryConfig, resolve_options
from ._exceptions import StoreError
from ._models import (
    CACHE_STATUS_HEADER,
    BypassDescriptor,
    CacheEntry,
    NormalizedRequest,
    policy_response,
    rehydrate_response,
    snapshot_response,
)
from ._normalize import (
    CallShape,
    RequestInit,
    RequestObjectInput,
    build_origin_request,
    normalize_request,
    origin_headers,
    resolve_call_shape,
)
from ._policy import CachePolicy, PolicyEvaluator
from ._retry import attempt
from ._serializers import BaseSerializer
from ._states import (
    AnyState,
    BypassHit,
    CouldNotBeStored,
    DisabledWithEntry,
    FreshHit,
    Lookup,
    Miss,
    Passthrough,
    StaleRevalidate,
    Start,
    StoreAndUse,
    UpdateStored,
)
from ._storages import AsyncBaseStorage, create_storage
from ._utils import BaseClock, Clock, get_safe_url

if tp.TYPE_CHECKING:  # pragma: no cover
    from typing_extensions import Self

logger = logging.getLogger("fetchhero.fetch")

__all__ = ("FetchHero", "OriginFetch", "fetch_hero")

OriginFetch = tp.Callable[[httpx.Request], tp.Awaitable[httpx.Response]]

HIT = "HIT"
MISS = "MISS"


def _tag(response: httpx.Response, cache_status: str) -> httpx.Response:
    response.headers[CACHE_STATUS_HEADER] = cache_status
    return response


class FetchHero:
    """
    Caching and retrying decorator around an origin fetch.

    The instance owns the store, the instance-level options and the clock.
    Calls accept the same shapes as `fetch(input, init)`: a URL string, an
    `httpx.URL`, an `httpx.Request`, or any object or mapping with a `url`
    (or `href`) member.

        >>> async with httpx.AsyncClient() as client:
        ...     fetch = FetchHero(client.send, FetchHeroOptions(http_cache=HttpCacheOptions()))
        ...     response = await fetch("https://example.com/")

    :param fetch: The origin fetch, for example `httpx.AsyncClient.send`
    :type fetch: OriginFetch
    :param options: Instance-level options, defaults to None (no cache, no retries)
    :type options: tp.Optional[FetchHeroOptions], optional
    :param storage: A ready storage, overrides `http_cache.store`, defaults to None
    :type storage: tp.Optional[AsyncBaseStorage], optional
    :param clock: Clock used by the policies, the store and the bypass, defaults to None
    :type clock: tp.Optional[BaseClock], optional
    :param policy_class: Cache policy evaluator, defaults to CachePolicy
    :type policy_class: tp.Type[PolicyEvaluator], optional
    """

    def __init__(
        self,
        fetch: OriginFetch,
        options: tp.Optional[FetchHeroOptions] = None,
        *,
        storage: tp.Optional[AsyncBaseStorage] = None,
        clock: tp.Optional[BaseClock] = None,
        policy_class: tp.Type[PolicyEvaluator] = CachePolicy,
        serializer: tp.Optional[BaseSerializer] = None,
    ) -> None:
        self._fetch = fetch
        self._options = options or FetchHeroOptions()
        self._clock = clock or Clock()
        self._policy_class = policy_class

        http_cache = self._options.http_cache
        self._cache_present = http_cache is not None and http_cache.enabled
        self._owns_storage = False

        if storage is None and http_cache is not None and self._cache_present:
            storage = create_storage(http_cache.store, http_cache.namespace, self._clock, serializer)
            self._owns_storage = True
        self._storage = storage

    @property
    def storage(self) -> tp.Optional[AsyncBaseStorage]:
        return self._storage

    async def __call__(self, input: tp.Any, init: tp.Optional[RequestInit] = None) -> httpx.Response:
        init = init or RequestInit()
        shape = resolve_call_shape(input)
        request = normalize_request(shape, init)
        options = resolve_options(self._options, init.fh)

        async def origin_call() -> httpx.Response:
            return await self._fetch(build_origin_request(shape, init, request))

        state: AnyState = Start(
            request=request,
            options=options.http_cache,
            cache_present=self._cache_present and self._storage is not None,
        )

        while state:
            logger.debug(f"Handling state: {state.__class__.__name__}")
            if isinstance(state, Start):
                state = state.next()
            elif isinstance(state, Passthrough):
                return _tag(await attempt(origin_call, options.retrying), MISS)
            elif isinstance(state, Lookup):
                state = await self._handle_lookup(state)
            elif isinstance(state, Miss):
                response = await attempt(origin_call, options.retrying)
                state = state.next(response, self._build_policy(request, response, state))
            elif isinstance(state, (BypassHit, FreshHit)):
                return self._serve(state.entry, state.policy, request)
            elif isinstance(state, DisabledWithEntry):
                return _tag(await attempt(origin_call, options.retrying), MISS)
            elif isinstance(state, StaleRevalidate):
                state = await self._handle_revalidation(state, shape, init, options.retrying)
            elif isinstance(state, StoreAndUse):
                return await self._handle_store_and_use(state)
            elif isinstance(state, CouldNotBeStored):
                logger.debug(f"Returning the response for {get_safe_url(request.url)} without storing it.")
                return _tag(state.response, MISS)
            elif isinstance(state, UpdateStored):
                return await self._handle_update(state)
            else:
                assert_never(state)

        raise RuntimeError("Unreachable")

    def _build_policy(self, request: NormalizedRequest, response: httpx.Response, state: Miss) -> PolicyEvaluator:
        return self._policy_class(request, policy_response(response), state.options.options, self._clock)

    async def _handle_lookup(self, state: Lookup) -> AnyState:
        assert self._storage is not None

        entry = await self._storage.get(state.key)
        policy = None
        if entry is not None:
            try:
                policy = self._policy_class.from_object(entry.policy, clock=self._clock)
            except (ValueError, KeyError, TypeError) as exc:
                raise StoreError(f"Unreadable cache policy stored under {state.key!r}") from exc
        return state.next(entry, policy, self._clock.now_ms())

    async def _handle_revalidation(
        self,
        state: StaleRevalidate,
        shape: CallShape,
        init: RequestInit,
        retrying: RetryConfig,
    ) -> AnyState:
        content = init.content
        if content is None and isinstance(shape, RequestObjectInput):
            content = shape.content

        conditional_request = httpx.Request(
            state.request.method,
            state.request.url,
            headers=origin_headers(state.conditional_headers()),
            content=content,
        )

        async def revalidation_call() -> httpx.Response:
            return await self._fetch(conditional_request)

        response = await attempt(revalidation_call, retrying)
        return state.next(response)

    def _new_entry_bypass(self, bypass_ttl_ms: float) -> tp.Optional[BypassDescriptor]:
        if bypass_ttl_ms <= 0:
            return None
        return BypassDescriptor(ttl_ms=bypass_ttl_ms, stored_at_ms=self._clock.now_ms())

    async def _handle_store_and_use(self, state: StoreAndUse) -> httpx.Response:
        assert self._storage is not None

        snapshot = await snapshot_response(state.response, state.request.url)
        entry = CacheEntry(
            policy=state.policy.to_object(),
            response=snapshot,
            bypass=self._new_entry_bypass(state.bypass_ttl_ms),
        )
        await self._storage.set(state.key, entry, state.ttl_ms)
        logger.debug(f"Stored the response for {get_safe_url(state.request.url)} with a ttl of {state.ttl_ms}ms.")
        return _tag(state.response, MISS)

    async def _handle_update(self, state: UpdateStored) -> httpx.Response:
        assert self._storage is not None
        await state.response.aclose()

        entry = CacheEntry(
            policy=state.policy.to_object(),
            response=state.entry.response,
            bypass=self._new_entry_bypass(state.bypass_ttl_ms),
        )
        await self._storage.set(state.key, entry, state.ttl_ms)
        return self._serve(entry, state.policy, state.request)

    def _serve(self, entry: CacheEntry, policy: PolicyEvaluator, request: NormalizedRequest) -> httpx.Response:
        response = rehydrate_response(entry.response, policy.response_headers(), request)
        return _tag(response, HIT)

    async def aclose(self) -> None:
        if self._owns_storage and self._storage is not None:
            await self._storage.aclose()

    async def __aenter__(self) -> "Self":
        return self

    async def __aexit__(
        self,
        exc_type: tp.Optional[tp.Type[BaseException]] = None,
        exc_value: tp.Optional[BaseException] = None,
        traceback: tp.Optional[TracebackType] = None,
    ) -> None:
        await self.aclose()


def fetch_hero(
    fetch: OriginFetch,
    options: tp.Optional[FetchHeroOptions] = None,
    **kwargs: tp.Any,
) -> FetchHero:
    """Decorate `fetch` with caching and retries."""
    return FetchHero(fetch, options, **kwargs)

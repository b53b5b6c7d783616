import httpx

from fetchhero import (
    BypassDescriptor,
    CacheEntry,
    CachePolicy,
    CachePolicyOptions,
    Headers,
    NormalizedRequest,
    PolicyResponse,
    ResponseSnapshot,
)
from fetchhero._config import EffectiveCacheOptions
from fetchhero._states import (
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

URL = "https://example.com/"


def cache_options(enabled: bool = True, bypass_ttl: float = 0, namespace=None) -> EffectiveCacheOptions:
    return EffectiveCacheOptions(
        enabled=enabled, options=CachePolicyOptions(), namespace=namespace, bypass_ttl=bypass_ttl
    )


def make_request(method: str = "GET") -> NormalizedRequest:
    return NormalizedRequest(method=method, url=URL)


def make_policy(clock, cache_control: str = "max-age=60", method: str = "GET", etag=None) -> CachePolicy:
    headers = Headers({"cache-control": cache_control})
    if etag:
        headers["etag"] = etag
    return CachePolicy(make_request(method), PolicyResponse(status=200, headers=headers), clock=clock)


def make_entry(policy: CachePolicy, bypass=None) -> CacheEntry:
    snapshot = ResponseSnapshot(url=URL, status=200, status_text="OK", headers=Headers(), body=b"stored")
    return CacheEntry(policy=policy.to_object(), response=snapshot, bypass=bypass)


def test_start():
    state = Start(request=make_request(), options=cache_options(namespace="api"), cache_present=True)

    next_state = state.next()

    assert isinstance(next_state, Lookup)
    assert next_state.key == "api:GET:https://example.com/"
    assert isinstance(Start(request=make_request(), options=cache_options(), cache_present=False).next(), Passthrough)


def test_lookup_without_entry():
    state = Lookup(request=make_request(), options=cache_options(), key="GET:https://example.com/")

    assert isinstance(state.next(None, None, 0), Miss)


def test_lookup_bypass_wins(clock):
    policy = make_policy(clock, cache_control="no-cache")
    entry = make_entry(policy, BypassDescriptor(ttl_ms=60_000, stored_at_ms=clock.now_ms()))
    state = Lookup(request=make_request(), options=cache_options(enabled=False), key="key")

    assert isinstance(state.next(entry, policy, clock.now_ms() + 1_000), BypassHit)
    assert isinstance(state.next(entry, policy, clock.now_ms() + 60_000), DisabledWithEntry)


def test_lookup_bypass_only_for_get_and_head(clock):
    policy = make_policy(clock, cache_control="no-cache")
    entry = make_entry(policy, BypassDescriptor(ttl_ms=60_000, stored_at_ms=clock.now_ms()))

    head = Lookup(request=make_request("HEAD"), options=cache_options(), key="key")
    delete = Lookup(request=make_request("DELETE"), options=cache_options(), key="key")

    assert isinstance(head.next(entry, policy, clock.now_ms()), BypassHit)
    assert isinstance(delete.next(entry, policy, clock.now_ms()), StaleRevalidate)


def test_lookup_freshness(clock):
    policy = make_policy(clock)
    entry = make_entry(policy)
    state = Lookup(request=make_request(), options=cache_options(), key="key")

    assert isinstance(state.next(entry, policy, clock.now_ms()), FreshHit)

    clock.advance(61)
    next_state = state.next(entry, policy, clock.now_ms())
    assert isinstance(next_state, StaleRevalidate)
    assert next_state.key == "key"


def test_miss_not_storable():
    state = Miss(request=make_request("POST"), options=cache_options(bypass_ttl=60), key="key")
    response = httpx.Response(200)
    policy = CachePolicy(make_request("POST"), PolicyResponse(status=200))

    next_state = state.next(response, policy)

    assert isinstance(next_state, CouldNotBeStored)
    assert next_state.response is response


def test_miss_storable(clock):
    state = Miss(request=make_request(), options=cache_options(), key="key")

    next_state = state.next(httpx.Response(200), make_policy(clock))

    assert isinstance(next_state, StoreAndUse)
    assert next_state.ttl_ms == 60_000
    assert next_state.bypass_ttl_ms == 0


def test_miss_with_bypass_stores_uncacheable_response(clock):
    state = Miss(request=make_request(), options=cache_options(bypass_ttl=120), key="key")

    next_state = state.next(httpx.Response(200), make_policy(clock, cache_control="no-store"))

    assert isinstance(next_state, StoreAndUse)
    assert next_state.ttl_ms == 120_000
    assert next_state.bypass_ttl_ms == 120_000


def test_revalidation_not_modified(clock):
    policy = make_policy(clock, etag='"v1"')
    entry = make_entry(policy)
    clock.advance(61)
    state = StaleRevalidate(
        request=make_request(), options=cache_options(bypass_ttl=30), key="key", entry=entry, policy=policy
    )

    assert state.conditional_headers()["if-none-match"] == '"v1"'

    next_state = state.next(httpx.Response(304, headers={"ETag": '"v1"'}))

    assert isinstance(next_state, UpdateStored)
    assert next_state.entry is entry
    assert next_state.response.status_code == 304
    assert next_state.ttl_ms == 60_000
    assert next_state.bypass_ttl_ms == 30_000


def test_revalidation_modified(clock):
    policy = make_policy(clock, etag='"v1"')
    entry = make_entry(policy)
    clock.advance(61)
    state = StaleRevalidate(request=make_request(), options=cache_options(), key="key", entry=entry, policy=policy)
    response = httpx.Response(200, headers={"Cache-Control": "max-age=10", "ETag": '"v2"'})

    next_state = state.next(response)

    assert isinstance(next_state, StoreAndUse)
    assert next_state.response is response
    assert next_state.ttl_ms == 10_000


def test_revalidation_server_error_within_stale_if_error(clock):
    policy = make_policy(clock, cache_control="max-age=60, stale-if-error=300")
    entry = make_entry(policy)
    clock.advance(120)
    state = StaleRevalidate(request=make_request(), options=cache_options(), key="key", entry=entry, policy=policy)
    response = httpx.Response(503)

    next_state = state.next(response)

    assert isinstance(next_state, UpdateStored)
    assert next_state.entry is entry
    assert next_state.response is response
    assert next_state.policy is policy

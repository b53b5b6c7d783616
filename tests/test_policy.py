import pytest

from fetchhero import CachePolicy, CachePolicyOptions, Headers, NormalizedRequest, PolicyResponse
from fetchhero._utils import format_http_date

URL = "https://example.com/"


def make_request(method: str = "GET", headers=None) -> NormalizedRequest:
    return NormalizedRequest(method=method, url=URL, headers=Headers(headers or {}))


def make_response(status: int = 200, headers=None) -> PolicyResponse:
    return PolicyResponse(status=status, headers=Headers(headers or {}))


def test_public_max_age_is_storable(clock):
    policy = CachePolicy(make_request(), make_response(headers={"cache-control": "public, max-age=60"}), clock=clock)

    assert policy.storable()
    assert policy.time_to_live() == 60_000
    assert policy.satisfies_without_revalidation(make_request())


def test_post_is_not_storable(clock):
    policy = CachePolicy(
        make_request("POST"),
        make_response(headers={"cache-control": "public, max-age=60"}),
        clock=clock,
    )

    assert not policy.storable()
    assert policy.time_to_live() == 0


def test_unknown_status_is_not_storable(clock):
    response = make_response(status=500, headers={"cache-control": "max-age=60"})
    policy = CachePolicy(make_request(), response, clock=clock)

    assert not policy.storable()


def test_private_depends_on_shared_option(clock):
    response = make_response(headers={"cache-control": "private, max-age=60"})

    assert not CachePolicy(make_request(), response, clock=clock).storable()
    assert CachePolicy(make_request(), response, CachePolicyOptions(shared=False), clock=clock).storable()


def test_authorized_requests_in_shared_cache(clock):
    request = make_request(headers={"authorization": "Bearer token"})

    assert not CachePolicy(request, make_response(headers={"cache-control": "max-age=60"}), clock=clock).storable()
    assert CachePolicy(request, make_response(headers={"cache-control": "public, max-age=60"}), clock=clock).storable()


def test_s_maxage_wins_in_shared_cache(clock):
    response = make_response(headers={"cache-control": "max-age=10, s-maxage=100"})

    assert CachePolicy(make_request(), response, clock=clock).time_to_live() == 100_000
    assert CachePolicy(make_request(), response, CachePolicyOptions(shared=False), clock=clock).time_to_live() == 10_000


def test_stale_windows_extend_time_to_live(clock):
    response = make_response(headers={"cache-control": "max-age=60, stale-while-revalidate=30, stale-if-error=10"})
    policy = CachePolicy(make_request(), response, clock=clock)

    assert policy.time_to_live() == 90_000


def test_expires_header(clock):
    now = clock.now()
    response = make_response(headers={"date": format_http_date(now), "expires": format_http_date(now + 100)})

    assert CachePolicy(make_request(), response, clock=clock).time_to_live() == 100_000


def test_invalid_expires_means_expired(clock):
    response = make_response(headers={"date": format_http_date(clock.now()), "expires": "0"})
    policy = CachePolicy(make_request(), response, clock=clock)

    assert policy.time_to_live() == 0
    assert not policy.satisfies_without_revalidation(make_request())


def test_heuristic_freshness_from_last_modified(clock):
    now = clock.now()
    ten_days = 10 * 86400
    response = make_response(
        headers={"date": format_http_date(now), "last-modified": format_http_date(now - ten_days)}
    )

    policy = CachePolicy(make_request(), response, clock=clock)

    assert policy.time_to_live() == 86_400_000


def test_heuristic_freshness_warning_after_a_day(clock):
    now = clock.now()
    response = make_response(
        headers={"date": format_http_date(now), "last-modified": format_http_date(now - 100 * 86400)}
    )
    policy = CachePolicy(make_request(), response, clock=clock)

    clock.advance(2 * 86400)

    assert '113 - "rfc7234 5.5.4"' in policy.response_headers()["warning"]


def test_immutable_minimum_time_to_live(clock):
    policy = CachePolicy(make_request(), make_response(headers={"cache-control": "immutable"}), clock=clock)

    assert policy.time_to_live() == 86_400_000


def test_set_cookie_in_shared_cache(clock):
    response = make_response(headers={"cache-control": "max-age=60", "set-cookie": "a=b"})

    assert CachePolicy(make_request(), response, clock=clock).time_to_live() == 0
    assert CachePolicy(make_request(), response, CachePolicyOptions(shared=False), clock=clock).time_to_live() == 60_000


def test_pragma_no_cache_without_cache_control(clock):
    policy = CachePolicy(make_request(), make_response(headers={"pragma": "no-cache"}), clock=clock)

    assert not policy.satisfies_without_revalidation(make_request())


def test_ignore_cargo_cult(clock):
    response = make_response(
        headers={"cache-control": "no-cache, no-store, must-revalidate, pre-check=0, post-check=0, max-age=60"}
    )

    assert not CachePolicy(make_request(), response, clock=clock).storable()

    policy = CachePolicy(make_request(), response, CachePolicyOptions(ignore_cargo_cult=True), clock=clock)
    assert policy.storable()
    assert policy.time_to_live() == 60_000
    assert policy.response_headers()["cache-control"] == "max-age=60"


def test_becomes_stale_after_max_age(clock):
    policy = CachePolicy(make_request(), make_response(headers={"cache-control": "max-age=60"}), clock=clock)

    clock.advance(61)

    assert not policy.satisfies_without_revalidation(make_request())


def test_request_directives(clock):
    policy = CachePolicy(make_request(), make_response(headers={"cache-control": "max-age=60"}), clock=clock)

    assert not policy.satisfies_without_revalidation(make_request(headers={"cache-control": "no-cache"}))
    assert not policy.satisfies_without_revalidation(make_request(headers={"cache-control": "min-fresh=120"}))

    clock.advance(10)
    assert not policy.satisfies_without_revalidation(make_request(headers={"cache-control": "max-age=5"}))

    clock.advance(60)
    assert policy.satisfies_without_revalidation(make_request(headers={"cache-control": "max-stale=30"}))
    assert policy.satisfies_without_revalidation(make_request(headers={"cache-control": "max-stale"}))


def test_must_revalidate_ignores_max_stale(clock):
    response = make_response(headers={"cache-control": "max-age=60, must-revalidate"})
    policy = CachePolicy(make_request(), response, clock=clock)

    clock.advance(70)

    assert not policy.satisfies_without_revalidation(make_request(headers={"cache-control": "max-stale=30"}))


def test_vary(clock):
    response = make_response(headers={"cache-control": "max-age=60", "vary": "Accept-Language"})
    policy = CachePolicy(make_request(headers={"accept-language": "en"}), response, clock=clock)

    assert policy.satisfies_without_revalidation(make_request(headers={"accept-language": "en"}))
    assert not policy.satisfies_without_revalidation(make_request(headers={"accept-language": "de"}))


def test_vary_star_never_matches(clock):
    response = make_response(headers={"cache-control": "max-age=60", "vary": "*"})
    policy = CachePolicy(make_request(), response, clock=clock)

    assert not policy.satisfies_without_revalidation(make_request())


def test_response_headers(clock):
    response = make_response(
        headers={"cache-control": "max-age=60", "connection": "x-hop", "x-hop": "1", "keep-alive": "timeout=5"}
    )
    policy = CachePolicy(make_request(), response, clock=clock)

    clock.advance(30)
    headers = policy.response_headers()

    assert headers["age"] == "30"
    assert headers["date"] == format_http_date(clock.now())
    assert "connection" not in headers
    assert "keep-alive" not in headers
    assert "x-hop" not in headers
    assert headers["cache-control"] == "max-age=60"


def test_revalidation_headers(clock):
    response = make_response(
        headers={
            "cache-control": "max-age=60",
            "etag": '"v1"',
            "last-modified": "Mon, 24 Aug 2015 12:00:00 GMT",
        }
    )
    policy = CachePolicy(make_request(), response, clock=clock)

    headers = policy.revalidation_headers(make_request(headers={"accept": "text/plain"}))

    assert headers["if-none-match"] == '"v1"'
    assert headers["if-modified-since"] == "Mon, 24 Aug 2015 12:00:00 GMT"
    assert headers["accept"] == "text/plain"


def test_revalidation_headers_drop_weak_validators(clock):
    response = make_response(headers={"cache-control": "max-age=60", "etag": 'W/"v1"', "last-modified": "yesterday"})
    policy = CachePolicy(make_request(), response, clock=clock)

    headers = policy.revalidation_headers(make_request(headers={"if-match": '"v0"'}))

    assert "if-none-match" not in headers
    assert "if-modified-since" not in headers


def test_not_modified_with_matching_etag(clock):
    response = make_response(headers={"cache-control": "max-age=60", "etag": '"v1"'})
    policy = CachePolicy(make_request(), response, clock=clock)

    clock.advance(61)
    revalidated = policy.revalidated_policy(
        make_request(), make_response(status=304, headers={"etag": '"v1"', "cache-control": "max-age=120"})
    )

    assert revalidated.matches
    assert not revalidated.modified
    assert revalidated.policy.time_to_live() == 120_000
    assert revalidated.policy.satisfies_without_revalidation(make_request())


def test_not_modified_with_other_etag(clock):
    response = make_response(headers={"cache-control": "max-age=60", "etag": '"v1"'})
    policy = CachePolicy(make_request(), response, clock=clock)

    revalidated = policy.revalidated_policy(make_request(), make_response(status=304, headers={"etag": '"v2"'}))

    assert not revalidated.matches
    assert not revalidated.modified


def test_modified_response(clock):
    response = make_response(headers={"cache-control": "max-age=60", "etag": '"v1"'})
    policy = CachePolicy(make_request(), response, clock=clock)

    revalidated = policy.revalidated_policy(
        make_request(), make_response(status=200, headers={"cache-control": "max-age=30", "etag": '"v2"'})
    )

    assert revalidated.modified
    assert not revalidated.matches
    assert revalidated.policy.time_to_live() == 30_000


def test_stale_if_error_keeps_stored_response(clock):
    policy = CachePolicy(
        make_request(), make_response(headers={"cache-control": "max-age=60, stale-if-error=300"}), clock=clock
    )

    clock.advance(100)
    revalidated = policy.revalidated_policy(make_request(), make_response(status=503))

    assert revalidated.policy is policy
    assert not revalidated.modified


def test_restored_policy_behaves_the_same(clock):
    response = make_response(
        headers={"cache-control": "max-age=60", "vary": "accept", "etag": '"v1"'},
    )
    policy = CachePolicy(make_request(headers={"accept": "text/html"}), response, clock=clock)

    clock.advance(20)
    restored = CachePolicy.from_object(policy.to_object(), clock=clock)

    assert restored.time_to_live() == policy.time_to_live() == 40_000
    assert restored.satisfies_without_revalidation(make_request(headers={"accept": "text/html"}))
    assert not restored.satisfies_without_revalidation(make_request(headers={"accept": "text/plain"}))
    assert restored.revalidation_headers(make_request(headers={"accept": "text/html"}))["if-none-match"] == '"v1"'


def test_restoring_unknown_version_fails(clock):
    policy = CachePolicy(make_request(), make_response(), clock=clock)
    obj = policy.to_object()
    obj["v"] = 99

    with pytest.raises(ValueError):
        CachePolicy.from_object(obj)


def test_vary_with_several_fields(clock):
    response = make_response(headers={"cache-control": "max-age=60", "vary": "Accept-Language, , ACCEPT"})
    policy = CachePolicy(make_request(headers={"accept-language": "en", "accept": "text/html"}), response, clock=clock)

    assert policy.satisfies_without_revalidation(make_request(headers={"accept-language": "en", "accept": "text/html"}))
    assert not policy.satisfies_without_revalidation(
        make_request(headers={"accept-language": "en", "accept": "text/plain"})
    )

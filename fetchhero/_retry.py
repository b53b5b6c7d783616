from __future__ import annotations

import logging
import typing as tp

import anyio
import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from ._config import RetryConfig

logger = logging.getLogger("fetchhero.retry")

__all__ = ("attempt", "OriginCall")

OriginCall = tp.Callable[[], tp.Awaitable[httpx.Response]]


def _is_retryable_response(response: httpx.Response, retryable_statuses: tp.FrozenSet[int]) -> bool:
    return not response.is_success and response.status_code in retryable_statuses


def _retry_error_callback(retry_state: RetryCallState) -> httpx.Response:
    # the last response is returned as is, the last exception is raised unchanged
    assert retry_state.outcome is not None
    return tp.cast(httpx.Response, retry_state.outcome.result())


_log_before_sleep = before_sleep_log(logger, logging.DEBUG)


async def _before_sleep(retry_state: RetryCallState) -> None:
    _log_before_sleep(retry_state)

    # the discarded response is closed before the next attempt
    outcome = retry_state.outcome
    if outcome is not None and not outcome.failed:
        await tp.cast(httpx.Response, outcome.result()).aclose()


def _build_retrying(config: RetryConfig) -> AsyncRetrying:
    backoff = config.backoff
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, config.max_attempts)),
        wait=wait_exponential(multiplier=backoff.min_timeout, exp_base=backoff.factor, max=backoff.max_timeout)
        + wait_random(0, backoff.jitter),
        retry=retry_if_exception_type(Exception)
        | retry_if_result(lambda response: _is_retryable_response(response, config.retryable_statuses)),
        before_sleep=_before_sleep,
        retry_error_callback=_retry_error_callback,
        sleep=anyio.sleep,
    )


async def attempt(origin_call: OriginCall, config: RetryConfig) -> httpx.Response:
    """
    Run `origin_call` with bounded retries.

    A disabled config performs exactly one call. Otherwise exceptions and
    responses whose status is in `retryable_statuses` are retried until
    `max_attempts` calls were made. Any other response, successful or not,
    ends the loop right away. Responses dropped in favour of another attempt
    are closed.
    """
    if not config.enabled:
        return await origin_call()

    async def call() -> httpx.Response:
        return await origin_call()

    return tp.cast(httpx.Response, await _build_retrying(config)(call))

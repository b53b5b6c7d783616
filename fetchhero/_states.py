from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

import httpx

from ._config import EffectiveCacheOptions
from ._headers import Headers
from ._models import CacheEntry, NormalizedRequest, policy_response
from ._normalize import build_cache_key
from ._policy import PolicyEvaluator
from ._utils import get_safe_url

logger = logging.getLogger("fetchhero.fetch")

__all__ = (
    "State",
    "Start",
    "Passthrough",
    "Lookup",
    "Miss",
    "BypassHit",
    "DisabledWithEntry",
    "FreshHit",
    "StaleRevalidate",
    "StoreAndUse",
    "CouldNotBeStored",
    "UpdateStored",
    "AnyState",
    "entry_ttl",
)


def entry_ttl(policy: PolicyEvaluator, bypass_ttl_ms: float) -> float:
    """Retention of an entry in milliseconds, a bypass never shortens it."""
    return max(policy.time_to_live(), bypass_ttl_ms)


@dataclass
class State(ABC):
    request: NormalizedRequest
    options: EffectiveCacheOptions

    def applicable_bypass_ttl_ms(self) -> float:
        """Bypass retention applying to this request, 0 when it does not apply."""
        if not self.request.is_cacheable or self.options.bypass_ttl <= 0:
            return 0
        return self.options.bypass_ttl * 1000

    @abstractmethod
    def next(self, *args: Any, **kwargs: Any) -> Union["State", None]:
        raise NotImplementedError("Subclasses must implement this method")


@dataclass
class Start(State):
    cache_present: bool

    def next(self) -> Union["Passthrough", "Lookup"]:
        if not self.cache_present:
            return Passthrough(request=self.request, options=self.options)
        return Lookup(request=self.request, options=self.options, key=self.key)

    @property
    def key(self) -> str:
        return build_cache_key(self.request, self.options.namespace)


@dataclass
class Passthrough(State):
    """No cache is configured, the call goes straight to the origin."""

    def next(self) -> None:
        return None


@dataclass
class Lookup(State):
    key: str

    def next(
        self,
        entry: Optional[CacheEntry],
        policy: Optional[PolicyEvaluator],
        now_ms: float,
    ) -> Union["Miss", "BypassHit", "DisabledWithEntry", "FreshHit", "StaleRevalidate"]:
        """
        Chooses how to answer once the stored entry, if any, has been read.

        A bypass descriptor wins over everything, then a per-call disable,
        then the freshness of the stored response.
        """
        safe_url = get_safe_url(self.request.url)

        if entry is None or policy is None:
            logger.debug(f"No stored response found for the resource located at {safe_url}.")
            return Miss(request=self.request, options=self.options, key=self.key)

        if entry.bypass is not None and self.request.is_cacheable and entry.bypass.is_active(now_ms):
            logger.debug(f"Serving the resource located at {safe_url} from the cache since its bypass is active.")
            return BypassHit(request=self.request, options=self.options, entry=entry, policy=policy)

        if not self.options.enabled:
            logger.debug(f"Caching is disabled for this call to {safe_url}, the stored response is left untouched.")
            return DisabledWithEntry(request=self.request, options=self.options, entry=entry)

        if policy.satisfies_without_revalidation(self.request):
            return FreshHit(request=self.request, options=self.options, entry=entry, policy=policy)

        return StaleRevalidate(request=self.request, options=self.options, key=self.key, entry=entry, policy=policy)


@dataclass
class Miss(State):
    key: str

    def next(self, response: httpx.Response, policy: PolicyEvaluator) -> Union["StoreAndUse", "CouldNotBeStored"]:
        bypass_ttl_ms = self.applicable_bypass_ttl_ms()

        if not policy.storable() and bypass_ttl_ms <= 0:
            return CouldNotBeStored(request=self.request, options=self.options, response=response)

        return StoreAndUse(
            request=self.request,
            options=self.options,
            key=self.key,
            response=response,
            policy=policy,
            ttl_ms=entry_ttl(policy, bypass_ttl_ms),
            bypass_ttl_ms=bypass_ttl_ms,
        )


@dataclass
class BypassHit(State):
    entry: CacheEntry
    policy: PolicyEvaluator

    def next(self) -> None:
        return None


@dataclass
class DisabledWithEntry(State):
    entry: CacheEntry

    def next(self) -> None:
        return None


@dataclass
class FreshHit(State):
    entry: CacheEntry
    policy: PolicyEvaluator

    def next(self) -> None:
        return None


@dataclass
class StaleRevalidate(State):
    key: str
    entry: CacheEntry
    policy: PolicyEvaluator

    def conditional_headers(self) -> Headers:
        return self.policy.revalidation_headers(self.request)

    def next(self, response: httpx.Response) -> Union["StoreAndUse", "UpdateStored"]:
        """
        Applies the answer of the origin to a conditional request.

        Not modified keeps the stored body under the refreshed policy,
        anything else replaces the entry wholesale.
        """
        revalidated = self.policy.revalidated_policy(self.request, policy_response(response))
        bypass_ttl_ms = self.applicable_bypass_ttl_ms()
        ttl_ms = entry_ttl(revalidated.policy, bypass_ttl_ms)

        if revalidated.modified:
            logger.debug(
                f"The resource located at {get_safe_url(self.request.url)} was modified, replacing the stored response."
            )
            return StoreAndUse(
                request=self.request,
                options=self.options,
                key=self.key,
                response=response,
                policy=revalidated.policy,
                ttl_ms=ttl_ms,
                bypass_ttl_ms=bypass_ttl_ms,
            )

        if revalidated.matches:
            logger.debug(
                f"The resource located at {get_safe_url(self.request.url)} was not modified, "
                "keeping the stored response."
            )
        else:
            logger.debug(
                f"The origin did not confirm the stored response for {get_safe_url(self.request.url)}, "
                "serving it anyway."
            )
        return UpdateStored(
            request=self.request,
            options=self.options,
            key=self.key,
            entry=self.entry,
            response=response,
            policy=revalidated.policy,
            ttl_ms=ttl_ms,
            bypass_ttl_ms=bypass_ttl_ms,
        )


@dataclass
class StoreAndUse(State):
    key: str
    response: httpx.Response
    policy: PolicyEvaluator
    ttl_ms: float
    bypass_ttl_ms: float

    def next(self) -> None:
        return None


@dataclass
class CouldNotBeStored(State):
    response: httpx.Response

    def next(self) -> None:
        return None


@dataclass
class UpdateStored(State):
    key: str
    entry: CacheEntry
    response: httpx.Response
    policy: PolicyEvaluator
    ttl_ms: float
    bypass_ttl_ms: float

    def next(self) -> None:
        return None


AnyState = Union[
    Start,
    Passthrough,
    Lookup,
    Miss,
    BypassHit,
    DisabledWithEntry,
    FreshHit,
    StaleRevalidate,
    StoreAndUse,
    CouldNotBeStored,
    UpdateStored,
]

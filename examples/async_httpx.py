#!/usr/bin/env uv run
# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "fetch-hero[sqlite]",
# ]
#
# [tool.uv.sources]
# fetch-hero = { path = "../", editable = true }
# ///

import asyncio
import logging

import httpx

from fetchhero import (
    CACHE_STATUS_HEADER,
    BackoffOptions,
    BypassOptions,
    FetchHero,
    FetchHeroOptions,
    HttpCacheOptions,
    RetryingOptions,
)


async def fetch_and_print(fetch: FetchHero, url: str) -> None:
    print(f"\n➡ Sending request to {url}...")
    response = await fetch(url)

    print(f"📦 Status: {response.status_code}")
    print(f"🔄 Cache status: {response.headers[CACHE_STATUS_HEADER]}")
    print(f"⏰ Age: {response.headers.get('age', '-')}")


async def main() -> None:
    logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")
    url = "https://httpbin.org/cache/60"

    options = FetchHeroOptions(
        http_cache=HttpCacheOptions(store="sqlite://.fetchhero.sqlite", bypass=BypassOptions(ttl=30)),
        retrying=RetryingOptions(max_attempts=3, backoff=BackoffOptions(min_timeout=0.5)),
    )
    async with httpx.AsyncClient() as client, FetchHero(client.send, options) as fetch:
        await fetch_and_print(fetch, url)
        await fetch_and_print(fetch, url)


if __name__ == "__main__":
    asyncio.run(main())

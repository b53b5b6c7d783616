from __future__ import annotations

import logging
import typing as tp
from dataclasses import dataclass

import anyio

try:
    import anysqlite
except ImportError:  # pragma: no cover
    anysqlite = None  # type: ignore

try:
    import redis.asyncio as redis
except ImportError:  # pragma: no cover
    redis = None  # type: ignore

from ._exceptions import StoreError
from ._models import CacheEntry
from ._serializers import BaseSerializer, JSONSerializer
from ._utils import BaseClock, Clock

logger = logging.getLogger("fetchhero.storages")

__all__ = (
    "AsyncBaseStorage",
    "AsyncInMemoryStorage",
    "AsyncSQLiteStorage",
    "AsyncRedisStorage",
    "InMemoryStore",
    "ConnectionStringStore",
    "StoreConfig",
    "StoreTypes",
    "resolve_store",
    "create_storage",
)

SQLITE_SCHEME = "sqlite://"
REDIS_SCHEMES = ("redis://", "rediss://")


class AsyncBaseStorage:
    """
    Key to cache entry persistence with per-entry expiry.

    Every physical key is prefixed with `fetch-hero.{namespace}`, so several
    instances can share one backend. A `ttl_ms` that is not positive keeps
    the entry until it is overwritten.
    """

    def __init__(
        self,
        serializer: tp.Optional[BaseSerializer] = None,
        namespace: tp.Optional[str] = None,
        clock: tp.Optional[BaseClock] = None,
    ) -> None:
        self._serializer = serializer or JSONSerializer()
        self._namespace = f"fetch-hero.{namespace or 'default'}"
        self._clock = clock or Clock()

    def _physical_key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def _expires_at(self, ttl_ms: float) -> tp.Optional[float]:
        if ttl_ms <= 0:
            return None
        return self._clock.now_ms() + ttl_ms

    async def get(self, key: str) -> tp.Optional[CacheEntry]:
        raise NotImplementedError()

    async def set(self, key: str, entry: CacheEntry, ttl_ms: float) -> None:
        raise NotImplementedError()

    async def aclose(self) -> None:
        raise NotImplementedError()


class AsyncInMemoryStorage(AsyncBaseStorage):
    """
    A simple in-memory storage.

    Entries are kept serialized inside `mapping`, so any `MutableMapping`
    (a plain dict, an LRU mapping, a shelf) can back the cache.

    :param mapping: Mapping holding the entries, defaults to a new dict
    :type mapping: tp.Optional[tp.MutableMapping[str, tp.Any]], optional
    :param serializer: Serializer capable of serializing and de-serializing cache entries, defaults to None
    :type serializer: tp.Optional[BaseSerializer], optional
    :param namespace: Namespace applied to every key, defaults to None
    :type namespace: tp.Optional[str], optional
    """

    def __init__(
        self,
        mapping: tp.Optional[tp.MutableMapping[str, tp.Any]] = None,
        serializer: tp.Optional[BaseSerializer] = None,
        namespace: tp.Optional[str] = None,
        clock: tp.Optional[BaseClock] = None,
    ) -> None:
        super().__init__(serializer, namespace, clock)

        self._mapping: tp.MutableMapping[str, tp.Any] = mapping if mapping is not None else {}

    async def get(self, key: str) -> tp.Optional[CacheEntry]:
        physical_key = self._physical_key(key)
        stored = self._mapping.get(physical_key)
        if stored is None:
            return None

        data, expires_at = stored
        if expires_at is not None and expires_at <= self._clock.now_ms():
            logger.debug(f"Removing the expired entry {physical_key!r} from the in-memory storage.")
            self._mapping.pop(physical_key, None)
            return None

        return self._serializer.loads(data)

    async def set(self, key: str, entry: CacheEntry, ttl_ms: float) -> None:
        physical_key = self._physical_key(key)
        self._mapping[physical_key] = (self._serializer.dumps(entry), self._expires_at(ttl_ms))
        logger.debug(f"Stored the entry {physical_key!r} in the in-memory storage with a ttl of {ttl_ms}ms.")

    async def aclose(self) -> None:  # pragma: no cover
        return


class AsyncSQLiteStorage(AsyncBaseStorage):
    """
    A simple sqlite3 storage.

    :param connection: A connection for sqlite, defaults to None
    :type connection: tp.Optional[anysqlite.Connection], optional
    :param path: Database file opened lazily when no connection is given, defaults to ".fetchhero.sqlite"
    :type path: str, optional
    """

    def __init__(
        self,
        connection: tp.Optional[anysqlite.Connection] = None,
        path: str = ".fetchhero.sqlite",
        serializer: tp.Optional[BaseSerializer] = None,
        namespace: tp.Optional[str] = None,
        clock: tp.Optional[BaseClock] = None,
    ) -> None:
        if anysqlite is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `fetch-hero` installed with the `sqlite` extension as shown.\n"
                "```pip install fetch-hero[sqlite]```"
            )
        super().__init__(serializer, namespace, clock)

        self._connection: tp.Optional[anysqlite.Connection] = connection
        self._path = path
        self._setup_lock = anyio.Lock()
        self._setup_completed: bool = False
        self._lock = anyio.Lock()

    async def _setup(self) -> None:
        async with self._setup_lock:
            if not self._setup_completed:
                if not self._connection:
                    self._connection = await anysqlite.connect(self._path, check_same_thread=False)
                await self._connection.execute(
                    "CREATE TABLE IF NOT EXISTS cache(key TEXT PRIMARY KEY, data BLOB, expires_at REAL)"
                )
                await self._connection.commit()
                self._setup_completed = True

    async def get(self, key: str) -> tp.Optional[CacheEntry]:
        await self._setup()
        assert self._connection

        physical_key = self._physical_key(key)
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT data, expires_at FROM cache WHERE key = ?", [physical_key]
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            data, expires_at = row
            if expires_at is not None and expires_at <= self._clock.now_ms():
                logger.debug(f"Removing the expired entry {physical_key!r} from the sqlite storage.")
                await self._connection.execute("DELETE FROM cache WHERE key = ?", [physical_key])
                await self._connection.commit()
                return None

        return self._serializer.loads(data)

    async def set(self, key: str, entry: CacheEntry, ttl_ms: float) -> None:
        await self._setup()
        assert self._connection

        physical_key = self._physical_key(key)
        async with self._lock:
            await self._connection.execute(
                "INSERT OR REPLACE INTO cache(key, data, expires_at) VALUES(?, ?, ?)",
                [physical_key, self._serializer.dumps(entry), self._expires_at(ttl_ms)],
            )
            await self._connection.commit()
        logger.debug(f"Stored the entry {physical_key!r} in the sqlite storage with a ttl of {ttl_ms}ms.")

    async def aclose(self) -> None:
        if self._connection is not None:
            await self._connection.close()


class AsyncRedisStorage(AsyncBaseStorage):
    """
    A simple redis storage, expiry is delegated to redis itself.

    :param client: A client for redis, defaults to None
    :type client: tp.Optional["redis.Redis"], optional
    :param url: Connection url used when no client is given, defaults to None
    :type url: tp.Optional[str], optional
    """

    def __init__(
        self,
        client: tp.Optional[redis.Redis] = None,  # type: ignore
        url: tp.Optional[str] = None,
        serializer: tp.Optional[BaseSerializer] = None,
        namespace: tp.Optional[str] = None,
        clock: tp.Optional[BaseClock] = None,
    ) -> None:
        if redis is None:  # pragma: no cover
            raise RuntimeError(
                f"The `{type(self).__name__}` was used, but the required packages were not found. "
                "Check that you have `fetch-hero` installed with the `redis` extension as shown.\n"
                "```pip install fetch-hero[redis]```"
            )
        super().__init__(serializer, namespace, clock)

        if client is not None:
            self._client = client
        elif url is not None:
            self._client = redis.Redis.from_url(url)
        else:  # pragma: no cover
            self._client = redis.Redis()

    async def get(self, key: str) -> tp.Optional[CacheEntry]:
        data = await self._client.get(self._physical_key(key))
        if data is None:
            return None

        return self._serializer.loads(data)

    async def set(self, key: str, entry: CacheEntry, ttl_ms: float) -> None:
        physical_key = self._physical_key(key)
        px = int(ttl_ms) if ttl_ms >= 1 else None

        await self._client.set(physical_key, self._serializer.dumps(entry), px=px)
        logger.debug(f"Stored the entry {physical_key!r} in the redis storage with a ttl of {ttl_ms}ms.")

    async def aclose(self) -> None:  # pragma: no cover
        await self._client.aclose()


@dataclass
class InMemoryStore:
    mapping: tp.Optional[tp.MutableMapping[str, tp.Any]] = None


@dataclass
class ConnectionStringStore:
    uri: str


StoreConfig = tp.Union[InMemoryStore, ConnectionStringStore]
StoreTypes = tp.Union[StoreConfig, str, tp.MutableMapping[str, tp.Any], None]


def resolve_store(store: StoreTypes) -> StoreConfig:
    """
    Tag a store setting.

    A string is a connection string, a mapping or `None` selects the
    in-memory store.
    """
    if isinstance(store, (InMemoryStore, ConnectionStringStore)):
        return store
    if isinstance(store, str):
        return ConnectionStringStore(uri=store)
    if store is None or isinstance(store, tp.MutableMapping):
        return InMemoryStore(mapping=store)
    raise StoreError(f"Unsupported store setting of type {type(store).__name__!r}")


def create_storage(
    store: StoreTypes,
    namespace: tp.Optional[str] = None,
    clock: tp.Optional[BaseClock] = None,
    serializer: tp.Optional[BaseSerializer] = None,
) -> AsyncBaseStorage:
    config = resolve_store(store)

    if isinstance(config, InMemoryStore):
        return AsyncInMemoryStorage(config.mapping, serializer=serializer, namespace=namespace, clock=clock)

    uri = config.uri
    if uri.startswith(SQLITE_SCHEME):
        path = uri[len(SQLITE_SCHEME) :] or ":memory:"
        return AsyncSQLiteStorage(path=path, serializer=serializer, namespace=namespace, clock=clock)
    if uri.startswith(REDIS_SCHEMES):
        return AsyncRedisStorage(url=uri, serializer=serializer, namespace=namespace, clock=clock)

    scheme = uri.split("://", 1)[0] if "://" in uri else uri
    raise StoreError(f"Unsupported store connection string scheme {scheme!r}")

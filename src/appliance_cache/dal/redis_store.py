# Copyright (c) Kirky.X. 2025. All rights reserved.
import functools
from typing import Dict, List, Optional, Sequence

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..utils.config import RedisConfig
from ..utils.exceptions import StoreUnavailableError
from ..utils.logger import get_logger

logger = get_logger(__name__)


def _store_call(func):
    """Translate client and socket errors into `StoreUnavailableError`."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except (RedisError, OSError) as e:
            raise StoreUnavailableError(
                f"Cache store {func.__name__} failed: {e}",
                details={"operation": func.__name__}
            ) from e

    return wrapper


class RedisStore:
    """Networked key-value store with per-key TTL, backed by `redis.asyncio`.

    All keys are namespaced with `key_prefix`; callers always see raw keys.

    Args:
        client (aioredis.Redis): Connected client. Must not decode responses.
        key_prefix (str): Namespace prepended to every key.
        scan_count (int): COUNT hint for SCAN iterations.
    """

    def __init__(self, client: aioredis.Redis, key_prefix: str = "opnsense:", scan_count: int = 100):
        self._redis = client
        self.key_prefix = key_prefix
        self.scan_count = scan_count

    @classmethod
    def from_config(cls, config: RedisConfig, scan_count: int = 100) -> "RedisStore":
        if config.url:
            client = aioredis.from_url(
                config.url,
                decode_responses=False,
                socket_timeout=config.socket_timeout,
                socket_connect_timeout=config.connect_timeout,
            )
        else:
            client = aioredis.Redis(
                host=config.host,
                port=int(config.port),
                db=int(config.db),
                password=config.password,
                decode_responses=False,
                socket_timeout=config.socket_timeout,
                socket_connect_timeout=config.connect_timeout,
            )
        return cls(client, key_prefix=config.key_prefix, scan_count=scan_count)

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def _strip_key(self, key) -> str:
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        return key[len(self.key_prefix):] if key.startswith(self.key_prefix) else key

    @_store_call
    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    @_store_call
    async def get(self, key: str) -> Optional[bytes]:
        return await self._redis.get(self._make_key(key))

    @_store_call
    async def set(self, key: str, payload: bytes, ttl_seconds: int) -> None:
        await self._redis.setex(self._make_key(key), int(ttl_seconds), payload)

    @_store_call
    async def multi_get(self, keys: Sequence[str]) -> Dict[str, Optional[bytes]]:
        if not keys:
            return {}
        values = await self._redis.mget([self._make_key(k) for k in keys])
        return dict(zip(keys, values))

    @_store_call
    async def delete(self, keys: Sequence[str]) -> int:
        if not keys:
            return 0
        return int(await self._redis.delete(*[self._make_key(k) for k in keys]))

    @_store_call
    async def scan(self, pattern: str) -> List[str]:
        """Return every raw key matching the glob `pattern`."""
        keys = []
        async for key in self._redis.scan_iter(match=self._make_key(pattern), count=self.scan_count):
            keys.append(self._strip_key(key))
        # SCAN may yield a key more than once
        return list(dict.fromkeys(keys))

    @_store_call
    async def remaining_ttl(self, key: str) -> int:
        # -1 means no expiry and -2 a missing key; neither is a usable lifetime
        ttl = await self._redis.ttl(self._make_key(key))
        return max(int(ttl), 0)

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Cache store close failed: {e}")

# Copyright (c) Kirky.X. 2025. All rights reserved.
import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .analyzer import PatternAnalyzer
from .invalidation import InvalidationEngine, chunked
from .keys import CacheKey, classify_key, resource_of
from .pattern_table import PatternTable
from .serializer import Serializer
from .single_flight import SingleFlight
from .ttl import TtlCalculator
from ..dal.analytics import AnalyticsStore
from ..dal.database import Database
from ..dal.redis_store import RedisStore
from ..models.schemas import (
    CachedData, CacheMetadata, CacheStatistics, InvalidationReport,
    OverallStats, PatternSummary, ResourceStats
)
from ..utils.config import Config
from ..utils.exceptions import CacheEngineError, SerializationError, StoreUnavailableError
from ..utils.logger import get_logger

Fetcher = Callable[[], Awaitable[Any]]

TOP_PATTERNS = 20
LOW_HIT_RATE = 70
SLOW_RESPONSE_MS = 1000
HOT_PATTERN_FREQUENCY = 50
SLOW_PATTERN_MS = 500


@dataclass
class FetchRequest:
    key: str
    fetcher: Fetcher
    ttl: Optional[int] = None

    @classmethod
    def coerce(cls, item: Union["FetchRequest", Mapping[str, Any]]) -> "FetchRequest":
        if isinstance(item, cls):
            return item
        return cls(key=item["key"], fetcher=item["fetcher"], ttl=item.get("ttl"))


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def _hit_rate(hits: int, misses: int) -> float:
    total = hits + misses
    return hits / total * 100 if total else 0.0


class EnhancedCacheManager:
    """Adaptive read-through cache in front of expensive upstream fetches.

    Values are fetched through caller-supplied async fetchers, stored in the
    cache store with a TTL learned from access patterns, and invalidated by
    pattern with optional rule-driven cascade. When no cache store is
    available the manager runs in passthrough mode: every call reaches the
    fetcher and nothing is written to the store.

    Args:
        config (Config): Engine configuration.
        store (Optional[RedisStore]): Cache store, `None` for passthrough.
        analytics (Optional[AnalyticsStore]): Statistics, patterns, rules and audit.
        patterns (Optional[PatternTable]): Shared learned-pattern lookup.
        logger: Injected loguru logger; defaults to one bound to this module.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        store: Optional[RedisStore] = None,
        analytics: Optional[AnalyticsStore] = None,
        patterns: Optional[PatternTable] = None,
        logger=None
    ):
        self.config = config or Config.default()
        self.store = store
        self.analytics = analytics
        self.logger = logger or get_logger(__name__)
        self.patterns = patterns if patterns is not None else PatternTable()

        settings = self.config.cache
        self.serializer = Serializer.from_settings(settings)
        self.ttl = TtlCalculator(settings, self.patterns)
        self.analyzer = PatternAnalyzer(
            analytics,
            self.patterns,
            self.ttl,
            interval=settings.analysis_interval,
            window=settings.analysis_window,
            logger=self.logger,
        )
        self.invalidation = InvalidationEngine(
            store,
            analytics,
            batch_size=self.config.performance.batch_size,
            smart_invalidation=settings.enable_smart_invalidation,
            logger=self.logger,
        )
        self.single_flight = SingleFlight() if settings.single_flight else None
        self._database: Optional[Database] = None
        self._started = False

        if self.store is None:
            self.logger.warning("Cache running in passthrough mode: no cache store available")

    @classmethod
    async def create(cls, config: Optional[Config] = None, create_tables: bool = True, logger=None) -> "EnhancedCacheManager":
        """Connect both stores from configuration and start the engine.

        An unreachable cache store degrades the engine to passthrough instead
        of failing; the analytics database is required.
        """
        config = config or Config.default()
        logger = logger or get_logger(__name__)

        store = None
        if config.redis.enabled:
            candidate = RedisStore.from_config(config.redis, scan_count=config.performance.batch_size)
            try:
                await candidate.ping()
                store = candidate
                logger.info("Cache store connection established")
            except StoreUnavailableError as e:
                logger.warning(f"Cache store unavailable, degrading to passthrough: {e}")
                await candidate.close()

        database = Database(config.database)
        if create_tables:
            await database.create_all()

        manager = cls(config, store=store, analytics=AnalyticsStore(database), logger=logger)
        manager._database = database
        await manager.start()
        return manager

    @property
    def passthrough(self) -> bool:
        return self.store is None

    async def start(self) -> None:
        if self._started:
            return
        await self.invalidation.load_rules()
        if self.config.cache.enable_pattern_analysis:
            self.analyzer.start()
        self._started = True

    async def close(self) -> None:
        await self.analyzer.stop()
        if self.store is not None:
            await self.store.close()
        if self._database is not None:
            await self._database.close()
        self._started = False

    async def __aenter__(self) -> "EnhancedCacheManager":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # ------------------------------------------------------------------
    # read path
    # ------------------------------------------------------------------

    async def get(
        self,
        key: str,
        fetcher: Fetcher,
        ttl: Optional[int] = None,
        force_fetch: bool = False
    ) -> CachedData:
        """Return the value for `key`, fetching and caching it on a miss.

        Args:
            key (str): Flat `:`-delimited cache key, e.g. `cache:firewall:rules:all`.
            fetcher (Fetcher): Zero-argument coroutine function producing the value.
            ttl (Optional[int]): Explicit TTL, clamped to the configured band.
            force_fetch (bool): Skip the cache probe and always call `fetcher`.

        Returns:
            CachedData: The value plus metadata; `metadata.source` is `cache` or `api`.

        Raises:
            Exception: Whatever `fetcher` raises, unchanged.
        """
        start = time.perf_counter()
        key_info = classify_key(key)

        if self.store is None:
            return await self._passthrough(key_info, fetcher)

        if not force_fetch:
            cached = await self._probe(key_info, start)
            if cached is not None:
                return cached

        if self.single_flight is not None:
            return await self.single_flight.do(
                key, lambda: self._fetch_and_cache(key_info, fetcher, ttl)
            )
        return await self._fetch_and_cache(key_info, fetcher, ttl)

    async def _probe(self, key_info: CacheKey, start: float) -> Optional[CachedData]:
        try:
            payload = await self.store.get(key_info.raw)
        except StoreUnavailableError as e:
            self.logger.warning(f"Cache get error, treating as miss: {e}")
            return None
        if payload is None:
            return None

        try:
            value = self.serializer.deserialize(payload)
        except SerializationError as e:
            self.logger.warning(f"Discarding undecodable entry {key_info.raw}: {e}")
            return None

        try:
            remaining = await self.store.remaining_ttl(key_info.raw)
        except StoreUnavailableError as e:
            self.logger.warning(f"Cache ttl lookup failed for {key_info.raw}: {e}")
            remaining = 0

        elapsed = _elapsed_ms(start)
        await self._record_access(key_info.raw, True, elapsed, len(payload))
        return CachedData(
            value=value,
            metadata=CacheMetadata(
                ttl=remaining,
                source="cache",
                execution_time_ms=elapsed,
                pattern=key_info.pattern,
            )
        )

    async def _fetch_and_cache(self, key_info: CacheKey, fetcher: Fetcher, requested_ttl: Optional[int]) -> CachedData:
        start = time.perf_counter()
        value = await fetcher()
        elapsed = _elapsed_ms(start)

        ttl = self.ttl.calculate(key_info, requested_ttl)
        size = await self._write(key_info.raw, value, ttl)

        await self._record_access(key_info.raw, False, elapsed, size)
        if self.config.cache.enable_pattern_analysis:
            await self.analyzer.record_miss(key_info, elapsed)

        return CachedData(
            value=value,
            metadata=CacheMetadata(
                ttl=ttl,
                source="api",
                execution_time_ms=elapsed,
                pattern=key_info.pattern,
            )
        )

    async def _passthrough(self, key_info: CacheKey, fetcher: Fetcher) -> CachedData:
        start = time.perf_counter()
        value = await fetcher()
        elapsed = _elapsed_ms(start)

        await self._record_access(key_info.raw, False, elapsed, 0)
        if self.config.cache.enable_pattern_analysis:
            await self.analyzer.record_miss(key_info, elapsed)

        return CachedData(
            value=value,
            metadata=CacheMetadata(
                ttl=0,
                source="api",
                execution_time_ms=elapsed,
                pattern=key_info.pattern,
            )
        )

    async def _write(self, key: str, value: Any, ttl: int) -> int:
        """Serialize and store `value`; returns the payload size, 0 if not stored."""
        try:
            payload = self.serializer.serialize(value)
        except SerializationError as e:
            self.logger.warning(f"Not caching {key}: {e}")
            return 0
        try:
            await self.store.set(key, payload, ttl)
        except StoreUnavailableError as e:
            self.logger.warning(f"Cache set error for {key}: {e}")
        return len(payload)

    async def _record_access(self, key: str, hit: bool, elapsed_ms: float, size: int) -> None:
        if self.analytics is None:
            return
        try:
            await self.analytics.record_access(key, hit, elapsed_ms, size)
        except CacheEngineError as e:
            self.logger.warning(f"Failed to update cache stats for {key}: {e}")

    # ------------------------------------------------------------------
    # batch path
    # ------------------------------------------------------------------

    async def get_batch(
        self,
        requests: Sequence[Union[FetchRequest, Mapping[str, Any]]]
    ) -> Dict[str, CachedData]:
        """Fetch many keys with one store round trip and bounded fan-out.

        Cached keys are returned as `source="cache"`. Misses are fetched in
        chunks of `max_concurrency`; each chunk runs concurrently and must
        finish before the next starts. Fetched values are tagged
        `source="batch"`.

        Args:
            requests: `FetchRequest` objects or mappings with `key`, `fetcher`
                and optional `ttl`.

        Returns:
            Dict[str, CachedData]: Results keyed by request key, in input order.

        Raises:
            Exception: The first fetcher failure, unchanged.
        """
        reqs = [FetchRequest.coerce(r) for r in requests]
        if not reqs:
            return {}

        if self.store is None:
            values = await asyncio.gather(*(r.fetcher() for r in reqs))
            return {
                r.key: CachedData(value=v, metadata=CacheMetadata(ttl=0, source="api"))
                for r, v in zip(reqs, values)
            }

        keys = list(dict.fromkeys(r.key for r in reqs))
        try:
            cached = await self.store.multi_get(keys)
        except StoreUnavailableError as e:
            self.logger.warning(f"Cache multi-get error, treating all as misses: {e}")
            cached = {}

        results: Dict[str, CachedData] = {}
        misses: List[FetchRequest] = []
        for req in reqs:
            payload = cached.get(req.key)
            if payload is None:
                misses.append(req)
                continue
            try:
                value = self.serializer.deserialize(payload)
            except SerializationError as e:
                self.logger.warning(f"Discarding undecodable entry {req.key}: {e}")
                misses.append(req)
                continue
            key_info = classify_key(req.key)
            results[req.key] = CachedData(
                value=value,
                metadata=CacheMetadata(
                    ttl=self.ttl.calculate(key_info, req.ttl),
                    source="cache",
                    pattern=key_info.pattern,
                )
            )
            await self._record_access(req.key, True, 0.0, len(payload))

        for chunk in chunked(misses, self.config.performance.max_concurrency):
            fetched = await asyncio.gather(*(self._fetch_for_batch(r) for r in chunk))
            for req, data in zip(chunk, fetched):
                results[req.key] = data

        return {r.key: results[r.key] for r in reqs}

    async def _fetch_for_batch(self, req: FetchRequest) -> CachedData:
        start = time.perf_counter()
        value = await req.fetcher()
        elapsed = _elapsed_ms(start)

        key_info = classify_key(req.key)
        ttl = self.ttl.calculate(key_info, req.ttl)
        size = await self._write(req.key, value, ttl)
        await self._record_access(req.key, False, elapsed, size)

        return CachedData(
            value=value,
            metadata=CacheMetadata(
                ttl=ttl,
                source="batch",
                execution_time_ms=elapsed,
                pattern=key_info.pattern,
            )
        )

    async def warm(self, requests: Sequence[Union[FetchRequest, Mapping[str, Any]]]) -> int:
        """Force-fetch and store every request, `max_concurrency` at a time.

        Returns:
            int: Number of keys written. Always 0 in passthrough mode.
        """
        if self.store is None:
            self.logger.info("Skipping cache warm-up: no cache store")
            return 0
        reqs = [FetchRequest.coerce(r) for r in requests]
        for chunk in chunked(reqs, self.config.performance.max_concurrency):
            await asyncio.gather(*(
                self._fetch_and_cache(classify_key(r.key), r.fetcher, r.ttl) for r in chunk
            ))
        self.logger.info(f"Cache warmed with {len(reqs)} key(s)")
        return len(reqs)

    # ------------------------------------------------------------------
    # invalidation
    # ------------------------------------------------------------------

    async def invalidate(self, pattern: str, cascade: bool = False, reason: Optional[str] = None) -> InvalidationReport:
        return await self.invalidation.invalidate(pattern, cascade=cascade, reason=reason)

    async def invalidate_for_operation(self, operation: str, reason: Optional[str] = None) -> List[InvalidationReport]:
        return await self.invalidation.invalidate_for_operation(operation, reason=reason)

    async def reload_rules(self) -> int:
        return await self.invalidation.load_rules()

    # ------------------------------------------------------------------
    # insight
    # ------------------------------------------------------------------

    async def get_statistics(self) -> CacheStatistics:
        """Aggregate hit rates, per-resource figures and the hottest patterns.

        Raises:
            AnalyticsError: When the analytics store cannot be queried.
        """
        if self.analytics is None:
            return CacheStatistics(overall=OverallStats())

        totals = await self.analytics.overall_stats()
        overall = OverallStats(
            hits=totals["hits"],
            misses=totals["misses"],
            hit_rate=_hit_rate(totals["hits"], totals["misses"]),
            avg_response_time=totals["avg_response_time"],
        )

        grouped = defaultdict(list)
        for row in await self.analytics.stat_rows():
            grouped[resource_of(row.key)].append(row)
        by_resource = {}
        for resource, rows in grouped.items():
            hits = sum(r.hits or 0 for r in rows)
            misses = sum(r.misses or 0 for r in rows)
            by_resource[resource] = ResourceStats(
                resource=resource,
                hits=hits,
                misses=misses,
                hit_rate=_hit_rate(hits, misses),
                avg_response_time=sum(r.avg_response_time or 0.0 for r in rows) / len(rows),
            )

        patterns = [
            PatternSummary(
                pattern=p.pattern,
                frequency=p.frequency,
                avg_execution_time=p.avg_execution_time,
                suggested_ttl=p.suggested_ttl or self.config.cache.default_ttl,
                cache_priority=p.cache_priority,
            )
            for p in await self.analytics.top_patterns(TOP_PATTERNS)
        ]

        return CacheStatistics(
            overall=overall,
            by_resource=by_resource,
            patterns=patterns,
            recommendations=generate_recommendations(overall, patterns),
        )

    async def health(self) -> Dict[str, Any]:
        store_ok = False
        if self.store is not None:
            try:
                store_ok = await self.store.ping()
            except StoreUnavailableError as e:
                self.logger.warning(f"Cache store health check failed: {e}")
        return {
            "status": "healthy" if store_ok else "degraded",
            "store_available": store_ok,
            "passthrough": self.passthrough,
            "analytics_enabled": self.analytics is not None,
            "analyzer_running": self.analyzer.running,
            "invalidation_rules": len(self.invalidation.rules),
            "patterns_cached": len(self.patterns),
        }


def generate_recommendations(overall: OverallStats, patterns: Sequence[PatternSummary]) -> List[str]:
    recommendations = []
    if overall.hits + overall.misses == 0:
        return recommendations

    if overall.hit_rate < LOW_HIT_RATE:
        recommendations.append(
            "Consider increasing cache TTL for frequently accessed resources"
        )
    if overall.avg_response_time > SLOW_RESPONSE_MS:
        recommendations.append(
            "High average response time detected. Consider pre-warming cache for critical paths"
        )

    hot_slow = [
        p.pattern for p in patterns
        if p.frequency > HOT_PATTERN_FREQUENCY and p.avg_execution_time > SLOW_PATTERN_MS
    ]
    if hot_slow:
        recommendations.append(
            f"Optimize caching for slow, frequent queries: {', '.join(hot_slow)}"
        )
    return recommendations

# Copyright (c) Kirky.X. 2025. All rights reserved.
import asyncio
import datetime
from typing import Optional

from .keys import CacheKey
from .pattern_table import PatternSnapshot, PatternTable
from .ttl import TtlCalculator
from ..models.orm import utcnow
from ..utils.exceptions import CacheEngineError
from ..utils.logger import get_logger


class PatternAnalyzer:
    """Learns per-pattern access statistics and derives suggested TTLs.

    Two triggers feed the same `query_patterns` rows: an inline update on every
    cache miss, and a periodic bulk recompute over recently active patterns.
    The periodic loop is an asyncio task owned by `start()` / `stop()`; nothing
    runs until `start()` is called.

    Args:
        analytics (Optional[AnalyticsStore]): Persistence; `None` disables learning.
        patterns (PatternTable): Shared in-memory lookup refreshed after each update.
        ttl (TtlCalculator): Provides the TTL band and the suggestion formula.
        interval (float): Seconds between periodic passes.
        window (float): Only patterns executed within this many seconds are recomputed.
        logger: Injected loguru logger.
    """

    def __init__(
        self,
        analytics,
        patterns: PatternTable,
        ttl: TtlCalculator,
        interval: float = 300,
        window: float = 3600,
        logger=None
    ):
        self.analytics = analytics
        self.patterns = patterns
        self.ttl = ttl
        self.interval = interval
        self.window = window
        self.logger = logger or get_logger(__name__)
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def record_miss(self, key: CacheKey, execution_time_ms: float) -> Optional[PatternSnapshot]:
        """Inline update for one miss. Failures are logged and swallowed."""
        if self.analytics is None:
            return None
        try:
            row = await self.analytics.upsert_pattern(
                key.pattern, execution_time_ms, self.ttl.settings.default_ttl
            )
            suggested = self.ttl.suggest(row.frequency, row.avg_execution_time)
            if suggested != row.suggested_ttl:
                await self.analytics.set_suggested_ttl(row.pattern, suggested)
                row = PatternSnapshot(
                    pattern=row.pattern,
                    frequency=row.frequency,
                    avg_execution_time=row.avg_execution_time,
                    suggested_ttl=suggested,
                    cache_priority=row.cache_priority,
                    last_executed=row.last_executed,
                )
            self.patterns.put(row)
            return row
        except CacheEngineError as e:
            self.logger.warning(f"Failed to update query pattern {key.pattern}: {e}")
            return None

    async def run_once(self) -> int:
        """Recompute suggested TTLs for recently active patterns.

        Returns:
            int: Number of patterns whose suggestion changed.
        """
        if self.analytics is None:
            return 0
        since = utcnow() - datetime.timedelta(seconds=self.window)
        changed = 0
        for row in await self.analytics.active_patterns(since):
            suggested = self.ttl.suggest(row.frequency, row.avg_execution_time)
            if suggested != row.suggested_ttl:
                await self.analytics.set_suggested_ttl(row.pattern, suggested)
                changed += 1
            self.patterns.put(PatternSnapshot(
                pattern=row.pattern,
                frequency=row.frequency,
                avg_execution_time=row.avg_execution_time,
                suggested_ttl=suggested,
                cache_priority=row.cache_priority,
                last_executed=row.last_executed,
            ))
        self.logger.debug(f"Pattern analysis pass updated {changed} pattern(s)")
        return changed

    async def _loop(self):
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_once()
            except CacheEngineError as e:
                self.logger.error(f"Pattern analysis error: {e}")
            except Exception as e:
                self.logger.exception(f"Unexpected pattern analysis error: {e}")

    def start(self) -> None:
        if self.running or self.analytics is None:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="pattern-analyzer")
        self.logger.info(f"Pattern analyzer started (interval={self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            self.logger.info("Pattern analyzer stopped")

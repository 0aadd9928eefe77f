# Copyright (c) Kirky.X. 2025. All rights reserved.
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from appliance_cache.core.analyzer import PatternAnalyzer
from appliance_cache.core.keys import classify_key
from appliance_cache.core.pattern_table import PatternTable
from appliance_cache.core.ttl import TtlCalculator
from appliance_cache.utils.config import CacheSettings
from appliance_cache.utils.exceptions import AnalyticsError


@pytest.fixture
def analyzer(analytics):
    patterns = PatternTable()
    return PatternAnalyzer(analytics, patterns, TtlCalculator(CacheSettings(), patterns), interval=0.01)


async def miss_many(analyzer, key, count, ms):
    row = None
    for _ in range(count):
        row = await analyzer.record_miss(classify_key(key), ms)
    return row


@pytest.mark.asyncio
async def test_priority_five_after_sixty_slow_misses(analyzer):
    row = await miss_many(analyzer, "cache:firewall:rules:all", 60, 600.0)
    assert row.frequency == 60
    assert row.avg_execution_time == pytest.approx(600.0)
    assert row.cache_priority == 5


@pytest.mark.asyncio
async def test_priority_ten_after_hundred_fifty_very_slow_misses(analyzer):
    row = await miss_many(analyzer, "cache:system:info:all", 150, 1200.0)
    assert row.frequency == 150
    assert row.cache_priority == 10


@pytest.mark.asyncio
async def test_record_miss_refreshes_pattern_table(analyzer):
    row = await miss_many(analyzer, "cache:network:interfaces:lan", 20, 300.0)
    cached = analyzer.patterns.get("cache:network:interfaces:*")
    assert cached == row
    assert cached.suggested_ttl == analyzer.ttl.suggest(row.frequency, row.avg_execution_time)

    stored = (await analyzer.analytics.top_patterns())[0]
    assert stored.suggested_ttl == cached.suggested_ttl


@pytest.mark.asyncio
async def test_record_miss_swallows_analytics_errors(analyzer):
    with patch.object(analyzer.analytics, "upsert_pattern", AsyncMock(side_effect=AnalyticsError("down"))):
        assert await analyzer.record_miss(classify_key("cache:a:b:c"), 1.0) is None
    assert len(analyzer.patterns) == 0


@pytest.mark.asyncio
async def test_run_once_recomputes_stale_suggestions(analyzer):
    await analyzer.analytics.upsert_pattern("cache:backup:list:*", 2000.0, 300)
    await analyzer.analytics.upsert_pattern("cache:dhcp:leases:*", 10.0, 300)
    await analyzer.analytics.set_suggested_ttl("cache:backup:list:*", 61)

    changed = await analyzer.run_once()

    assert changed == 2
    backup = analyzer.patterns.get("cache:backup:list:*")
    assert backup.suggested_ttl == analyzer.ttl.suggest(1, 2000.0)
    assert "cache:dhcp:leases:*" in analyzer.patterns


@pytest.mark.asyncio
async def test_start_stop_periodic_loop(analyzer):
    with patch.object(analyzer, "run_once", AsyncMock(return_value=0)) as run_once:
        analyzer.start()
        assert analyzer.running
        await asyncio.sleep(0.1)
        await analyzer.stop()
    assert not analyzer.running
    assert run_once.await_count >= 1


@pytest.mark.asyncio
async def test_loop_survives_analytics_errors(analyzer):
    with patch.object(analyzer, "run_once", AsyncMock(side_effect=AnalyticsError("down"))) as run_once:
        analyzer.start()
        await asyncio.sleep(0.1)
        assert analyzer.running
        await analyzer.stop()
    assert run_once.await_count >= 2


@pytest.mark.asyncio
async def test_start_without_analytics_is_noop():
    patterns = PatternTable()
    analyzer = PatternAnalyzer(None, patterns, TtlCalculator(CacheSettings(), patterns))
    analyzer.start()
    assert not analyzer.running
    assert await analyzer.run_once() == 0
    assert await analyzer.record_miss(classify_key("a:b"), 1.0) is None
    await analyzer.stop()


@pytest.mark.asyncio
async def test_loop_survives_unexpected_errors(analyzer):
    refused = ConnectionRefusedError(111, "Connect call failed")
    with patch.object(analyzer, "run_once", AsyncMock(side_effect=refused)) as run_once:
        analyzer.start()
        await asyncio.sleep(0.1)
        assert analyzer.running
        await analyzer.stop()
    assert run_once.await_count >= 2

# Copyright (c) Kirky.X. 2025. All rights reserved.
import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from appliance_cache.core.manager import EnhancedCacheManager, FetchRequest
from appliance_cache.core.serializer import COMPRESSION_MARKER
from appliance_cache.utils.config import Config, DatabaseConfig, RedisConfig

FIREWALL_RULES = {"rules": [{"uuid": "r1", "action": "pass", "interface": "lan"}]}


@pytest.mark.asyncio
async def test_second_get_is_served_from_cache(manager, make_fetcher):
    fetcher = make_fetcher(FIREWALL_RULES)

    first = await manager.get("cache:firewall:rules:all", fetcher)
    second = await manager.get("cache:firewall:rules:all", fetcher)

    assert first.metadata.source == "api"
    assert first.metadata.ttl == 300
    assert first.metadata.pattern == "cache:firewall:rules:*"
    assert second.metadata.source == "cache"
    assert second.from_cache
    assert 0 < second.metadata.ttl <= 300
    assert second.value == first.value == FIREWALL_RULES
    assert fetcher.calls == 1

    stat = await manager.analytics.get_stat("cache:firewall:rules:all")
    assert (stat.hits, stat.misses) == (1, 1)


@pytest.mark.asyncio
async def test_force_fetch_bypasses_cache(manager, make_fetcher):
    fetcher = make_fetcher({"v": 1})
    await manager.get("cache:system:info:all", fetcher)
    fetcher.value = {"v": 2}

    refreshed = await manager.get("cache:system:info:all", fetcher, force_fetch=True)
    cached = await manager.get("cache:system:info:all", fetcher)

    assert refreshed.metadata.source == "api"
    assert cached.value == {"v": 2}
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_fetcher_error_propagates_unchanged(manager, make_fetcher):
    error = RuntimeError("appliance returned 502")
    fetcher = make_fetcher(error=error)

    with pytest.raises(RuntimeError) as exc:
        await manager.get("cache:firewall:rules:all", fetcher)

    assert exc.value is error
    assert await manager.store.get("cache:firewall:rules:all") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("requested, expected", [(5, 60), (900, 900), (10 ** 6, 3600)])
async def test_written_ttl_within_band(manager, make_fetcher, requested, expected):
    result = await manager.get("cache:dhcp:leases:all", make_fetcher([1]), ttl=requested)
    assert result.metadata.ttl == expected
    assert 0 < await manager.store.remaining_ttl("cache:dhcp:leases:all") <= expected


@pytest.mark.asyncio
async def test_large_values_are_compressed_in_store(manager, make_fetcher):
    value = {"leases": [{"mac": "00:11:22:33:44:%02x" % i, "ip": "10.0.0.%d" % i} for i in range(100)]}
    await manager.get("cache:dhcp:leases:all", make_fetcher(value))

    raw = await manager.store.get("cache:dhcp:leases:all")
    assert raw.startswith(COMPRESSION_MARKER)
    assert (await manager.get("cache:dhcp:leases:all", make_fetcher())).value == value


@pytest.mark.asyncio
async def test_corrupt_entry_is_refetched_and_overwritten(manager, make_fetcher):
    await manager.store.set("cache:network:vlans:all", COMPRESSION_MARKER + b"garbage", 60)
    fetcher = make_fetcher(["vlan10"])

    result = await manager.get("cache:network:vlans:all", fetcher)

    assert result.metadata.source == "api"
    assert fetcher.calls == 1
    assert await manager.store.get("cache:network:vlans:all") == b'["vlan10"]'


@pytest.mark.asyncio
async def test_miss_updates_learned_ttl(manager, make_fetcher):
    for i in range(3):
        await manager.get(f"cache:backup:list:{i}", make_fetcher([i]))

    learned = manager.patterns.get("cache:backup:list:*")
    assert learned.frequency == 3
    assert learned.suggested_ttl != 3600
    # the learned suggestion now drives new keys of the same pattern
    result = await manager.get("cache:backup:list:new", make_fetcher([]))
    assert result.metadata.ttl == learned.suggested_ttl


@pytest.mark.asyncio
async def test_get_batch_mixes_cache_and_fetch(manager, make_fetcher):
    await manager.store.set("a", manager.serializer.serialize({"cached": True}), 60)
    fa = make_fetcher({"cached": False})
    fb = make_fetcher({"fetched": True})

    result = await manager.get_batch([
        FetchRequest(key="a", fetcher=fa),
        {"key": "b", "fetcher": fb},
    ])

    assert list(result) == ["a", "b"]
    assert result["a"].metadata.source == "cache"
    assert result["a"].value == {"cached": True}
    assert result["b"].metadata.source == "batch"
    assert result["b"].value == {"fetched": True}
    assert fa.calls == 0
    assert fb.calls == 1
    assert await manager.store.get("b") == b'{"fetched":true}'


@pytest.mark.asyncio
async def test_get_batch_bounds_concurrency(config, store, analytics):
    config.performance.max_concurrency = 2
    manager = EnhancedCacheManager(config, store=store, analytics=analytics)
    active = 0
    peak = 0

    def make(i):
        async def fetch():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return i
        return fetch

    keys = [f"cache:firewall:rules:{i}" for i in range(5)]
    result = await manager.get_batch([FetchRequest(k, make(i)) for i, k in enumerate(keys)])

    assert peak == 2
    assert list(result) == keys
    assert [r.value for r in result.values()] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_get_batch_empty(manager):
    assert await manager.get_batch([]) == {}


@pytest.mark.asyncio
async def test_get_batch_fetcher_error_propagates(manager, make_fetcher):
    with pytest.raises(ValueError):
        await manager.get_batch([FetchRequest("x", make_fetcher(error=ValueError("bad")))])


@pytest.mark.asyncio
async def test_passthrough_without_store(passthrough_manager, make_fetcher):
    fetcher = make_fetcher({"ok": True})

    first = await passthrough_manager.get("cache:firewall:rules:all", fetcher)
    second = await passthrough_manager.get("cache:firewall:rules:all", fetcher)

    assert first.metadata.source == second.metadata.source == "api"
    assert first.metadata.ttl == 0
    assert second.value == {"ok": True}
    assert fetcher.calls == 2
    assert passthrough_manager.passthrough

    batch = await passthrough_manager.get_batch([FetchRequest("a", make_fetcher(1)), FetchRequest("b", make_fetcher(2))])
    assert [(d.metadata.source, d.metadata.ttl, d.value) for d in batch.values()] == [("api", 0, 1), ("api", 0, 2)]

    report = await passthrough_manager.invalidate("cache:*")
    assert report.invalidated_count == 0
    assert await passthrough_manager.warm([FetchRequest("a", make_fetcher(1))]) == 0


@pytest.mark.asyncio
async def test_unreachable_store_degrades_to_fetcher(manager, redis_client, make_fetcher):
    refused = AsyncMock(side_effect=RedisConnectionError("Connection refused"))
    fetcher = make_fetcher({"ok": True})

    with patch.object(redis_client, "get", refused), \
            patch.object(redis_client, "setex", refused), \
            patch.object(redis_client, "mget", refused):
        result = await manager.get("cache:firewall:rules:all", fetcher)
        batch = await manager.get_batch([FetchRequest("cache:firewall:rules:all", fetcher)])

    assert result.metadata.source == "api"
    assert result.value == {"ok": True}
    assert batch["cache:firewall:rules:all"].metadata.source == "batch"
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_create_degrades_when_store_unreachable(tmp_path, make_fetcher):
    config = Config(
        # nothing listens on port 1
        redis=RedisConfig(host="127.0.0.1", port=1, connect_timeout=0.2, socket_timeout=0.2),
        database=DatabaseConfig(type="sqlite", path=str(tmp_path / "create.db")),
    )
    manager = await EnhancedCacheManager.create(config)
    try:
        assert manager.passthrough
        result = await manager.get("cache:system:info:all", make_fetcher({"uptime": 1}))
        assert result.metadata.source == "api"
        assert result.metadata.ttl == 0
        health = await manager.health()
        assert health["status"] == "degraded"
        assert health["analyzer_running"] is True
    finally:
        await manager.close()
    assert not manager.analyzer.running


@pytest.mark.asyncio
async def test_hit_rate_statistics(manager):
    for i in range(70):
        await manager.analytics.record_access(f"cache:firewall:rules:{i % 7}", True, 10.0, 100)
    for i in range(30):
        await manager.analytics.record_access(f"cache:network:interfaces:{i % 3}", False, 10.0, 100)

    stats = await manager.get_statistics()

    assert stats.overall.hits == 70
    assert stats.overall.misses == 30
    assert stats.overall.hit_rate == 70
    assert stats.by_resource["firewall"].hit_rate == 100
    assert stats.by_resource["network"].misses == 30
    assert stats.recommendations == []


@pytest.mark.asyncio
async def test_statistics_list_top_patterns(manager, make_fetcher):
    for i in range(4):
        await manager.get(f"cache:firewall:rules:{i}", make_fetcher(i))
    await manager.get("cache:network:vlans:all", make_fetcher([]))

    stats = await manager.get_statistics()

    assert stats.patterns[0].pattern == "cache:firewall:rules:*"
    assert stats.patterns[0].frequency == 4
    assert stats.overall.hit_rate == 0
    assert "Consider increasing cache TTL for frequently accessed resources" in stats.recommendations


@pytest.mark.asyncio
async def test_invalidate_then_refetch(manager, make_fetcher):
    fetcher = make_fetcher(FIREWALL_RULES)
    await manager.get("cache:firewall:rules:all", fetcher)

    report = await manager.invalidate("cache:firewall:*", reason="rule added")
    again = await manager.get("cache:firewall:rules:all", fetcher)

    assert report.invalidated_count == 1
    assert again.metadata.source == "api"
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_operation_invalidation_after_reload(manager, make_fetcher):
    await manager.analytics.seed_rules()
    assert await manager.reload_rules() == 11
    await manager.get("cache:network:vlans:all", make_fetcher([10]))
    await manager.get("cache:firewall:rules:all", make_fetcher([]))

    reports = await manager.invalidate_for_operation("network:vlan:create")

    assert sum(r.total_invalidated for r in reports) == 1
    assert await manager.store.get("cache:firewall:rules:all") is not None


@pytest.mark.asyncio
async def test_warm_populates_cache(manager, make_fetcher):
    requests = [FetchRequest(f"cache:system:info:{i}", make_fetcher({"i": i})) for i in range(3)]

    assert await manager.warm(requests) == 3
    hit = await manager.get("cache:system:info:1", make_fetcher())
    assert hit.metadata.source == "cache"
    assert hit.value == {"i": 1}


@pytest.mark.asyncio
async def test_single_flight_coalesces_concurrent_misses(config, store, analytics):
    config.cache.single_flight = True
    manager = EnhancedCacheManager(config, store=store, analytics=analytics)
    calls = 0

    async def slow_fetch():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.05)
        return {"ok": True}

    results = await asyncio.gather(*(manager.get("cache:firewall:rules:all", slow_fetch) for _ in range(5)))

    assert calls == 1
    assert all(r.value == {"ok": True} for r in results)


@pytest.mark.asyncio
async def test_concurrent_misses_without_single_flight_all_fetch(manager):
    calls = 0

    async def slow_fetch():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.02)
        return 1

    await asyncio.gather(*(manager.get("cache:firewall:rules:all", slow_fetch) for _ in range(3)))
    assert calls == 3


@pytest.mark.asyncio
async def test_health_and_context_manager(config, store, analytics):
    async with EnhancedCacheManager(config, store=store, analytics=analytics) as manager:
        health = await manager.health()
        assert health["status"] == "healthy"
        assert health["store_available"] is True
        assert health["analyzer_running"] is True
    assert not manager.analyzer.running


@pytest.mark.asyncio
async def test_unreachable_analytics_database_does_not_fail_reads(manager, make_fetcher):
    refused = ConnectionRefusedError(111, "Connect call failed ('127.0.0.1', 1)")
    fetcher = make_fetcher(FIREWALL_RULES)

    with patch.object(manager.analytics.db, "get_session", side_effect=refused):
        miss = await manager.get("cache:firewall:rules:all", fetcher)
        hit = await manager.get("cache:firewall:rules:all", fetcher)
        batch = await manager.get_batch([FetchRequest("cache:network:vlans:all", make_fetcher([10]))])

    assert miss.metadata.source == "api"
    assert miss.value == FIREWALL_RULES
    assert hit.metadata.source == "cache"
    assert batch["cache:network:vlans:all"].value == [10]
    assert fetcher.calls == 1

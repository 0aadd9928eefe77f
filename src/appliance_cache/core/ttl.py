# Copyright (c) Kirky.X. 2025. All rights reserved.
from typing import Optional

from .keys import CacheKey
from .pattern_table import PatternTable

FREQUENCY_SCALE = 100
EXECUTION_SCALE_MS = 1000.0
FACTOR_CAP = 2


def clamp(value: float, low: int, high: int) -> int:
    return int(min(max(value, low), high))


def optimal_ttl(frequency: int, avg_execution_time: float, base_ttl: int, min_ttl: int, max_ttl: int) -> int:
    """Suggested TTL for a pattern from its observed frequency and latency.

    Hot, slow patterns earn up to five times the base TTL; rare, fast ones stay
    close to it. The result is always inside `[min_ttl, max_ttl]`.
    """
    frequency_factor = min((frequency or 0) / FREQUENCY_SCALE, FACTOR_CAP)
    execution_factor = min((avg_execution_time or 0.0) / EXECUTION_SCALE_MS, FACTOR_CAP)
    return clamp(base_ttl * (1 + frequency_factor + execution_factor), min_ttl, max_ttl)


def cache_priority(frequency: int, avg_execution_time: float) -> int:
    if frequency > 100 and avg_execution_time > 1000:
        return 10
    if frequency > 50 and avg_execution_time > 500:
        return 5
    if frequency > 10:
        return 1
    return 0


class TtlCalculator:
    """Derives the effective TTL for a cache write.

    First applicable source wins: an explicit request (clamped), the learned
    suggestion for the key's pattern, the resource category default, then the
    global default.

    Args:
        settings (CacheSettings): TTL band and default.
        patterns (PatternTable): Shared learned-pattern lookup.
    """

    def __init__(self, settings, patterns: PatternTable):
        self.settings = settings
        self.patterns = patterns

    def clamp(self, ttl: float) -> int:
        return clamp(ttl, self.settings.min_ttl, self.settings.max_ttl)

    def calculate(self, key: CacheKey, requested_ttl: Optional[int] = None) -> int:
        if requested_ttl is not None:
            return self.clamp(requested_ttl)

        learned = self.patterns.get(key.pattern)
        if learned is not None and learned.suggested_ttl:
            return learned.suggested_ttl

        resource_default = key.resource_type.default_ttl
        if resource_default is not None:
            return resource_default

        return self.settings.default_ttl

    def suggest(self, frequency: int, avg_execution_time: float) -> int:
        return optimal_ttl(
            frequency,
            avg_execution_time,
            self.settings.default_ttl,
            self.settings.min_ttl,
            self.settings.max_ttl,
        )

# Copyright (c) Kirky.X. 2025. All rights reserved.
import time
from typing import List, Optional, Sequence

from ..models.schemas import InvalidationReport
from ..utils.exceptions import CacheEngineError, InvalidationError
from ..utils.logger import get_logger

GLOB_CHARS = set("*?[")
WILDCARD_SUFFIX = ":*"


def normalize_pattern(pattern: str) -> str:
    """Drop a trailing `:*` so `a:b` and `a:b:*` name the same namespace."""
    while pattern.endswith(WILDCARD_SUFFIX):
        pattern = pattern[:-len(WILDCARD_SUFFIX)]
    return pattern


def scan_patterns(pattern: str) -> List[str]:
    """Globs to scan for `pattern`.

    A pattern without glob characters names both the key itself and every
    key beneath it.
    """
    if GLOB_CHARS & set(pattern):
        return [pattern]
    return [pattern, pattern + WILDCARD_SUFFIX]


def chunked(items: Sequence, size: int) -> List[Sequence]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class InvalidationEngine:
    """Deletes cache entries by pattern and cascades along dependency rules.

    Rules are read once via `load_rules()` and kept in memory, ordered by
    priority descending. Store failures are audited and re-raised as
    `InvalidationError`; audit failures are only logged.

    Args:
        store (Optional[RedisStore]): Cache store, `None` in passthrough mode.
        analytics (Optional[AnalyticsStore]): Rule source and audit log.
        batch_size (int): Keys deleted per round trip.
        smart_invalidation (bool): Whether cascade requests are honoured.
        logger: Injected loguru logger.
    """

    def __init__(self, store, analytics, batch_size: int = 100, smart_invalidation: bool = True, logger=None):
        self.store = store
        self.analytics = analytics
        self.batch_size = batch_size
        self.smart_invalidation = smart_invalidation
        self.logger = logger or get_logger(__name__)
        self.rules = []

    async def load_rules(self) -> int:
        if self.analytics is None:
            return 0
        try:
            self.set_rules(await self.analytics.load_rules())
        except CacheEngineError as e:
            self.logger.error(f"Failed to load invalidation rules: {e}")
        return len(self.rules)

    def set_rules(self, rules) -> None:
        enabled = [r for r in rules if r.enabled]
        self.rules = sorted(enabled, key=lambda r: r.priority, reverse=True)

    def cascade_patterns(self, pattern: str) -> List[str]:
        target = normalize_pattern(pattern)
        return [
            r.affected_pattern for r in self.rules
            if r.trigger_type != "operation" and normalize_pattern(r.trigger_pattern) == target
        ]

    def operation_patterns(self, operation: str) -> List[str]:
        return [
            r.affected_pattern for r in self.rules
            if r.trigger_type == "operation" and r.trigger_pattern == operation
        ]

    async def _delete_matching(self, pattern: str) -> int:
        keys = []
        for glob in scan_patterns(pattern):
            keys.extend(await self.store.scan(glob))
        keys = list(dict.fromkeys(keys))
        for chunk in chunked(keys, self.batch_size):
            await self.store.delete(chunk)
        return len(keys)

    async def invalidate(self, pattern: str, cascade: bool = False, reason: Optional[str] = None) -> InvalidationReport:
        """Delete every key matching `pattern`, optionally cascading.

        Args:
            pattern (str): Glob such as `cache:firewall:*`, or a bare namespace.
            cascade (bool): Also invalidate patterns that depend on this one.
            reason (Optional[str]): Free-form reason recorded in the audit log.

        Returns:
            InvalidationReport: Counts for this pattern and each cascaded one.

        Raises:
            InvalidationError: When scanning or deleting fails.
        """
        report = InvalidationReport(pattern=pattern, cascade=cascade, reason=reason)
        if self.store is None:
            self.logger.debug(f"Skipping invalidation of {pattern}: no cache store")
            return report

        start = time.perf_counter()
        error: Optional[Exception] = None
        try:
            report.invalidated_count = await self._delete_matching(pattern)
            if cascade and self.smart_invalidation:
                for affected in self.cascade_patterns(pattern):
                    report.cascaded.append(
                        await self.invalidate(affected, cascade=False, reason=reason)
                    )
        except CacheEngineError as e:
            error = e
            self.logger.error(f"Cache invalidation error for {pattern}: {e}")
        finally:
            report.execution_time_ms = (time.perf_counter() - start) * 1000
            await self._audit(report, error)

        if error is not None:
            if isinstance(error, InvalidationError):
                raise error
            raise InvalidationError(
                f"Invalidation of {pattern} failed: {error.message}",
                details={"pattern": pattern, "invalidated_count": report.invalidated_count}
            ) from error

        self.logger.info(
            f"Invalidated {report.total_invalidated} key(s) for {pattern}"
            + (f" ({reason})" if reason else "")
        )
        return report

    async def invalidate_for_operation(self, operation: str, reason: Optional[str] = None) -> List[InvalidationReport]:
        """Apply the operation-triggered rules for e.g. `firewall:rule:create`."""
        reports = []
        for affected in self.operation_patterns(operation):
            reports.append(await self.invalidate(affected, cascade=True, reason=reason or operation))
        return reports

    async def _audit(self, report: InvalidationReport, error: Optional[Exception]) -> None:
        if self.analytics is None:
            return
        try:
            await self.analytics.log_operation(
                type="cache_invalidation",
                target=report.pattern,
                action="invalidate",
                result="failure" if error else "success",
                details={
                    "invalidated_count": report.invalidated_count,
                    "cascade": report.cascade,
                    "cascaded": [r.pattern for r in report.cascaded],
                    "reason": report.reason,
                    "execution_time_ms": round(report.execution_time_ms, 2),
                },
                error=str(error) if error else None,
            )
        except CacheEngineError as e:
            self.logger.warning(f"Failed to log invalidation of {report.pattern}: {e}")

# Copyright (c) Kirky.X. 2025. All rights reserved.
import asyncio
import datetime
import functools
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, case, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from .database import Database
from ..core.pattern_table import PatternSnapshot
from ..models.orm import CacheStat, QueryPattern, CacheInvalidationRule, Operation, utcnow
from ..models.schemas import RuleSpec
from ..utils.exceptions import AnalyticsError

DEFAULT_INVALIDATION_RULES = [
    RuleSpec(trigger_type="operation", trigger_pattern="firewall:rule:create", affected_pattern="cache:firewall:*", priority=10),
    RuleSpec(trigger_type="operation", trigger_pattern="firewall:rule:update", affected_pattern="cache:firewall:*", priority=10),
    RuleSpec(trigger_type="operation", trigger_pattern="firewall:rule:delete", affected_pattern="cache:firewall:*", priority=10),
    RuleSpec(trigger_type="operation", trigger_pattern="network:vlan:create", affected_pattern="cache:network:*", priority=10),
    RuleSpec(trigger_type="operation", trigger_pattern="network:vlan:update", affected_pattern="cache:network:*", priority=10),
    RuleSpec(trigger_type="operation", trigger_pattern="network:vlan:delete", affected_pattern="cache:network:*", priority=10),
    RuleSpec(trigger_type="operation", trigger_pattern="network:interface:update", affected_pattern="cache:network:*", priority=10),
    RuleSpec(trigger_type="operation", trigger_pattern="system:backup:create", affected_pattern="cache:backup:*", priority=5),
    RuleSpec(trigger_type="operation", trigger_pattern="system:backup:restore", affected_pattern="cache:*", priority=20),
    RuleSpec(trigger_type="dependency", trigger_pattern="cache:network:interfaces", affected_pattern="cache:network:vlans", priority=5),
    RuleSpec(trigger_type="dependency", trigger_pattern="cache:firewall:aliases", affected_pattern="cache:firewall:rules", priority=5),
]


def _analytics_call(func_):
    @functools.wraps(func_)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func_(self, *args, **kwargs)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            # drivers raise raw socket errors before SQLAlchemy can wrap them
            raise AnalyticsError(
                f"Analytics store {func_.__name__} failed: {e}",
                details={"operation": func_.__name__}
            ) from e

    return wrapper


class AnalyticsStore:
    """Relational store for access statistics, learned patterns, rules and the audit log.

    Upserts are issued as a single `INSERT ... ON CONFLICT DO UPDATE`, so
    counters and running averages are computed by the database from the
    current row and concurrent writers never lose increments.

    Args:
        db (Database): Async engine wrapper.
    """

    def __init__(self, db: Database):
        self.db = db

    def _insert(self, model):
        table = model.__table__
        if self.db.dialect == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    @_analytics_call
    async def record_access(self, key: str, hit: bool, response_time_ms: float, data_size: int) -> None:
        t = CacheStat.__table__
        now = utcnow()
        total = func.coalesce(t.c.hits, 0) + func.coalesce(t.c.misses, 0)
        stmt = self._insert(CacheStat).values(
            key=key,
            hits=1 if hit else 0,
            misses=0 if hit else 1,
            last_access=now,
            avg_response_time=float(response_time_ms),
            data_size=int(data_size),
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.key],
            set_={
                "hits": func.coalesce(t.c.hits, 0) + (1 if hit else 0),
                "misses": func.coalesce(t.c.misses, 0) + (0 if hit else 1),
                "last_access": now,
                "avg_response_time": (
                    func.coalesce(t.c.avg_response_time, 0.0) * total + float(response_time_ms)
                ) / (total + 1),
                "data_size": int(data_size),
            }
        )
        async with self.db.get_session() as session:
            await session.exec(stmt)
            await session.commit()

    @_analytics_call
    async def upsert_pattern(self, pattern: str, execution_time_ms: float, initial_ttl: int) -> PatternSnapshot:
        """Count one miss against `pattern` and return the updated row.

        `frequency` is incremented, `avg_execution_time` becomes the running
        mean and `cache_priority` is re-tiered from the new values.
        """
        t = QueryPattern.__table__
        now = utcnow()
        ms = float(execution_time_ms)
        old_freq = func.coalesce(t.c.frequency, 0)
        new_freq = old_freq + 1
        new_avg = (func.coalesce(t.c.avg_execution_time, 0.0) * old_freq + ms) / new_freq
        priority = case(
            (and_(new_freq > 100, new_avg > 1000), 10),
            (and_(new_freq > 50, new_avg > 500), 5),
            (new_freq > 10, 1),
            else_=0,
        )
        stmt = self._insert(QueryPattern).values(
            pattern=pattern,
            frequency=1,
            avg_execution_time=ms,
            last_executed=now,
            cache_priority=0,
            suggested_ttl=int(initial_ttl),
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.pattern],
            set_={
                "frequency": new_freq,
                "avg_execution_time": new_avg,
                "last_executed": now,
                "cache_priority": priority,
            }
        )
        async with self.db.get_session() as session:
            await session.exec(stmt)
            await session.commit()
            row = (await session.exec(select(QueryPattern).where(QueryPattern.pattern == pattern))).one()
            return PatternSnapshot.from_row(row)

    @_analytics_call
    async def set_suggested_ttl(self, pattern: str, ttl: int) -> None:
        async with self.db.get_session() as session:
            row = (await session.exec(select(QueryPattern).where(QueryPattern.pattern == pattern))).first()
            if row is None:
                return
            row.suggested_ttl = int(ttl)
            session.add(row)
            await session.commit()

    @_analytics_call
    async def active_patterns(self, since: datetime.datetime) -> List[PatternSnapshot]:
        async with self.db.get_session() as session:
            rows = (await session.exec(
                select(QueryPattern).where(QueryPattern.last_executed >= since)
            )).all()
            return [PatternSnapshot.from_row(r) for r in rows]

    @_analytics_call
    async def top_patterns(self, limit: int = 20) -> List[PatternSnapshot]:
        async with self.db.get_session() as session:
            rows = (await session.exec(
                select(QueryPattern).order_by(QueryPattern.frequency.desc()).limit(limit)
            )).all()
            return [PatternSnapshot.from_row(r) for r in rows]

    @_analytics_call
    async def load_rules(self, trigger_type: Optional[str] = None) -> List[CacheInvalidationRule]:
        """Enabled invalidation rules, highest priority first."""
        stmt = select(CacheInvalidationRule).where(CacheInvalidationRule.enabled == True)  # noqa: E712
        if trigger_type:
            stmt = stmt.where(CacheInvalidationRule.trigger_type == trigger_type)
        stmt = stmt.order_by(CacheInvalidationRule.priority.desc(), CacheInvalidationRule.id)
        async with self.db.get_session() as session:
            return list((await session.exec(stmt)).all())

    @_analytics_call
    async def seed_rules(self, rules: Iterable[RuleSpec] = DEFAULT_INVALIDATION_RULES) -> int:
        """Insert the given rules unless an identical trigger/affected pair exists."""
        added = 0
        async with self.db.get_session() as session:
            existing = {
                (r.trigger_type, r.trigger_pattern, r.affected_pattern)
                for r in (await session.exec(select(CacheInvalidationRule))).all()
            }
            for spec in rules:
                ident = (spec.trigger_type, spec.trigger_pattern, spec.affected_pattern)
                if ident in existing:
                    continue
                session.add(CacheInvalidationRule(**spec.model_dump()))
                existing.add(ident)
                added += 1
            await session.commit()
        return added

    @_analytics_call
    async def log_operation(
        self,
        type: str,
        target: str,
        action: str,
        result: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ) -> None:
        async with self.db.get_session() as session:
            session.add(Operation(
                type=type,
                target=target,
                action=action,
                result=result,
                details=details,
                error=error,
                timestamp=utcnow(),
            ))
            await session.commit()

    @_analytics_call
    async def recent_operations(self, limit: int = 100) -> List[Operation]:
        async with self.db.get_session() as session:
            rows = await session.exec(
                select(Operation).order_by(Operation.timestamp.desc(), Operation.id.desc()).limit(limit)
            )
            return list(rows.all())

    @_analytics_call
    async def overall_stats(self) -> Dict[str, float]:
        stmt = select(
            func.coalesce(func.sum(CacheStat.hits), 0),
            func.coalesce(func.sum(CacheStat.misses), 0),
            func.coalesce(func.avg(CacheStat.avg_response_time), 0.0),
        )
        async with self.db.get_session() as session:
            hits, misses, avg_rt = (await session.exec(stmt)).one()
        return {"hits": int(hits), "misses": int(misses), "avg_response_time": float(avg_rt)}

    @_analytics_call
    async def stat_rows(self) -> List[CacheStat]:
        async with self.db.get_session() as session:
            return list((await session.exec(select(CacheStat))).all())

    @_analytics_call
    async def get_stat(self, key: str) -> Optional[CacheStat]:
        async with self.db.get_session() as session:
            return (await session.exec(select(CacheStat).where(CacheStat.key == key))).first()

# Copyright (c) Kirky.X. 2025. All rights reserved.
import datetime
from typing import Optional, Dict, Any

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, JSON, Index


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _timestamp_column(**kwargs) -> Column:
    return Column(DateTime(timezone=True), default=utcnow, **kwargs)


class CacheStat(SQLModel, table=True):
    __tablename__ = "cache_stats"
    __table_args__ = (
        Index("idx_cache_stats_hits", "hits"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(max_length=255, sa_column_kwargs={"unique": True, "nullable": False})
    hits: int = Field(default=0)
    misses: int = Field(default=0)
    last_access: Optional[datetime.datetime] = Field(
        default_factory=utcnow,
        sa_column=_timestamp_column(nullable=True)
    )
    avg_response_time: float = Field(default=0.0)
    data_size: int = Field(default=0)
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=_timestamp_column()
    )


class QueryPattern(SQLModel, table=True):
    __tablename__ = "query_patterns"
    __table_args__ = (
        Index("idx_query_patterns_frequency", "frequency"),
        Index("idx_query_patterns_priority", "cache_priority"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    pattern: str = Field(max_length=255, sa_column_kwargs={"unique": True, "nullable": False})
    frequency: int = Field(default=1)
    avg_execution_time: float = Field(default=0.0)
    last_executed: Optional[datetime.datetime] = Field(
        default_factory=utcnow,
        sa_column=_timestamp_column(nullable=True)
    )
    cache_priority: int = Field(default=0)
    suggested_ttl: int = Field(default=300)
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=_timestamp_column()
    )


class CacheInvalidationRule(SQLModel, table=True):
    __tablename__ = "cache_invalidation_rules"
    __table_args__ = (
        Index("idx_invalidation_trigger_type", "trigger_type"),
        Index("idx_invalidation_enabled", "enabled"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    # operation | dependency | time
    trigger_type: str = Field(max_length=50)
    trigger_pattern: str = Field(max_length=255)
    affected_pattern: str = Field(max_length=255)
    enabled: bool = Field(default=True)
    priority: int = Field(default=0)
    created_at: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=_timestamp_column()
    )


class Operation(SQLModel, table=True):
    __tablename__ = "operations"
    __table_args__ = (
        Index("idx_operations_timestamp", "timestamp"),
        Index("idx_operations_type", "type"),
        Index("idx_operations_result", "result"),
        {"extend_existing": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(max_length=50)
    target: str = Field(max_length=255)
    action: str = Field(max_length=50)
    # success | failure
    result: str = Field(max_length=20)
    error: Optional[str] = None
    # `metadata` is reserved on declarative classes
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON))
    timestamp: datetime.datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), default=utcnow, nullable=False)
    )

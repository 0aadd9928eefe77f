# Copyright (c) Kirky.X. 2025. All rights reserved.
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .orm import utcnow


class CacheMetadata(BaseModel):
    timestamp: datetime = Field(default_factory=utcnow)
    ttl: int = 0
    source: Literal["cache", "api", "batch"]
    execution_time_ms: Optional[float] = None
    pattern: Optional[str] = None


class CachedData(BaseModel):
    value: Any = None
    metadata: CacheMetadata

    @property
    def from_cache(self) -> bool:
        return self.metadata.source == "cache"


class InvalidationReport(BaseModel):
    pattern: str
    invalidated_count: int = 0
    cascade: bool = False
    cascaded: List["InvalidationReport"] = Field(default_factory=list)
    reason: Optional[str] = None
    execution_time_ms: float = 0.0

    @property
    def total_invalidated(self) -> int:
        return self.invalidated_count + sum(r.total_invalidated for r in self.cascaded)


class OverallStats(BaseModel):
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    avg_response_time: float = 0.0


class ResourceStats(BaseModel):
    resource: str
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    avg_response_time: float = 0.0


class PatternSummary(BaseModel):
    pattern: str
    frequency: int = 0
    avg_execution_time: float = 0.0
    suggested_ttl: int = 0
    cache_priority: int = 0


class CacheStatistics(BaseModel):
    overall: OverallStats
    by_resource: Dict[str, ResourceStats] = Field(default_factory=dict)
    patterns: List[PatternSummary] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class RuleSpec(BaseModel):
    trigger_type: Literal["operation", "dependency", "time"] = "dependency"
    trigger_pattern: str = Field(..., min_length=1, max_length=255)
    affected_pattern: str = Field(..., min_length=1, max_length=255)
    priority: int = 0
    enabled: bool = True


InvalidationReport.model_rebuild()

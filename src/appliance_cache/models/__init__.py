from .orm import (
    CacheStat,
    QueryPattern,
    CacheInvalidationRule,
    Operation
)

__all__ = [
    "CacheStat",
    "QueryPattern",
    "CacheInvalidationRule",
    "Operation"
]

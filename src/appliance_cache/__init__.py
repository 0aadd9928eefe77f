"""
# Copyright (c) Kirky.X. 2025. All rights reserved.
"""
"""Appliance Cache package

Adaptive read-through caching for slow appliance management APIs: learned
TTLs, batched fetches, rule-driven invalidation and access analytics.
"""

__all__ = [
    "EnhancedCacheManager",
    "FetchRequest",
    "CachedData",
    "Config",
    "load_config",
    "setup_logging",
    "get_logger",
]

from .core.manager import EnhancedCacheManager, FetchRequest
from .models.schemas import CachedData
from .utils.config import Config, load_config
from .utils.logger import setup_logging, get_logger

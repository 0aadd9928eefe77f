# Copyright (c) Kirky.X. 2025. All rights reserved.
from enum import Enum
from typing import Any, Dict, Optional


class CacheErrorCode(Enum):
    STORE_UNAVAILABLE = "CACHE001"
    SERIALIZATION_FAILED = "CACHE002"
    INVALIDATION_FAILED = "CACHE003"
    ANALYTICS_FAILED = "CACHE004"
    INVALID_PARAMETER = "CACHE005"


class CacheEngineError(Exception):
    """Base exception for the cache engine.

    Every error raised by the engine itself derives from this type so callers
    can catch engine failures without also catching fetcher failures, which
    are always propagated unchanged.

    Args:
        message (str): Human readable description.
        code (CacheErrorCode): Stable machine readable error code.
        details (Optional[Dict[str, Any]]): Extra context for the tool surface.
    """

    code = CacheErrorCode.INVALID_PARAMETER

    def __init__(
        self,
        message: str,
        code: Optional[CacheErrorCode] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details
            }
        }


class StoreUnavailableError(CacheEngineError):
    """Raised when the cache store is unconfigured or unreachable.

    The read path never lets this escape; it switches to passthrough instead.
    """

    code = CacheErrorCode.STORE_UNAVAILABLE


class SerializationError(CacheEngineError):
    """Raised when a stored payload cannot be encoded or decoded."""

    code = CacheErrorCode.SERIALIZATION_FAILED


class InvalidationError(CacheEngineError):
    """Raised when scanning or deleting keys during invalidation fails.

    Unlike the read path, invalidation failures surface to the caller because
    a caller relying on invalidation for correctness must know it failed.
    """

    code = CacheErrorCode.INVALIDATION_FAILED


class AnalyticsError(CacheEngineError):
    code = CacheErrorCode.ANALYTICS_FAILED

# Copyright (c) Kirky.X. 2025. All rights reserved.
import argparse
from typing import Any, Dict, Optional

from mcp.server.fastmcp import FastMCP

from ..core.manager import EnhancedCacheManager
from ..utils.config import Config, load_config
from ..utils.exceptions import CacheEngineError
from ..utils.logger import get_logger, setup_logging

logger = get_logger("appliance_cache.mcp")

mcp = FastMCP("appliance-cache")

_config: Optional[Config] = None
_manager: Optional[EnhancedCacheManager] = None


def configure(config: Config) -> None:
    global _config
    _config = config


async def get_manager() -> EnhancedCacheManager:
    """Return the process-wide manager, creating it on first use."""
    global _manager
    if _manager is None:
        _manager = await EnhancedCacheManager.create(_config or Config.default())
    return _manager


@mcp.tool()
async def cache_statistics() -> Dict[str, Any]:
    """
    Get cache hit rates, per-resource statistics, top query patterns and tuning recommendations.

    Returns:
        Dictionary with overall, by_resource, patterns and recommendations
    """
    try:
        manager = await get_manager()
        stats = await manager.get_statistics()
        return stats.model_dump(mode="json")
    except CacheEngineError as e:
        logger.error(f"Error in cache_statistics: {e}")
        return e.to_dict()


@mcp.tool()
async def cache_invalidate(pattern: str, cascade: bool = False, reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Invalidate every cached key matching a pattern.

    Args:
        pattern: Key glob, e.g. "cache:firewall:*"
        cascade: Also invalidate patterns that depend on this one
        reason: Free-form reason stored in the audit log

    Returns:
        Invalidation report with counts for the pattern and each cascaded pattern
    """
    try:
        manager = await get_manager()
        report = await manager.invalidate(pattern, cascade=cascade, reason=reason)
        return report.model_dump(mode="json")
    except CacheEngineError as e:
        logger.error(f"Error in cache_invalidate: {e}")
        return e.to_dict()


@mcp.tool()
async def cache_invalidate_for_operation(operation: str, reason: Optional[str] = None) -> Dict[str, Any]:
    """
    Apply the invalidation rules registered for a write operation.

    Args:
        operation: Operation name, e.g. "firewall:rule:create"
        reason: Free-form reason stored in the audit log

    Returns:
        Dictionary with the operation and one report per affected pattern
    """
    try:
        manager = await get_manager()
        reports = await manager.invalidate_for_operation(operation, reason=reason)
        return {
            "operation": operation,
            "reports": [r.model_dump(mode="json") for r in reports],
            "total_invalidated": sum(r.total_invalidated for r in reports),
        }
    except CacheEngineError as e:
        logger.error(f"Error in cache_invalidate_for_operation: {e}")
        return e.to_dict()


@mcp.tool()
async def cache_health() -> Dict[str, Any]:
    """
    Check cache store connectivity and engine state.

    Returns:
        Dictionary with health status and engine info
    """
    try:
        manager = await get_manager()
        return await manager.health()
    except CacheEngineError as e:
        # report unhealthy rather than an error payload
        return {
            "status": "unhealthy",
            "error_code": e.code.value,
            "message": e.message
        }


@mcp.tool()
async def cache_reload_rules() -> Dict[str, Any]:
    """
    Reload invalidation rules from the analytics store.

    Returns:
        Dictionary with the number of active rules
    """
    try:
        manager = await get_manager()
        return {"success": True, "rules": await manager.reload_rules()}
    except CacheEngineError as e:
        logger.error(f"Error in cache_reload_rules: {e}")
        return e.to_dict()


def main():
    parser = argparse.ArgumentParser(description="Appliance Cache MCP Server")
    parser.add_argument("--config", type=str, default=None, help="Path to the TOML config file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", type=str, default=None, help="Write JSON logs to the specified file")
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except FileNotFoundError as e:
        config = Config.default()
        logger.warning(f"{e}; using built-in defaults")

    log_config = dict(config.logging)
    if args.debug:
        log_config["level"] = "DEBUG"
    if args.log_file:
        log_config["file_path"] = args.log_file
    setup_logging(log_config)

    configure(config)
    mcp.run()


if __name__ == "__main__":
    main()

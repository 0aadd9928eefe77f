# Copyright (c) Kirky.X. 2025. All rights reserved.
import logging
import sys
from typing import Any, Dict, Optional

from loguru import logger


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru.

    redis, SQLAlchemy, alembic and the MCP server all log through the standard
    library; routing them here keeps a single format and sink configuration.
    """

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # walk out of the logging module to find the real caller
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(config: Optional[Dict[str, Any]] = None):
    """Configure loguru sinks and intercept standard library logging.

    Args:
        config (Optional[Dict[str, Any]]): The `[logging]` section. Recognised
            keys are `level`, `console_output`, `file_path`, `max_size_mb` and
            `backup_count`.

    Returns:
        None
    """
    config = config or {}
    logger.remove()

    log_level = str(config.get("level", "INFO")).upper()

    def patcher(record):
        if "name" not in record["extra"]:
            record["extra"]["name"] = record["name"]

    logger.configure(patcher=patcher)

    if config.get("console_output", True):
        # stdout belongs to the MCP stdio transport
        logger.add(
            sys.stderr,
            level=log_level,
            format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                   "<level>{level: <8}</level> | "
                   "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
                   "<level>{message}</level>",
            enqueue=True
        )

    file_path = config.get("file_path")
    if file_path:
        max_size_mb = config.get("max_size_mb", 10)
        backup_count = config.get("backup_count", 5)

        logger.add(
            file_path,
            level=log_level,
            rotation=f"{max_size_mb} MB",
            retention=backup_count,
            compression="zip",
            serialize=True,
            enqueue=True,
            backtrace=True,
            diagnose=False
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str):
    """Return a loguru logger bound to `name` for the `{extra[name]}` field."""
    return logger.bind(name=name)

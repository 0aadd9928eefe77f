# Copyright (c) Kirky.X. 2025. All rights reserved.
import os
from dataclasses import dataclass, field, fields
from typing import Optional, Dict, Any

import tomli

CONFIG_PATH_ENV = "APPLIANCE_CACHE_CONFIG_PATH"


@dataclass
class RedisConfig:
    enabled: bool = True
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    url: Optional[str] = None
    key_prefix: str = "opnsense:"
    socket_timeout: float = 2.0
    connect_timeout: float = 1.0

    def __post_init__(self):
        if not self.password:
            self.password = None
        if not self.url:
            self.url = None

    def __repr__(self):
        return (
            f"RedisConfig(enabled={self.enabled}, host='{self.host}', port={self.port}, "
            f"db={self.db}, password='***', key_prefix='{self.key_prefix}')"
        )


@dataclass
class CacheSettings:
    default_ttl: int = 300
    min_ttl: int = 60
    max_ttl: int = 3600
    compression_threshold: int = 1024
    compression_level: int = 6
    enable_compression: bool = True
    enable_smart_invalidation: bool = True
    enable_pattern_analysis: bool = True
    single_flight: bool = False
    analysis_interval: int = 300
    analysis_window: int = 3600

    def __post_init__(self):
        if self.min_ttl <= 0:
            raise ValueError("min_ttl must be positive")
        if self.min_ttl > self.max_ttl:
            raise ValueError("min_ttl must not exceed max_ttl")
        if not 0 <= self.compression_level <= 9:
            raise ValueError("compression_level must be between 0 and 9")
        if self.analysis_interval <= 0:
            raise ValueError("analysis_interval must be positive")


@dataclass
class PerformanceConfig:
    batch_size: int = 100
    max_concurrency: int = 10

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be positive")


@dataclass
class DatabaseConfig:
    type: str = "sqlite"
    path: Optional[str] = None
    pool_size: int = 10
    max_overflow: int = 20

    def __post_init__(self):
        if self.type not in ("sqlite", "postgres"):
            raise ValueError(f"Unsupported database type: {self.type}")
        if self.type == "postgres" and not self.path:
            raise ValueError("A connection URL is required when database type is 'postgres'")

    def __repr__(self):
        path = self.path if self.type == "sqlite" else "***"
        return (
            f"DatabaseConfig(type='{self.type}', path={path}, "
            f"pool_size={self.pool_size}, max_overflow={self.max_overflow})"
        )


@dataclass
class Config:
    redis: RedisConfig = field(default_factory=RedisConfig)
    cache: CacheSettings = field(default_factory=CacheSettings)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: Dict[str, Any] = field(default_factory=lambda: {"level": "INFO", "console_output": True})

    @classmethod
    def default(cls) -> "Config":
        return cls()


def _replace_env_vars(config: Any) -> Any:
    """Recursively substitute `${VAR}` placeholders with environment values.

    Unset variables become empty strings, which the dataclasses treat as
    "not configured" where that makes sense (passwords, URLs).
    """
    if isinstance(config, dict):
        return {k: _replace_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [_replace_env_vars(i) for i in config]
    if isinstance(config, str) and config.startswith("${") and config.endswith("}"):
        env_var = config[2:-1]
        return os.getenv(env_var, "")
    return config


def _section(cls, raw: Optional[Dict[str, Any]]):
    # unknown keys are ignored so older config files keep loading
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in (raw or {}).items() if k in known})


def load_config(path: Optional[str] = None) -> Config:
    """Load and parse the TOML configuration file.

    Args:
        path (Optional[str]): Config file path. Defaults to the value of
            `APPLIANCE_CACHE_CONFIG_PATH`, then `config.toml`.

    Returns:
        Config: Fully populated configuration; absent sections use defaults.

    Raises:
        FileNotFoundError: When the file does not exist or is not `.toml`.
        tomli.TOMLDecodeError: When the content is not valid TOML.
        ValueError: When a section contains an invalid value.
    """
    if path is None:
        path = os.getenv(CONFIG_PATH_ENV) or "config.toml"
    if not path.endswith(".toml") or not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found at {path}")

    with open(path, "rb") as f:
        raw = tomli.load(f)

    processed = _replace_env_vars(raw)

    return Config(
        redis=_section(RedisConfig, processed.get("redis")),
        cache=_section(CacheSettings, processed.get("cache")),
        performance=_section(PerformanceConfig, processed.get("performance")),
        database=_section(DatabaseConfig, processed.get("database")),
        logging=processed.get("logging") or {"level": "INFO", "console_output": True},
    )

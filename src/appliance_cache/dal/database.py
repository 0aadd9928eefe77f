# Copyright (c) Kirky.X. 2025. All rights reserved.
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import orm  # noqa: F401  registers tables on SQLModel.metadata
from ..utils.config import DatabaseConfig
from ..utils.logger import get_logger

logger = get_logger(__name__)


class Database:
    def __init__(self, config: DatabaseConfig):
        """Create the async engine and session factory for the analytics store.

        SQLite runs through `aiosqlite`; postgres expects a full
        `postgresql+asyncpg://` URL in `config.path`.

        Args:
            config (DatabaseConfig): Engine type, path or URL and pool sizing.

        Raises:
            ValueError: When the database type is not supported.
        """
        self.config = config
        engine_kwargs = {
            "echo": False,
            "pool_pre_ping": True,
        }

        if config.type == "sqlite":
            if not config.path:
                config.path = ":memory:"
            self.url = f"sqlite+aiosqlite:///{config.path}"
            if config.path == ":memory:":
                # one shared connection, otherwise every session sees an empty database
                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
            else:
                engine_kwargs["pool_size"] = config.pool_size
                engine_kwargs["max_overflow"] = config.max_overflow
        elif config.type == "postgres":
            self.url = config.path
            engine_kwargs["pool_size"] = config.pool_size
            engine_kwargs["max_overflow"] = config.max_overflow
            engine_kwargs["pool_recycle"] = 3600
        else:
            raise ValueError("Unsupported database type")

        self.engine = create_async_engine(self.url, **engine_kwargs)
        self.session_factory = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def get_session(self) -> AsyncSession:
        """Return a new `AsyncSession`; use it as an async context manager."""
        try:
            return self.session_factory()
        except Exception as e:
            logger.error("session creation failed", error=str(e))
            raise

    async def create_all(self):
        """Create every analytics table that does not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self):
        if self.engine:
            await self.engine.dispose()

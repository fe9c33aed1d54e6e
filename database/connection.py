"""
Database connection management.
Provides the async SQLAlchemy engine (aiosqlite) and session factory.
"""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from utils import db_logger, config_manager, BASE_DIR, StorageUnavailable, ErrorCodes


def default_db_url() -> str:
    """根据 database_config 生成连接串（url 优先，否则使用 db_path）"""
    db_config = config_manager.get_database_config()
    if db_config.url:
        return db_config.url

    db_path = db_config.db_path
    if not os.path.isabs(db_path):
        db_path = str(BASE_DIR / db_path)
    return f"sqlite+aiosqlite:///{db_path}"


def _is_memory_url(db_url: str) -> bool:
    return db_url.endswith(":memory:") or db_url.rstrip("/").endswith("sqlite+aiosqlite:")


class DatabaseManager:
    """数据库管理器"""

    def __init__(self, db_url: Optional[str] = None, echo: Optional[bool] = None):
        self.db_url = db_url or default_db_url()
        self.echo = config_manager.get_database_config().echo if echo is None else echo
        self.async_engine = None
        self.AsyncSessionLocal = None

    def initialize(self):
        """初始化数据库连接"""
        if self.async_engine is not None:
            return

        try:
            engine_kwargs = {'echo': self.echo}
            if _is_memory_url(self.db_url):
                # 内存库只存在于单个连接中，所有会话共享同一连接
                engine_kwargs.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
            else:
                path = self.db_url.split(":///", 1)[-1]
                directory = os.path.dirname(path)
                if directory:
                    os.makedirs(directory, exist_ok=True)

            self.async_engine = create_async_engine(self.db_url, **engine_kwargs)
            event.listen(self.async_engine.sync_engine, "connect", self._on_connect)

            self.AsyncSessionLocal = async_sessionmaker(
                bind=self.async_engine,
                class_=AsyncSession,
                autoflush=False,
                expire_on_commit=False
            )

            db_logger.info(f"[Database] Database connection initialized: {self.db_url}")

        except SQLAlchemyError as e:
            db_logger.error(f"[Database] Failed to initialize database: {e}")
            raise StorageUnavailable(
                f"Failed to initialize database {self.db_url}: {e}",
                ErrorCodes.DB_CONNECTION_FAILED
            ) from e

    @staticmethod
    def _on_connect(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")  # 确保外键约束生效
        cursor.close()

    async def create_tables(self):
        """创建数据库表"""
        from .models import Base

        self.initialize()
        try:
            async with self.async_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            db_logger.info("[Database] Database tables created successfully")
        except SQLAlchemyError as e:
            db_logger.error(f"[Database] Failed to create tables: {e}")
            raise StorageUnavailable(
                f"Failed to create tables: {e}",
                ErrorCodes.DB_CONNECTION_FAILED
            ) from e

    def get_async_session(self) -> AsyncSession:
        """获取异步数据库会话"""
        if not self.AsyncSessionLocal:
            raise RuntimeError("Database not initialized")
        return self.AsyncSessionLocal()

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """事务范围：正常退出提交，异常回滚"""
        async with self.get_async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self):
        """关闭数据库连接"""
        if self.async_engine is not None:
            await self.async_engine.dispose()
            self.async_engine = None
            self.AsyncSessionLocal = None
            db_logger.info("[Database] Database connections closed")

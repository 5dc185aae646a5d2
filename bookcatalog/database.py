"""
数据库连接管理
提供异步引擎、会话工厂以及 FastAPI 依赖
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from bookcatalog.config import settings
from bookcatalog.utils.logger import log

Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_session_maker: Optional[async_sessionmaker] = None


def _create_engine(url: str, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(url, echo=echo, future=True)

    if url.startswith("sqlite"):
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, _connection_record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return engine


async def init_database(url: Optional[str] = None) -> async_sessionmaker:
    """
    初始化数据库引擎并创建缺失的表

    Args:
        url: 数据库连接串，默认取配置

    Returns:
        会话工厂
    """
    global _engine, _session_maker

    if _session_maker is not None:
        return _session_maker

    # 注册模型
    from bookcatalog import models  # noqa: F401

    _engine = _create_engine(url or settings.database.url, echo=settings.database.echo)
    _session_maker = async_sessionmaker(_engine, expire_on_commit=False)

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    log.info("数据库已就绪")
    return _session_maker


async def close_database() -> None:
    """释放数据库连接"""
    global _engine, _session_maker
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _session_maker = None


def get_session_maker() -> async_sessionmaker:
    if _session_maker is None:
        raise RuntimeError("数据库未初始化，请先调用 init_database()")
    return _session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：每个请求一个会话"""
    async with get_session_maker()() as session:
        yield session


@asynccontextmanager
async def session_scope(session_maker: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    """
    事务作用域
    正常退出时提交，异常时回滚并继续抛出
    """
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise

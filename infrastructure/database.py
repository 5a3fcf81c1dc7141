"""
数据库引擎与会话工厂

镜像表只有四张，写入都很短；唯一键冲突在仓储层的 savepoint 中处理。
"""
from typing import AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from infrastructure.models import Base


_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """补全异步驱动；已指定驱动的 URL 原样返回"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    try:
        return url.set(drivername=_ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)
    except KeyError:
        raise ValueError(f"Unsupported database driver: {url.drivername}") from None


engine = create_async_engine(
    _build_async_url(settings.database.url),
    echo=settings.database.echo,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(bind=engine, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """请求级会话；事务由 Unit of Work 控制"""
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables():
    """开发环境建表；生产使用 alembic upgrade head"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

"""
数据库连接和会话管理
"""
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from settlement.config import get_settings

settings = get_settings()

# 创建异步引擎
engine_kwargs = {
    "echo": settings.sqlalchemy_echo,
}
# SQLite 在并发结算时容易出现读写锁竞争：适当加大 timeout，并在 init_db 里启用 WAL
if settings.database_url.startswith("sqlite"):
    engine_kwargs["connect_args"] = {"timeout": 60}

engine = create_async_engine(settings.database_url, **engine_kwargs)

# 创建异步会话工厂
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """SQLAlchemy 模型基类"""
    pass


async def get_db() -> AsyncSession:
    """获取数据库会话（依赖注入）"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """初始化数据库表"""
    async with engine.begin() as conn:
        # SQLite 性能/并发优化（WAL 会持久化到 DB 文件，设置一次即可）
        if settings.database_url.startswith("sqlite"):
            await conn.execute(text("PRAGMA journal_mode=WAL;"))
            await conn.execute(text("PRAGMA synchronous=NORMAL;"))
            await conn.execute(text("PRAGMA temp_store=MEMORY;"))
            await conn.execute(text("PRAGMA busy_timeout=60000;"))
        await conn.run_sync(Base.metadata.create_all)

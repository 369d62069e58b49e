"""Order Service — DB エンジンとセッションファクトリ"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from .models import Base


def create_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """テーブルがなければ作成する (開発・テスト用。本番は sql/schema.sql を使う)。"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

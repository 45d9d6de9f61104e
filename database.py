from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy import text

Base = declarative_base()


def make_engine(database_url: str) -> AsyncEngine:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_async_engine(database_url, connect_args=connect_args)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine):
    import models  # noqa: F401  registers the books table

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if engine.dialect.name == "sqlite":
            # books.db files created before users could own books
            result = await conn.execute(text("PRAGMA table_info(books);"))
            columns = [row[1] for row in result.fetchall()]
            if "creator_id" not in columns:
                await conn.execute(text("ALTER TABLE books ADD COLUMN creator_id TEXT"))

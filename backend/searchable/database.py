"""Database engine and session management

Review note:
- chat_history rows keep the whole conversation as one JSON document in `content`.
- Every completed turn overwrites that document, nothing is appended row by row.
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from searchable.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=settings.DEBUG,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def init_db(bind=None) -> None:
    """Create tables"""
    from searchable.models.base import Base
    from searchable.models.chat_history import ChatHistory

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all, tables=[ChatHistory.__table__])

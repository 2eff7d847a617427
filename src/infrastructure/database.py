"""
Async SQLAlchemy engine and session factory.

PostgreSQL through ``asyncpg``.  Services never share a session: each
operation opens one from ``async_session_factory`` and owns its
transaction, so row locks (``SELECT ... FOR UPDATE``) last exactly as long
as the unit of work.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
)

# Objects stay readable after commit; notifications are built from them.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass

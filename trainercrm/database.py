"""Async SQLAlchemy engine & session — supports SQLite and PostgreSQL."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from trainercrm.config import get_settings

settings = get_settings()

# SQLite connections are cheap and bound to the loop that opened them,
# so they are not pooled; PostgreSQL uses pool_size
if settings.is_sqlite:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args={"check_same_thread": False},
        poolclass=NullPool,
    )
else:
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=10,
    )

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


@event.listens_for(Base, "init", propagate=True)
def _apply_defaults(target, args, kwargs):
    """Fill scalar and callable column defaults at construction time.

    Ids and idempotency keys are then known before the first flush.
    """
    for attr in target.__mapper__.column_attrs:
        key = attr.key
        default = attr.columns[0].default
        if default is None or key in kwargs or getattr(target, key) is not None:
            continue
        if default.is_callable:
            setattr(target, key, default.arg(None))
        elif default.is_scalar:
            setattr(target, key, default.arg)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands timestamps back naive; everything is stored as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def get_db():
    async with async_session() as session:
        yield session

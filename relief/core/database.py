"""
Database layer — async SQLite via SQLAlchemy 2.0 + aiosqlite.

Backs the client-side local store. Three tables:
    • records         — mirrored entities, keyed by (collection, id)
    • offline_actions — deferred mutations, autoincrement id gives FIFO order
    • sync_metadata   — last successful pull per collection

Usage:
    from relief.core.database import create_local_engine, init_local_db

    engine = create_local_engine("sqlite+aiosqlite:///relief_local.db")
    await init_local_db(engine)
    sessions = create_session_factory(engine)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Integer, String
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from relief.core.config import settings

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class RecordRow(Base):
    __tablename__ = "records"

    collection: Mapped[str] = mapped_column(String(32), primary_key=True)
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON)
    last_modified: Mapped[str] = mapped_column(String(40))


class OfflineActionRow(Base):
    __tablename__ = "offline_actions"
    # ids are never reused, so replay order survives deletes
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(32), index=True)
    record_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON)
    timestamp: Mapped[str] = mapped_column(String(40))
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    last_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(64))


class SyncMetadataRow(Base):
    __tablename__ = "sync_metadata"

    key: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_sync: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)


# ── Engine / Session Factory ──
def create_local_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    """Async engine for the local database (defaults to LOCAL_DB_URL)."""
    return create_async_engine(url or settings.LOCAL_DB_URL, echo=echo, future=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Lifecycle ──
async def init_local_db(engine: AsyncEngine) -> None:
    """Create all tables if missing."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Local database tables initialised")


async def close_local_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Local database connections closed")

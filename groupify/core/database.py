"""
Engine, sessions and table definitions for the share read models.

The analytics engine only reads these tables; the seeding helpers on
SqlShareStore write to them for tests and local development.
"""
import logging
import os
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Text, Index, ForeignKey, UniqueConstraint, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from sqlalchemy.sql import func

from groupify.core.config import settings

logger = logging.getLogger("groupify")

metadata = MetaData()

# Pool sizing for the API process
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600

_engine: Optional[Engine] = None
_SessionLocal = None


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL wins over DATABASE_URL; env wins over the cached settings."""
    return os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL") or settings.DATABASE_URL


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)build the global engine and session factory."""
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    if not url:
        raise ValueError("No database configured: set DATABASE_URL in the environment or groupify/.env")

    # Analytics reads run in worker threads
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}

    _engine = create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        connect_args=connect_args,
    )
    _SessionLocal = sessionmaker(bind=_engine, autoflush=False)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the engine. Used by tests."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


def get_engine() -> Engine:
    if _engine is None:
        init_engine()
    return _engine


@contextmanager
def get_db_session():
    """
    Transactional session scope: commit on success, roll back and re-raise on error.

        with get_db_session() as session:
            session.execute(...)
    """
    if _SessionLocal is None:
        init_engine()
    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    """Idempotent: existing tables are left alone."""
    metadata.create_all(bind=get_engine())


def check_connection() -> bool:
    """True when a trivial SELECT succeeds against the configured database."""
    try:
        with get_engine().connect() as conn:
            conn.execute(select(1))
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


# Users (identity read model, owned by the auth collaborator)
users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=False),
    Column('profile_image', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

groups = Table(
    'groups',
    metadata,
    Column('group_id', String(100), primary_key=True),
    Column('name', Text, nullable=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Membership keeps insertion order via position so output rows are stable
group_members = Table(
    'group_members',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('group_id', String(100), ForeignKey('groups.group_id', ondelete='CASCADE'), nullable=False, index=True),
    Column('user_id', String(100), nullable=False),
    Column('position', Integer, nullable=False, server_default='0'),
    UniqueConstraint('group_id', 'user_id', name='uq_group_members_group_user'),
)

shares = Table(
    'shares',
    metadata,
    Column('share_id', String(100), primary_key=True),
    Column('group_id', String(100), ForeignKey('groups.group_id', ondelete='CASCADE'), nullable=False),
    Column('shared_by', String(100), nullable=False, index=True),
    Column('spotify_track_id', String(100), nullable=False, server_default=''),
    Column('track_name', Text, nullable=False, server_default=''),
    Column('artist_name', Text, nullable=False),
    Column('like_count', Integer, nullable=False, server_default='0'),
    Column('listen_count', Integer, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), nullable=False),
    Index('idx_shares_group_created', 'group_id', 'created_at'),
)

share_likes = Table(
    'share_likes',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('share_id', String(100), ForeignKey('shares.share_id', ondelete='CASCADE'), nullable=False, index=True),
    Column('user_id', String(100), nullable=False),
    Column('liked_at', DateTime(timezone=True), nullable=False),
    UniqueConstraint('share_id', 'user_id', name='uq_share_likes_share_user'),
)

share_listeners = Table(
    'share_listeners',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('share_id', String(100), ForeignKey('shares.share_id', ondelete='CASCADE'), nullable=False, index=True),
    Column('user_id', String(100), nullable=False),
    Column('listened_at', DateTime(timezone=True), nullable=False),
    Column('time_to_listen_ms', Integer, nullable=True),
    UniqueConstraint('share_id', 'user_id', name='uq_share_listeners_share_user'),
)

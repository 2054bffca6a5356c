"""
Database session management with connection pooling.

Provides a shared FastAPI dependency for database sessions across all routes.
Uses SQLAlchemy with connection pooling for PostgreSQL; SQLite (local runs and
tests) gets the pysqlite SAVEPOINT fix so begin_nested() works.

Usage:
    from whitelist_engine.database.session import get_db_session

    @router.get("/grants")
    async def list_grants(db: Session = Depends(get_db_session)):
        return db.query(Grant).all()
"""

import os
import logging
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

# Module-level engine singleton
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def _get_database_url() -> str:
    """
    Get and normalize the database URL from environment.

    Handles Render/Heroku style postgres:// URLs by converting to postgresql://.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return database_url


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    Let pysqlite honour SAVEPOINT / begin_nested().

    The stdlib driver issues its own BEGIN lazily and breaks nested
    transactions; take over transaction control instead.
    """

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine with per-dialect defaults."""
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine = create_engine(database_url, connect_args=connect_args, **kwargs)
        return enable_sqlite_savepoints(engine)

    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connection health
        pool_recycle=1800,   # Recycle connections after 30 minutes
        **kwargs,
    )


def get_engine() -> Engine:
    """Get or create the database engine singleton."""
    global _engine
    if _engine is None:
        try:
            _engine = build_engine(_get_database_url())
            logger.info("Database engine created", extra={"dialect": _engine.dialect.name})
        except ValueError as e:
            logger.error("Failed to create database engine", extra={"error": str(e)})
            raise
    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory singleton."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine(),
        )
    return _SessionLocal


async def get_db_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Creates a new session for each request and ensures proper cleanup.
    Raises HTTP 503 if database is not configured.
    """
    try:
        SessionLocal = get_session_factory()
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured"
        )

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_db_session_sync() -> Generator[Session, None, None]:
    """
    Synchronous version of get_db_session for workers and scripts.

    Usage:
        for session in get_db_session_sync():
            # use session
    """
    try:
        SessionLocal = get_session_factory()
    except ValueError as e:
        raise RuntimeError(f"Database not configured: {e}")

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

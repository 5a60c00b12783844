"""
Database session management with connection pooling.

Provides a shared FastAPI dependency for database sessions across all routes.
Uses SQLAlchemy with connection pooling for server databases; SQLite URLs
(local development) get a single-connection engine instead.

Usage:
    from clinic_access.database.session import get_db_session

    @router.get("/tenants/mine")
    async def list_mine(db: Session = Depends(get_db_session)):
        ...
"""

import os
import logging
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool

from clinic_access.platform.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

# Module-level engine singleton
_engine = None
_SessionLocal = None


def _get_database_url() -> str:
    """
    Get and normalize the database URL from environment.

    Handles the legacy postgres:// scheme by converting to postgresql://.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return database_url


def get_engine() -> Engine:
    """
    Get or create the database engine singleton.

    Server databases use QueuePool:
    - pool_size: 5 connections
    - max_overflow: 10 additional connections under load
    - pool_pre_ping: Verify connections before use
    """
    global _engine
    if _engine is None:
        try:
            database_url = _get_database_url()
        except ValueError as e:
            logger.error("Failed to create database engine", extra={"error": str(e)})
            raise

        if database_url.startswith("sqlite"):
            _engine = create_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
            logger.info("Database engine created for SQLite")
        else:
            _engine = create_engine(
                database_url,
                poolclass=QueuePool,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=1800,
            )
            logger.info("Database engine created with connection pooling")
    return _engine


def get_session_factory() -> sessionmaker:
    """Get or create the session factory singleton."""
    global _SessionLocal
    if _SessionLocal is None:
        engine = get_engine()
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=engine
        )
    return _SessionLocal


def get_db_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database sessions.

    Creates a new session for each request and ensures proper cleanup.
    Uncommitted work is rolled back when the request ends.
    Raises HTTP 503 if database is not configured.
    """
    try:
        SessionLocal = get_session_factory()
    except ValueError:
        raise ServiceUnavailableError("Database not configured")

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

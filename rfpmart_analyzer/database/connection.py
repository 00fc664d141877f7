"""
Database connection management for the RFP Mart analyzer.

Provides a lazily created SQLAlchemy engine and session factory. SQLite is
the default store; any SQLAlchemy URL may be configured.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, close_all_sessions, sessionmaker

from ..config import get_config

logger = logging.getLogger(__name__)

# Global engine and session factory
_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def get_database_url() -> str:
    """Get database URL from settings."""
    return get_config().database.url


def _ensure_sqlite_directory(database_url: str) -> None:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def create_database_engine(database_url: Optional[str] = None) -> Engine:
    """Create and configure the database engine."""
    database_url = database_url or get_database_url()
    echo = get_config().database.echo
    is_sqlite = make_url(database_url).get_backend_name() == "sqlite"

    engine_config = {"echo": echo}
    if is_sqlite:
        _ensure_sqlite_directory(database_url)
    else:
        engine_config.update(pool_pre_ping=True, pool_recycle=3600)

    engine = create_engine(database_url, **engine_config)

    if is_sqlite:
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return engine


def get_engine() -> Engine:
    """Get the database engine, creating it if necessary."""
    global _engine
    if _engine is None:
        _engine = create_database_engine()
        logger.info("Database engine created")
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the session factory, creating it if necessary."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine(),
            expire_on_commit=False,
        )
        logger.debug("Database session factory created")
    return _SessionLocal


def get_db_session() -> Session:
    """Get a new database session."""
    return get_session_factory()()


@contextmanager
def get_db() -> Generator[Session, None, None]:
    """Context manager for database sessions with automatic commit/rollback."""
    session = get_db_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_database(database_url: Optional[str] = None) -> Engine:
    """
    Create all tables.

    Passing a URL replaces the current engine, which is how tests point the
    application at a temporary database.
    """
    global _engine
    from .models import Base

    if database_url is not None:
        close_database_connections()
        _engine = create_database_engine(database_url)
        logger.info("Database engine created")

    engine = get_engine()
    Base.metadata.create_all(engine)
    logger.info(f"Database initialized at {engine.url.render_as_string(hide_password=True)}")
    return engine


def close_database_connections() -> None:
    """Close all database connections and cleanup resources."""
    global _engine, _SessionLocal

    if _SessionLocal is not None:
        close_all_sessions()
        _SessionLocal = None

    if _engine is not None:
        _engine.dispose()
        _engine = None
        logger.info("Database engine disposed")


def check_database_connection() -> bool:
    """Return True when a trivial query succeeds."""
    try:
        with get_db() as session:
            session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        return False

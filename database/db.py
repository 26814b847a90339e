"""
Database engine and session management for FieldLedger.
"""

import logging
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from contextlib import contextmanager

from config.settings import DATABASE_URL
from database.models import Base

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, echo=False)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite ignores FK constraints unless asked; allocation/farm cascades rely on them."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_db() -> list[str]:
    """Create any missing tables. Returns the names of tables that were created."""
    existing = set(inspect(engine).get_table_names())
    Base.metadata.create_all(engine)
    created = [name for name in Base.metadata.tables if name not in existing]
    if created:
        logger.info(f"Created tables: {', '.join(created)}")
    return created


@contextmanager
def get_session() -> Session:
    """Context manager for database sessions with auto-commit/rollback.

    Everything done inside one ``with`` block commits together or not at all;
    allocation replacement and payment recording depend on that.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db_session() -> Session:
    """Get a session for FastAPI dependency injection."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

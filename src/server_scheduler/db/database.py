"""Database abstraction layer for Server Scheduler."""

from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


# These will be initialized by initialize_database()
engine = None
SessionLocal = None
Base = declarative_base()
_TABLES_CREATED = False


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def initialize_database(db_url: Optional[str] = None):
    """Initializes the database engine and session factory.

    Args:
        db_url: SQLAlchemy URL. Defaults to an in-memory SQLite database.
    """
    global engine, SessionLocal, _TABLES_CREATED

    if db_url is None:
        db_url = "sqlite://"

    connect_args = {}
    engine_kwargs = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, or every thread gets its own empty database.
        engine_kwargs["poolclass"] = StaticPool

    engine = create_engine(
        db_url,
        connect_args=connect_args,
        **engine_kwargs,
        pool_pre_ping=True,
        pool_recycle=3600,  # Replaces connection after 1 hour (3600 seconds)
    )
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    _TABLES_CREATED = False


def _ensure_tables_created():
    """
    Ensures that the database tables are created.
    This is done lazily on the first session request.
    """
    global _TABLES_CREATED
    if not _TABLES_CREATED:
        if not engine:
            initialize_database()
        # Import models so they are registered on Base.metadata.
        from . import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        _TABLES_CREATED = True


@contextmanager
def db_session_manager():
    """Context manager for database sessions."""
    if not SessionLocal:
        initialize_database()
    _ensure_tables_created()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

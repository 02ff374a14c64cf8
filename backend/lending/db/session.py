import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from lending.core.config import get_database_url
from lending.core.db import register_query_timing

logger = logging.getLogger(__name__)

# Create Base class for models
Base = declarative_base()

# Internal lazy globals
_engine = None
_SessionLocal = None
_database_url = None


def _enable_sqlite_immediate_transactions(engine: Engine) -> None:
    """Open every SQLite transaction with BEGIN IMMEDIATE.

    pysqlite defers BEGIN until the first write, so two writers could both read
    an item as available. Taking the write lock up front serializes them.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: str) -> Engine:
    """Create an engine configured for the backend behind ``database_url``."""
    url = make_url(database_url)

    if url.drivername.startswith("postgres"):
        engine = create_engine(
            database_url,
            pool_size=20,
            max_overflow=40,
            pool_pre_ping=True,  # Detects and refreshes stale connections
            pool_recycle=3600,
            connect_args={
                "application_name": "lending",  # Visible in pg_stat_activity
                "connect_timeout": 10,
            },
            echo=False,
        )
    elif url.drivername.startswith("sqlite"):
        if url.database in (None, "", ":memory:"):
            # One shared in-memory database so DDL persists across sessions
            engine = create_engine(
                database_url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                database_url,
                echo=False,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
            _enable_sqlite_immediate_transactions(engine)
    else:
        engine = create_engine(database_url, echo=False, pool_pre_ping=True)

    register_query_timing(engine)
    logger.debug(
        "SQLAlchemy engine created",
        extra={
            "context": {
                "dialect": engine.dialect.name,
                "url": url.render_as_string(hide_password=True),
            }
        },
    )
    return engine


def get_engine() -> Engine:
    """Return a cached engine, creating it from DATABASE_URL on first call.

    Tests set DATABASE_URL before the engine is constructed; a changed URL
    disposes the old engine and builds a new one.
    """
    global _engine, _database_url, _SessionLocal
    database_url = get_database_url()
    if _engine is None or _database_url != database_url:
        if _engine is not None:
            _engine.dispose()
        _engine = build_engine(database_url)
        _database_url = database_url
        _SessionLocal = None
    return _engine


def get_sessionmaker() -> sessionmaker:
    """Return a cached sessionmaker bound to the lazy engine."""
    global _SessionLocal
    engine = get_engine()
    if _SessionLocal is None:
        _SessionLocal = make_sessionmaker(engine)
    return _SessionLocal


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def create_tables(engine: Engine = None) -> None:
    """Create all tables (idempotent)."""
    # Models must be imported so Base.metadata is populated
    from lending.db import base  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())

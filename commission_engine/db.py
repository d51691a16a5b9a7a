"""
Engine and session setup.

One engine per process, reused across warm invocations.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .config import Settings
from .schema import Base

logger = logging.getLogger(__name__)

_session_factory: sessionmaker | None = None


def create_db_engine(url: str, echo: bool = False) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, echo=echo, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # Every session must see the same in-memory database
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, echo=echo, **kwargs)
    _enable_sqlite_savepoints(engine)
    return engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT handling;
    # let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables and indexes."""
    Base.metadata.create_all(engine)


def get_session_factory(settings: Settings | None = None) -> sessionmaker:
    """Process-wide session factory, created on first use."""
    global _session_factory
    if _session_factory is None:
        settings = settings or Settings.from_env()
        engine = create_db_engine(settings.database_url)
        if settings.database_url.startswith("sqlite"):
            init_db(engine)
        logger.info(f"Database engine ready ({engine.dialect.name})")
        _session_factory = make_session_factory(engine)
    return _session_factory


__all__ = [
    "create_db_engine",
    "make_session_factory",
    "init_db",
    "get_session_factory",
]

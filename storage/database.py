"""
Storage - Database Engine and Sessions.

============================================================
RESPONSIBILITY
============================================================
Owns the SQLAlchemy engine for the indicator store.

- Builds engines from DATABASE_URL (or an explicit URL)
- Hands out sessions and a commit/rollback boundary
- Creates the four engine tables and checks they exist

Callers that need isolation (tests, the CLI) pass their own
engine; everything else shares one lazily created engine.

============================================================
"""

import logging
import os
from contextlib import contextmanager
from typing import Generator, List, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool

from storage.models import Base

load_dotenv()

logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite:///./kpi_engine.db"

REQUIRED_TABLES = [
    "schedules",
    "indicators",
    "execution_history",
    "alert_records",
]


class SchemaError(Exception):
    """The indicator store schema could not be created or is incomplete."""


# =============================================================
# ENGINE
# =============================================================

_shared_engine: Optional[Engine] = None
_shared_factory: Optional[sessionmaker] = None


def resolve_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        logger.warning(f"DATABASE_URL is empty, falling back to {DEFAULT_DATABASE_URL}")
        return DEFAULT_DATABASE_URL
    # The store is driven through sync sessions in worker threads
    if url.startswith("postgresql+asyncpg"):
        url = "postgresql" + url[len("postgresql+asyncpg"):]
    return url


def create_database_engine(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> Engine:
    """
    Build an engine for the indicator store.

    SQLite connections are shared across the threads that
    asyncio.to_thread uses, so check_same_thread is turned off.
    Server databases get a pre-pinged QueuePool sized for the
    scheduler's concurrency limit.
    """
    url = database_url or resolve_database_url()
    logger.info(f"Opening indicator store at {url.split('@')[-1]}")

    if url.startswith("sqlite"):
        engine = create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_recycle=pool_recycle,
            pool_pre_ping=True,
            echo=echo,
        )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, connection_record):
        logger.debug("Indicator store connection opened")

    return engine


def get_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    """Session factory for ``engine``, or the shared one when omitted."""
    global _shared_engine, _shared_factory

    if engine is not None:
        return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    if _shared_factory is None:
        _shared_engine = create_database_engine()
        _shared_factory = sessionmaker(
            bind=_shared_engine, autoflush=False, expire_on_commit=False
        )
    return _shared_factory


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    One transaction.

        with session_scope(factory) as session:
            IndicatorRepository(session).acquire_running(...)

    Commits when the block exits normally, otherwise rolls back
    and lets the exception through.
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.debug(f"Transaction rolled back: {e}")
        session.rollback()
        raise
    finally:
        session.close()


# =============================================================
# SCHEMA
# =============================================================

def verify_required_tables(engine: Engine) -> List[str]:
    """Names from REQUIRED_TABLES that the database does not have yet."""
    present = set(inspect(engine).get_table_names())
    missing = [name for name in REQUIRED_TABLES if name not in present]
    for name in missing:
        logger.warning(f"Indicator store table missing: {name}")
    return missing


def initialize_database(engine: Engine) -> None:
    """
    Create any missing engine tables. Safe to call repeatedly.

    Raises:
        SchemaError: the database is unreachable, DDL failed, or
            tables are still missing afterwards
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        Base.metadata.create_all(bind=engine)
    except SQLAlchemyError as e:
        logger.critical(f"Indicator store initialization failed: {e}")
        raise SchemaError(f"Cannot initialize indicator store: {e}") from e

    missing = verify_required_tables(engine)
    if missing:
        raise SchemaError(f"Tables still missing after create_all: {missing}")
    logger.info(f"Indicator store ready ({len(REQUIRED_TABLES)} tables)")


__all__ = [
    "DEFAULT_DATABASE_URL",
    "REQUIRED_TABLES",
    "SchemaError",
    "resolve_database_url",
    "create_database_engine",
    "get_session_factory",
    "session_scope",
    "verify_required_tables",
    "initialize_database",
]

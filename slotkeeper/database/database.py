"""Engine and session setup for slotkeeper.

SQLite is the default (development and tests); production points
`DATABASE_URL` at PostgreSQL. SlotFinder and SeriesManager never open
sessions themselves: callers hand them one from `SessionLocal` or
`session_scope()`.
"""

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./slotkeeper.db")

Base = declarative_base()


def _is_sqlite_url(database_url: str) -> bool:
    return "sqlite" in (database_url or "")


def get_engine_kwargs(database_url: str) -> dict:
    """create_engine kwargs for a URL, computed without connecting."""
    kwargs: dict = {
        "echo": os.getenv("DEBUG", "False").lower() == "true",
        "pool_pre_ping": True,
    }
    if _is_sqlite_url(database_url):
        kwargs["connect_args"] = {"check_same_thread": False}
        return kwargs

    # Series edits are short transactions; a small pool is enough.
    kwargs["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
    kwargs["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    kwargs["pool_timeout"] = int(os.getenv("DB_POOL_TIMEOUT_SEC", "30"))
    return kwargs


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """Turn on FK enforcement so occurrence and event rows cascade with their task."""

    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str) -> Engine:
    engine = create_engine(database_url, **get_engine_kwargs(database_url))
    if _is_sqlite_url(database_url):
        enable_sqlite_foreign_keys(engine)
    return engine


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Yield a session and close it afterwards (for dependency-injection style callers)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Session for one unit of work; rolled back if the block raises.

    Repositories commit per call, so this only guards work done directly
    on the session.
    """
    db = (factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Session rolled back: {type(e).__name__}: {str(e)}")
        raise
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None, database_url: Optional[str] = None) -> None:
    """Create the schema.

    SQLite uses `create_all()`. Other databases run the Alembic migrations
    when `RUN_MIGRATIONS=true`.
    """
    database_url = database_url or DATABASE_URL
    run_migrations = os.getenv("RUN_MIGRATIONS", "False").lower() == "true"
    if run_migrations and not _is_sqlite_url(database_url):
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(os.getenv("ALEMBIC_INI", "alembic.ini"))
        alembic_cfg.set_main_option("sqlalchemy.url", database_url)
        command.upgrade(alembic_cfg, "head")
        logger.info("Applied database migrations")
        return

    # Register the ORM rows on Base.metadata.
    from slotkeeper.database import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)

"""
Database sessions for the maintenance scripts in this directory.

Scripts run without a Flask app, so they build their own engine from a
DATABASE_URL and switch on sqlite foreign keys the way app.biohost.db does.
"""
from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def require_database_url(explicit: str | None = None) -> str:
    db_url = (explicit or os.environ.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise SystemExit("DATABASE_URL is required.")
    return db_url


def script_engine(db_url: str) -> Engine:
    engine = create_engine(db_url, future=True, pool_pre_ping=True)
    if db_url.startswith("sqlite"):

        @event.listens_for(engine, "connect")
        def _sqlite_fk_pragma(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


@contextmanager
def script_session(db_url: str, *, dry_run: bool = False) -> Generator[Session, None, None]:
    """Commits on success unless dry_run is set; the engine is disposed either way."""
    engine = script_engine(db_url)
    s: Session = sessionmaker(bind=engine, class_=Session, autoflush=False, expire_on_commit=False, future=True)()
    try:
        yield s
        if dry_run:
            s.rollback()
        else:
            s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()

from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session, sessionmaker

from forge.models import Base

_lock = threading.Lock()
_engine = None
_SessionLocal = None

DATA_DIR = Path(__file__).parent / "data"


def default_db_path() -> Path:
    override = os.environ.get("FORGE_DB_PATH", "").strip()
    return Path(override).expanduser() if override else DATA_DIR / "forge.db"


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        db_path = Path(db_path) if db_path is not None else default_db_path()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        _migrate_existing_db(_engine)


def _migrate_existing_db(engine) -> None:
    """Add columns that may be missing in older databases."""
    inspector = sa_inspect(engine)
    if not inspector.has_table("forecasts"):
        return
    columns = {col["name"] for col in inspector.get_columns("forecasts")}
    if "prompt_version" not in columns:
        with engine.begin() as conn:
            conn.execute(text(
                "ALTER TABLE forecasts ADD COLUMN prompt_version VARCHAR(50) DEFAULT ''"
            ))


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a session that rolls back on error.

    Usage (MCP server, scripts)::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


"""Database connection and session management.

This module builds SQLAlchemy engines and session factories for the
key-value store and the prior-generation settings database.
"""

from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import models to ensure they are registered with the metadata
import models.kv_entry  # noqa: F401
import models.legacy_settings  # noqa: F401
from models.base import Base, LegacyBase


def sqlite_file_path(database_url: str) -> Optional[Path]:
    """Return the file behind a SQLite URL, or None for in-memory/other URLs."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return None
    return Path(url.database)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine. Nothing is opened until first use.

    In-memory SQLite shares one connection so every session sees the same
    database.
    """
    if make_url(database_url).get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if sqlite_file_path(database_url) is None:
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url)


def _ensure_parent_dir(engine: Engine) -> None:
    path = sqlite_file_path(engine.url.render_as_string(hide_password=False))
    if path is not None:
        path.parent.mkdir(parents=True, exist_ok=True)


def init_db(engine: Engine) -> None:
    """Create the key-value table (and the SQLite file) if missing."""
    _ensure_parent_dir(engine)
    Base.metadata.create_all(bind=engine)


def init_legacy_db(engine: Engine) -> None:
    """Create the prior-generation tables. Used by tests and import tools."""
    _ensure_parent_dir(engine)
    LegacyBase.metadata.create_all(bind=engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)

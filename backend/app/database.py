"""
Engine and session wiring for the meet scheduler.

DATABASE_URL (default sqlite:///./meets.db) and SQL_ECHO are read from the
environment or a .env file.
"""

import os
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

load_dotenv()

DEFAULT_DATABASE_URL = "sqlite:///./meets.db"
SQLITE_FILE_PREFIX = "sqlite:///"


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in ("true", "1", "yes")


def build_engine(url: str, **kwargs: Any) -> Engine:
    """
    Create an engine for `url`.

    SQLite engines allow use from the request thread pool, and a file
    database gets its parent directory created. Extra keyword arguments go
    straight to create_engine (tests pass poolclass=StaticPool).
    """
    connect_args: Dict[str, Any] = dict(kwargs.pop("connect_args", {}))
    if url.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
        db_file = url[len(SQLITE_FILE_PREFIX):] if url.startswith(SQLITE_FILE_PREFIX) else ""
        if db_file and db_file != ":memory:":
            Path(db_file).parent.mkdir(parents=True, exist_ok=True)
    kwargs.setdefault("echo", _env_flag("SQL_ECHO"))
    return create_engine(url, connect_args=connect_args, **kwargs)


DATABASE_URL = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)
engine: Engine = build_engine(DATABASE_URL)


def get_session() -> Generator[Session, None, None]:
    """Request-scoped session on the app engine"""
    with Session(engine) as session:
        yield session


def init_db(bind: Optional[Engine] = None) -> None:
    """Create every meet table on `bind` (the app engine by default)."""
    # Registers all tables on SQLModel.metadata
    from app import models  # noqa: F401

    SQLModel.metadata.create_all(bind if bind is not None else engine)

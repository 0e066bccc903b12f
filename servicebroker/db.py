from __future__ import annotations

import os

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine


def database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite:///./servicebroker.db")


def create_db_engine(url: str | None = None, *, echo: bool = False) -> Engine:
    url = url or database_url()
    is_sqlite = url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    kwargs = {}
    # An in-memory SQLite database only lives as long as its single connection.
    if is_sqlite and (url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, echo=echo, connect_args=connect_args, **kwargs)


def init_db(engine: Engine) -> None:
    # Ensure models are imported before creating tables.
    import servicebroker.models  # noqa: F401

    SQLModel.metadata.create_all(engine)

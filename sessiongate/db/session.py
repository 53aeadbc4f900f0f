from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool


def make_engine(database_url: str, *, statement_timeout_seconds: float | None = None) -> Engine:
    """
    Build an engine; in-memory SQLite shares a single connection.

    On PostgreSQL `statement_timeout_seconds` becomes the server-side
    statement_timeout, so a stuck query is cancelled by the database
    rather than left running in a worker thread.
    """

    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
        )
    connect_args = {}
    if statement_timeout_seconds and database_url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={int(statement_timeout_seconds * 1000)}"
    # pre_ping plus periodic recycle so stale connections surface as retries, not hangs
    return create_engine(
        database_url,
        connect_args=connect_args,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
        future=True,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
        expire_on_commit=False,
    )


__all__ = ["make_engine", "make_session_factory"]

"""Local cache database session configuration."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Ensure model modules are imported so that metadata is populated when create_all runs.
import chatterbox_client.models  # noqa: E402,F401

SQLITE_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")


def create_cache_engine(database_url: str, *, echo: bool = False) -> Engine:
    """Create an engine for the local cache.

    SQLite connections are shared across the worker threads used by the sync
    engine, and in-memory databases are pinned to a single connection so every
    session sees the same data.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True, echo=echo)

    if database_url in SQLITE_MEMORY_URLS:
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=echo,
        )
    return create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        echo=echo,
    )


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory bound to the cache engine."""
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


def create_tables(engine: Engine) -> None:
    """Create all cache tables."""
    Base.metadata.create_all(bind=engine)

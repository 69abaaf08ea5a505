"""Local cache database configuration and utilities."""

from .session import Base, create_cache_engine, create_tables, make_session_factory

__all__ = ["Base", "create_cache_engine", "create_tables", "make_session_factory"]

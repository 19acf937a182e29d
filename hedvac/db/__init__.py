"""Database module - async SQL engine and session management."""

from hedvac.db.engine import (
    build_engine,
    build_session_factory,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
]

"""
Database package: declarative base, sessions, models and repositories.
"""

from .base import Base
from .session import init_db, build_session_factory, create_all, close_engine

__all__ = [
    "Base",
    "init_db",
    "build_session_factory",
    "create_all",
    "close_engine",
]

"""
Declarative base and shared columns for ledger models.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase


def enum_values(enum_cls) -> list:
    """Persist enums by value rather than by member name."""
    return [member.value for member in enum_cls]


def generate_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    # Client-side so flushed instances never hold expired timestamps
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, PyEnum):
        return value.value
    return value


class Base(DeclarativeBase):
    """Base class for all ledger models."""

    def to_dict(self, exclude: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Column values keyed by attribute name, ready for a JSON response.

        Args:
            exclude: Column names to leave out, such as encrypted keys
        """
        skipped = set(exclude or ())
        return {
            column.key: _jsonable(getattr(self, column.key))
            for column in self.__table__.columns
            if column.name not in skipped
        }


class IdMixin:
    """String UUID primary key."""
    id = Column(String(36), primary_key=True, default=generate_id)


class TimestampMixin:
    """Creation and last-update times, in UTC."""
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        index=True,
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )

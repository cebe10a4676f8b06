"""
SQLAlchemy Base class for all models.

Separated from database.py to allow importing Base
without triggering engine creation (needed for tests).
"""
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    """Naive UTC timestamp, the form all DateTime columns are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass

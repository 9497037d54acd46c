"""SQLAlchemy declarative base and helpers for proxy models."""
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def now_ms() -> int:
    """Return current timestamp in milliseconds."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)

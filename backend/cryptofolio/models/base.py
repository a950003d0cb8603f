from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Column, DateTime, Integer
from sqlalchemy.orm import declarative_mixin


def utcnow() -> datetime:
    """Naive UTC timestamp; all DateTime columns are stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@declarative_mixin
class IdMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)


@declarative_mixin
class TimestampMixin:
    """created_at / updated_at maintained by the ORM."""
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an incoming timestamp to the naive-UTC storage convention."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Scale of every Numeric amount column (quantities and prices)
AMOUNT_SCALE = 10


def round_amount(value: float) -> float:
    """Round to what an amount column will actually store."""
    return round(float(value), AMOUNT_SCALE)

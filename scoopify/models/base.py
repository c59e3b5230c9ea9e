"""
Declarative base and shared mixins for all models.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from scoopify.utils.dates import utcnow


CENTS = Decimal("0.01")


def cents_to_decimal(cents: int) -> Decimal:
    """Convert an integer amount in cents to dollars."""
    return (Decimal(cents) * CENTS).quantize(CENTS)


def decimal_to_cents(amount: Decimal) -> int:
    """Convert a dollar amount (already rounded to cents) to integer cents."""
    return int((Decimal(amount).quantize(CENTS) / CENTS).to_integral_value())


class Base(DeclarativeBase):
    """Declarative base holding the shared metadata."""


class BaseModel(Base):
    """Abstract base for every persisted entity."""

    __abstract__ = True

    def to_dict(self) -> Dict[str, Any]:
        """Column values keyed by attribute name."""
        return {
            column.key: getattr(self, column.key)
            for column in self.__table__.columns
        }


class TimestampMixin:
    """Adds created_at / updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        comment="Row creation time (UTC)"
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        comment="Last modification time (UTC)"
    )

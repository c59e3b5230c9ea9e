"""
Employee payout requests.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, BigInteger, DateTime, ForeignKey, Index, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin, cents_to_decimal


class PayoutStatus(str, Enum):
    """Status of a payout request."""
    REQUESTED = "REQUESTED"
    PAID = "PAID"
    REJECTED = "REJECTED"


class PayoutRequest(BaseModel, TimestampMixin):
    """A batch of completed service earnings requested by one employee."""

    __tablename__ = "payout_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    employee_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("employees.id"),
        comment="Requesting employee"
    )

    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        comment="Sum of the referenced services' earnings in cents"
    )

    service_count: Mapped[int] = mapped_column(
        Integer,
        comment="Number of services settled by this payout"
    )

    status: Mapped[PayoutStatus] = mapped_column(
        SQLEnum(PayoutStatus, name="payout_status"),
        default=PayoutStatus.REQUESTED,
        comment="Payout status"
    )

    requested_at: Mapped[datetime] = mapped_column(
        DateTime,
        comment="When the payout was requested"
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the payout was sent"
    )

    transaction_reference: Mapped[Optional[str]] = mapped_column(
        String(128),
        comment="Transfer id at the payout provider"
    )

    __table_args__ = (
        Index("idx_payout_employee_status", "employee_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<PayoutRequest(id={self.id}, employee={self.employee_id}, amount_cents={self.amount_cents})>"

    @property
    def amount(self) -> Decimal:
        return cents_to_decimal(self.amount_cents)

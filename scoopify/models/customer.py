"""
Customer model.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Index, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class ReferralType(str, Enum):
    """Who referred the customer to the platform."""
    CUSTOMER = "CUSTOMER"
    BUSINESS = "BUSINESS"


class Customer(BaseModel, TimestampMixin):
    """A subscribing customer."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        comment="Identity of the customer's user account"
    )

    name: Mapped[str] = mapped_column(
        String(120),
        comment="Display name"
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="Contact email"
    )

    # Referral attribution
    referral_type: Mapped[Optional[ReferralType]] = mapped_column(
        SQLEnum(ReferralType, name="referral_type"),
        comment="Referral source, if the customer was referred"
    )

    referrer_user_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        comment="User who referred this customer"
    )

    gateway_customer_reference: Mapped[Optional[str]] = mapped_column(
        String(64),
        comment="Customer id at the payment gateway"
    )

    __table_args__ = (
        Index("idx_customer_referrer", "referrer_user_id"),
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, user={self.user_id})>"

    @property
    def is_referred(self) -> bool:
        return self.referral_type is not None and self.referrer_user_id is not None

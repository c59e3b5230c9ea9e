"""
Referral commission models.
A referred customer's subscription earns its referrer a fixed commission per
billing month; commissions are later batched into payouts.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, BigInteger, DateTime, ForeignKey, Index,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin
from .customer import ReferralType


class CommissionStatus(str, Enum):
    """Status of a single referral commission."""
    PENDING = "PENDING"
    BATCHED = "BATCHED"
    PAID = "PAID"


class ReferralPayoutStatus(str, Enum):
    """Status of a batched referral payout."""
    PENDING = "PENDING"
    PAID = "PAID"


class ReferralCommission(BaseModel, TimestampMixin):
    """Commission owed to a referrer for one billing month of a subscription."""

    __tablename__ = "referral_commissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    referrer_user_id: Mapped[str] = mapped_column(
        String(64),
        comment="User who referred the customer"
    )

    customer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("customers.id"),
        comment="Referred customer"
    )

    subscription_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id"),
        comment="Subscription whose charge triggered the commission"
    )

    referral_type: Mapped[ReferralType] = mapped_column(
        SQLEnum(ReferralType, name="referral_type"),
        comment="CUSTOMER or BUSINESS referral"
    )

    period_key: Mapped[str] = mapped_column(
        String(7),
        comment="Billing month, e.g. 2026-10"
    )

    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        comment="Commission in cents"
    )

    status: Mapped[CommissionStatus] = mapped_column(
        SQLEnum(CommissionStatus, name="commission_status"),
        default=CommissionStatus.PENDING,
        comment="Commission status"
    )

    referral_payout_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("referral_payouts.id"),
        comment="Payout batch containing this commission"
    )

    __table_args__ = (
        UniqueConstraint("subscription_id", "period_key", name="uq_commission_subscription_period"),
        Index("idx_commission_referrer_status", "referrer_user_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<ReferralCommission(referrer={self.referrer_user_id}, period={self.period_key}, amount_cents={self.amount_cents})>"


class ReferralPayout(BaseModel, TimestampMixin):
    """Batched referral commissions payable to one referrer."""

    __tablename__ = "referral_payouts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    referrer_user_id: Mapped[str] = mapped_column(
        String(64),
        comment="Payee"
    )

    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        comment="Sum of batched commissions in cents"
    )

    commission_count: Mapped[int] = mapped_column(
        Integer,
        comment="Number of commissions in the batch"
    )

    status: Mapped[ReferralPayoutStatus] = mapped_column(
        SQLEnum(ReferralPayoutStatus, name="referral_payout_status"),
        default=ReferralPayoutStatus.PENDING,
        comment="Payout status"
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the payout was sent"
    )

    __table_args__ = (
        Index("idx_referral_payout_referrer", "referrer_user_id"),
    )

    def __repr__(self) -> str:
        return f"<ReferralPayout(referrer={self.referrer_user_id}, amount_cents={self.amount_cents})>"

"""
Service plans and customer subscriptions.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, Date, DateTime, ForeignKey, Index,
    Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column

from scoopify.utils.dates import Weekday
from .base import BaseModel, TimestampMixin, cents_to_decimal


class PlanType(str, Enum):
    """Billing cadence of a plan."""
    MONTHLY = "MONTHLY"
    ONE_TIME = "ONE_TIME"


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status."""
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELLED = "CANCELLED"
    PAUSED = "PAUSED"


class PaymentMethod(str, Enum):
    """How the customer pays for the subscription."""
    CARD = "CARD"
    ACH = "ACH"


class ServicePlan(BaseModel, TimestampMixin):
    """A purchasable plan (e.g. 1 dog weekly, $55/month)."""

    __tablename__ = "service_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    name: Mapped[str] = mapped_column(
        String(100),
        comment="Display name of the plan"
    )

    price_cents: Mapped[int] = mapped_column(
        BigInteger,
        comment="Price per billing cycle in cents"
    )

    plan_type: Mapped[PlanType] = mapped_column(
        SQLEnum(PlanType, name="plan_type"),
        default=PlanType.MONTHLY,
        comment="Billing cadence"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        comment="Whether the plan can be subscribed to"
    )

    def __repr__(self) -> str:
        return f"<ServicePlan(id={self.id}, name={self.name}, price_cents={self.price_cents})>"

    @property
    def price(self) -> Decimal:
        return cents_to_decimal(self.price_cents)


class Subscription(BaseModel, TimestampMixin):
    """A customer's recurring subscription. Never deleted, only status-transitioned."""

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    customer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("customers.id"),
        comment="Owning customer"
    )

    plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("service_plans.id"),
        comment="Subscribed plan"
    )

    status: Mapped[SubscriptionStatus] = mapped_column(
        SQLEnum(SubscriptionStatus, name="subscription_status"),
        default=SubscriptionStatus.ACTIVE,
        comment="Billing status"
    )

    start_date: Mapped[date] = mapped_column(
        Date,
        comment="First day services may be scheduled"
    )

    end_date: Mapped[Optional[date]] = mapped_column(
        Date,
        comment="Last day services may be scheduled (null = open ended)"
    )

    service_day: Mapped[Weekday] = mapped_column(
        SQLEnum(Weekday, name="weekday"),
        comment="Weekday the service is performed"
    )

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(PaymentMethod, name="payment_method"),
        default=PaymentMethod.CARD,
        comment="Payment method used for billing"
    )

    last_payment_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="Last successful charge"
    )

    __table_args__ = (
        Index("idx_subscription_status_day", "status", "service_day"),
        Index("idx_subscription_customer", "customer_id"),
    )

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, customer={self.customer_id}, status={self.status.value})>"

    def is_serviceable_on(self, day: date) -> bool:
        """Whether a service may be scheduled on the given day."""
        if self.status != SubscriptionStatus.ACTIVE:
            return False
        if day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date

"""
Service instance models: one concrete occurrence of a recurring service,
with its photos and checklist results.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, BigInteger, Boolean, DateTime, Text, ForeignKey, Index,
    UniqueConstraint, Enum as SQLEnum, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, TimestampMixin, cents_to_decimal


class ServiceStatus(str, Enum):
    """Lifecycle status of a service instance."""
    SCHEDULED = "SCHEDULED"
    CLAIMED = "CLAIMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (ServiceStatus.COMPLETED, ServiceStatus.CANCELLED)


NON_TERMINAL_STATUSES = (
    ServiceStatus.SCHEDULED,
    ServiceStatus.CLAIMED,
    ServiceStatus.IN_PROGRESS,
)


class PaymentStatus(str, Enum):
    """Employee payout status of a completed service."""
    PENDING = "PENDING"
    PAYOUT_REQUESTED = "PAYOUT_REQUESTED"
    PAID = "PAID"


# Allowed payment-status advancement; layered on top of COMPLETED
PAYMENT_STATUS_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.PAYOUT_REQUESTED},
    PaymentStatus.PAYOUT_REQUESTED: {PaymentStatus.PAID},
    PaymentStatus.PAID: set(),
}


class PhotoKind(str, Enum):
    """When a photo was taken relative to the work."""
    BEFORE = "BEFORE"
    AFTER = "AFTER"


class ServiceInstance(BaseModel, TimestampMixin):
    """A scheduled service visit, claimable by exactly one employee."""

    __tablename__ = "service_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    customer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("customers.id"),
        comment="Customer being serviced"
    )

    subscription_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id"),
        comment="Subscription this instance was generated from"
    )

    service_plan_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("service_plans.id"),
        comment="Plan inherited from the subscription"
    )

    status: Mapped[ServiceStatus] = mapped_column(
        SQLEnum(ServiceStatus, name="service_status"),
        default=ServiceStatus.SCHEDULED,
        comment="Lifecycle status"
    )

    scheduled_date: Mapped[datetime] = mapped_column(
        DateTime,
        comment="When the service is due (UTC)"
    )

    period_key: Mapped[str] = mapped_column(
        String(10),
        comment="ISO week of the occurrence, e.g. 2026-W42"
    )

    # Claim
    employee_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("employees.id"),
        comment="Employee who claimed the service"
    )

    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the service was claimed"
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When work started"
    )

    completed_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the service was completed"
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the service was cancelled"
    )

    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="Reason given on cancellation"
    )

    # Earnings
    potential_earnings_cents: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        comment="Employee payout for this instance in cents"
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(PaymentStatus, name="service_payment_status"),
        default=PaymentStatus.PENDING,
        comment="Employee payout status"
    )

    payout_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("payout_requests.id"),
        comment="Payout request that settles this instance"
    )

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the employee was paid"
    )

    # Audit
    notes: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Append-only audit trail, one line per entry"
    )

    is_locked: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Locked jobs are hidden from employees until unlocked"
    )

    unlocked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the job was unlocked"
    )

    photos: Mapped[List["ServicePhoto"]] = relationship(
        "ServicePhoto",
        back_populates="service_instance",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ServicePhoto.id"
    )

    __table_args__ = (
        # One instance per customer per week; losing concurrent inserts fail here
        UniqueConstraint("customer_id", "period_key", name="uq_service_customer_period"),
        Index("idx_service_status_date", "status", "scheduled_date"),
        Index("idx_service_employee_status", "employee_id", "status"),
        Index("idx_service_payment_status", "payment_status"),
    )

    def __repr__(self) -> str:
        return f"<ServiceInstance(id={self.id}, status={self.status.value}, scheduled={self.scheduled_date})>"

    @property
    def potential_earnings(self) -> Decimal:
        return cents_to_decimal(self.potential_earnings_cents)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def note_lines(self) -> List[str]:
        return self.notes.splitlines() if self.notes else []

    def photo_count(self, kind: PhotoKind) -> int:
        return sum(1 for photo in self.photos if photo.kind == kind)


def append_note(line: str):
    """SQL expression appending a line to ServiceInstance.notes."""
    return func.coalesce(ServiceInstance.notes + "\n", "") + line


class ServicePhoto(BaseModel, TimestampMixin):
    """A before/after photo attached to a service instance."""

    __tablename__ = "service_photos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    service_instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("service_instances.id", ondelete="CASCADE"),
        comment="Photographed service"
    )

    kind: Mapped[PhotoKind] = mapped_column(
        SQLEnum(PhotoKind, name="photo_kind"),
        comment="BEFORE or AFTER"
    )

    url: Mapped[str] = mapped_column(
        Text,
        comment="Location of the stored image"
    )

    uploaded_by: Mapped[Optional[str]] = mapped_column(
        String(64),
        comment="User who attached the photo"
    )

    service_instance: Mapped["ServiceInstance"] = relationship(
        "ServiceInstance",
        back_populates="photos"
    )

    __table_args__ = (
        Index("idx_photo_service_kind", "service_instance_id", "kind"),
    )

    def __repr__(self) -> str:
        return f"<ServicePhoto(service={self.service_instance_id}, kind={self.kind.value})>"


class ChecklistItemCompletion(BaseModel, TimestampMixin):
    """Result of one checklist item recorded when a service is completed."""

    __tablename__ = "checklist_item_completions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    service_instance_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("service_instances.id", ondelete="CASCADE"),
        comment="Completed service"
    )

    item_key: Mapped[str] = mapped_column(
        String(64),
        comment="Checklist item identifier"
    )

    done: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Whether the item was done"
    )

    __table_args__ = (
        UniqueConstraint("service_instance_id", "item_key", name="uq_checklist_service_item"),
    )

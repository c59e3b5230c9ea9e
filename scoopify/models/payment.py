"""
Subscription charges and their retry state machine.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, BigInteger, DateTime, Text, ForeignKey, Index,
    UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from scoopify.core.exceptions import InvalidTransitionError, InvariantViolation
from .base import BaseModel, TimestampMixin


class ChargeStatus(str, Enum):
    """Status of a subscription charge."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RetryStatus(str, Enum):
    """Status of a single retry attempt."""
    SCHEDULED = "SCHEDULED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (RetryStatus.SUCCESS, RetryStatus.FAILED)


RETRY_STATUS_ENUM = SQLEnum(RetryStatus, name="retry_status")

RETRY_TRANSITIONS = {
    RetryStatus.SCHEDULED: {RetryStatus.SUCCESS, RetryStatus.FAILED},
    RetryStatus.SUCCESS: set(),
    RetryStatus.FAILED: set(),
}


class Payment(BaseModel, TimestampMixin):
    """One subscription charge."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    customer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("customers.id"),
        comment="Charged customer"
    )

    subscription_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id"),
        comment="Subscription the charge belongs to"
    )

    amount_cents: Mapped[int] = mapped_column(
        BigInteger,
        comment="Charged amount in cents"
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="usd",
        comment="ISO currency code"
    )

    status: Mapped[ChargeStatus] = mapped_column(
        SQLEnum(ChargeStatus, name="charge_status"),
        default=ChargeStatus.PENDING,
        comment="Charge status"
    )

    gateway_customer_reference: Mapped[Optional[str]] = mapped_column(
        String(64),
        comment="Customer id at the gateway, overrides the customer record"
    )

    failure_reason: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="Gateway reason of the last failure"
    )

    retries: Mapped[List["PaymentRetry"]] = relationship(
        "PaymentRetry",
        back_populates="payment",
        order_by="PaymentRetry.attempt_count"
    )

    __table_args__ = (
        Index("idx_payment_subscription", "subscription_id"),
        Index("idx_payment_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, amount_cents={self.amount_cents}, status={self.status.value})>"


class PaymentRetry(BaseModel, TimestampMixin):
    """One scheduled retry of a failed charge.

    The ``version`` column turns every flush into a compare-and-swap, so two
    processors finalizing the same retry cannot both succeed.
    """

    __tablename__ = "payment_retries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    payment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("payments.id"),
        comment="Failed payment being retried"
    )

    status: Mapped[RetryStatus] = mapped_column(
        RETRY_STATUS_ENUM,
        default=RetryStatus.SCHEDULED,
        comment="Retry status"
    )

    attempt_count: Mapped[int] = mapped_column(
        Integer,
        default=1,
        comment="1-based attempt number within the payment's retry chain"
    )

    scheduled_date: Mapped[datetime] = mapped_column(
        DateTime,
        comment="Earliest time the retry may run"
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        comment="When the retry reached a terminal status"
    )

    failure_reason: Mapped[Optional[str]] = mapped_column(
        String(255),
        comment="Reason code when the retry failed"
    )

    transaction_id: Mapped[Optional[str]] = mapped_column(
        String(128),
        comment="Gateway transaction id on success"
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Optimistic concurrency counter"
    )

    payment: Mapped["Payment"] = relationship(
        "Payment",
        back_populates="retries"
    )

    status_history: Mapped[List["PaymentRetryStatusEntry"]] = relationship(
        "PaymentRetryStatusEntry",
        back_populates="payment_retry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PaymentRetryStatusEntry.sequence"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_retry_status_scheduled", "status", "scheduled_date"),
        UniqueConstraint("payment_id", "attempt_count", name="uq_retry_payment_attempt"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRetry(id={self.id}, payment={self.payment_id}, status={self.status.value}, attempt={self.attempt_count})>"

    def is_due(self, now: datetime) -> bool:
        return self.status == RetryStatus.SCHEDULED and self.scheduled_date <= now

    def append_status(
        self,
        status: RetryStatus,
        timestamp: datetime,
        note: Optional[str] = None
    ) -> "PaymentRetryStatusEntry":
        """Append an entry to the status history.

        History is append-only and chronologically ordered; nothing leaves a
        terminal status.
        """
        history = self.status_history
        if history:
            last = history[-1]
            if last.status.is_terminal:
                raise InvalidTransitionError("payment_retry", last.status.value, status.value)
            if status not in RETRY_TRANSITIONS[last.status]:
                raise InvalidTransitionError("payment_retry", last.status.value, status.value)
            if timestamp < last.timestamp:
                raise InvariantViolation(
                    "Status history must be chronologically ordered",
                    {"retry_id": self.id, "last": last.timestamp.isoformat(), "new": timestamp.isoformat()}
                )

        entry = PaymentRetryStatusEntry(
            sequence=len(history) + 1,
            status=status,
            timestamp=timestamp,
            note=note
        )
        history.append(entry)
        return entry

    def transition(
        self,
        status: RetryStatus,
        now: datetime,
        failure_reason: Optional[str] = None,
        transaction_id: Optional[str] = None
    ) -> None:
        """Move SCHEDULED -> SUCCESS|FAILED and record it in the history."""
        if status not in RETRY_TRANSITIONS[self.status]:
            raise InvalidTransitionError("payment_retry", self.status.value, status.value)

        self.append_status(status, now, note=failure_reason)
        self.status = status
        self.processed_at = now
        self.failure_reason = failure_reason
        self.transaction_id = transaction_id


class PaymentRetryStatusEntry(BaseModel):
    """One typed entry of a retry's status history."""

    __tablename__ = "payment_retry_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    payment_retry_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("payment_retries.id", ondelete="CASCADE"),
        comment="Retry this entry belongs to"
    )

    sequence: Mapped[int] = mapped_column(
        Integer,
        comment="1-based position in the history"
    )

    status: Mapped[RetryStatus] = mapped_column(
        RETRY_STATUS_ENUM,
        comment="Status entered"
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        comment="When the status was entered (UTC)"
    )

    note: Mapped[Optional[str]] = mapped_column(
        Text,
        comment="Optional reason"
    )

    payment_retry: Mapped["PaymentRetry"] = relationship(
        "PaymentRetry",
        back_populates="status_history"
    )

    __table_args__ = (
        UniqueConstraint("payment_retry_id", "sequence", name="uq_retry_history_sequence"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRetryStatusEntry(retry={self.payment_retry_id}, seq={self.sequence}, status={self.status.value})>"

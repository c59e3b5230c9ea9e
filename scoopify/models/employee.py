"""
Employee (field worker) model.
"""

from typing import Optional

from sqlalchemy import String, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel, TimestampMixin


class Employee(BaseModel, TimestampMixin):
    """A field worker who claims and completes service instances."""

    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        comment="Identity of the employee's user account"
    )

    name: Mapped[str] = mapped_column(
        String(120),
        comment="Display name"
    )

    has_completed_service_area_setup: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Whether the employee configured the zip codes they serve"
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        comment="Inactive employees cannot claim jobs"
    )

    payout_account_reference: Mapped[Optional[str]] = mapped_column(
        String(64),
        comment="Connected payout account at the payment provider"
    )

    def __repr__(self) -> str:
        return f"<Employee(id={self.id}, user={self.user_id})>"

    @property
    def can_claim_jobs(self) -> bool:
        return self.is_active and self.has_completed_service_area_setup

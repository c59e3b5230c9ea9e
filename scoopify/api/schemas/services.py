"""
Schemas for service instance actions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from scoopify.models.base import cents_to_decimal
from scoopify.models.service_instance import PaymentStatus, PhotoKind, ServiceStatus
from .common import APIResponse


class PhotoSchema(BaseModel):
    kind: PhotoKind
    url: str = Field(min_length=1, description="Location of the already stored image")


class AttachPhotosRequest(BaseModel):
    photos: List[PhotoSchema] = Field(min_length=1)


class CompleteServiceRequest(BaseModel):
    photos: List[PhotoSchema] = Field(default_factory=list)
    checklist: Dict[str, bool] = Field(default_factory=dict)
    note: Optional[str] = Field(default=None, max_length=1000)
    admin_override: bool = False


class CancelServiceRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
    admin_override: bool = False


class ServiceInstanceSchema(BaseModel):
    """Service instance as returned by the API."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    subscription_id: Optional[int] = None
    status: ServiceStatus
    scheduled_date: datetime
    period_key: str
    employee_id: Optional[int] = None
    claimed_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    potential_earnings: Decimal
    payment_status: PaymentStatus
    is_locked: bool
    notes: List[str] = Field(default_factory=list)
    photo_count: int = 0

    @classmethod
    def from_model(cls, instance) -> "ServiceInstanceSchema":
        return cls(
            id=instance.id,
            customer_id=instance.customer_id,
            subscription_id=instance.subscription_id,
            status=instance.status,
            scheduled_date=instance.scheduled_date,
            period_key=instance.period_key,
            employee_id=instance.employee_id,
            claimed_at=instance.claimed_at,
            started_at=instance.started_at,
            completed_date=instance.completed_date,
            cancelled_at=instance.cancelled_at,
            cancellation_reason=instance.cancellation_reason,
            potential_earnings=cents_to_decimal(instance.potential_earnings_cents),
            payment_status=instance.payment_status,
            is_locked=instance.is_locked,
            notes=instance.note_lines,
            photo_count=len(instance.photos),
        )


class ServiceResponse(APIResponse):
    data: ServiceInstanceSchema


class ServiceListResponse(APIResponse):
    data: List[ServiceInstanceSchema]
    total: int

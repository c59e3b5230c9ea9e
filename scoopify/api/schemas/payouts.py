"""
Schemas for payouts and payment reports.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from scoopify.models.base import cents_to_decimal
from scoopify.models.payout import PayoutStatus
from .common import APIResponse


class PayoutRequestBody(BaseModel):
    service_instance_ids: List[int] = Field(min_length=1)
    claimed_total: Decimal = Field(gt=0, description="Total the employee expects, in dollars")


class MarkPaidBody(BaseModel):
    transaction_reference: Optional[str] = Field(default=None, max_length=128)


class PayoutSchema(BaseModel):
    id: int
    employee_id: int
    amount: Decimal
    service_count: int
    status: PayoutStatus
    requested_at: datetime
    paid_at: Optional[datetime] = None
    transaction_reference: Optional[str] = None

    @classmethod
    def from_model(cls, payout) -> "PayoutSchema":
        return cls(
            id=payout.id,
            employee_id=payout.employee_id,
            amount=cents_to_decimal(payout.amount_cents),
            service_count=payout.service_count,
            status=payout.status,
            requested_at=payout.requested_at,
            paid_at=payout.paid_at,
            transaction_reference=payout.transaction_reference,
        )


class PayoutResponse(APIResponse):
    data: PayoutSchema


class RetryAnalyticsSchema(BaseModel):
    total_retries: int
    successful_retries: int
    failed_retries: int
    success_rate: float
    transition_counts: Dict[str, int]
    average_transition_seconds: Dict[str, float]
    most_common_success_path: Optional[str] = None
    average_attempts_to_success: Optional[float] = None


class RetryAnalyticsResponse(APIResponse):
    data: RetryAnalyticsSchema

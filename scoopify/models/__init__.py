"""
Database models for the Scoopify backend.

Contains the SQLAlchemy models for subscriptions, the service instances
generated from them, charge retries and employee/referral settlement.
"""

from .base import Base, BaseModel, TimestampMixin
from .customer import Customer, ReferralType
from .employee import Employee
from .subscription import (
    ServicePlan, Subscription, PlanType, SubscriptionStatus, PaymentMethod
)
from .service_instance import (
    ServiceInstance, ServicePhoto, ChecklistItemCompletion,
    ServiceStatus, PaymentStatus, PhotoKind
)
from .payment import (
    Payment, PaymentRetry, PaymentRetryStatusEntry, ChargeStatus, RetryStatus
)
from .payout import PayoutRequest, PayoutStatus
from .referral import (
    ReferralCommission, ReferralPayout, CommissionStatus, ReferralPayoutStatus
)

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "Customer",
    "ReferralType",
    "Employee",
    "ServicePlan",
    "Subscription",
    "PlanType",
    "SubscriptionStatus",
    "PaymentMethod",
    "ServiceInstance",
    "ServicePhoto",
    "ChecklistItemCompletion",
    "ServiceStatus",
    "PaymentStatus",
    "PhotoKind",
    "Payment",
    "PaymentRetry",
    "PaymentRetryStatusEntry",
    "ChargeStatus",
    "RetryStatus",
    "PayoutRequest",
    "PayoutStatus",
    "ReferralCommission",
    "ReferralPayout",
    "CommissionStatus",
    "ReferralPayoutStatus",
]

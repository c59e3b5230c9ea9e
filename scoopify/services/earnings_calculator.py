"""
Employee earnings calculation.

Turns a subscription's gross price into the per-visit payout of the employee:

    gross - processor fee - referral fee - platform fee = net
    net / cadence divisor = per-instance earnings

Every fee is rounded to cents (half-up) before it is subtracted, so the
breakdown always adds up exactly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Optional, Union

import structlog

from scoopify.core.config import settings
from scoopify.core.exceptions import InvalidAmount, ValidationError
from scoopify.models.base import CENTS
from scoopify.models.customer import ReferralType
from scoopify.models.subscription import PaymentMethod

logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


def round_cents(amount: Decimal) -> Decimal:
    """Round to cents, halves away from zero."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


class PlatformFeeBasis(str, Enum):
    """What the platform cut is a fraction of."""
    GROSS = "gross"
    NET = "net"


class ProcessorFeeModel(ABC):
    """Fee charged by the payment processor for one payment method."""

    method: PaymentMethod

    @abstractmethod
    def raw_fee(self, amount: Decimal) -> Decimal:
        """Unrounded fee on amount."""

    def fee(self, amount: Decimal) -> Decimal:
        return round_cents(self.raw_fee(amount))


class CardFeeModel(ProcessorFeeModel):
    """Card payments: percentage plus a fixed per-charge fee."""

    method = PaymentMethod.CARD

    def __init__(self, rate: Decimal = Decimal("0.029"), fixed: Decimal = Decimal("0.30")):
        self.rate = rate
        self.fixed = fixed

    def raw_fee(self, amount: Decimal) -> Decimal:
        return amount * self.rate + self.fixed


class AchFeeModel(ProcessorFeeModel):
    """Bank debits: percentage with a cap."""

    method = PaymentMethod.ACH

    def __init__(self, rate: Decimal = Decimal("0.008"), cap: Decimal = Decimal("5.00")):
        self.rate = rate
        self.cap = cap

    def raw_fee(self, amount: Decimal) -> Decimal:
        return min(amount * self.rate, self.cap)


PROCESSOR_FEE_MODELS: Dict[PaymentMethod, ProcessorFeeModel] = {
    PaymentMethod.CARD: CardFeeModel(),
    PaymentMethod.ACH: AchFeeModel(),
}


def processor_fee_model(method: PaymentMethod) -> ProcessorFeeModel:
    return PROCESSOR_FEE_MODELS[PaymentMethod(method)]


@dataclass(frozen=True)
class FeeSchedule:
    """Fees applied to a gross subscription price."""
    processor: ProcessorFeeModel
    platform_cut_fraction: Decimal = Decimal("0.25")
    platform_fee_basis: PlatformFeeBasis = PlatformFeeBasis.GROSS
    cadence_divisor: int = 4
    referral_fee: Decimal = Decimal("5.00")

    @classmethod
    def from_settings(cls, payment_method: PaymentMethod = PaymentMethod.CARD) -> "FeeSchedule":
        """Schedule configured for the given payment method."""
        return cls(
            processor=processor_fee_model(payment_method),
            platform_cut_fraction=Decimal(settings.platform_cut_fraction),
            platform_fee_basis=PlatformFeeBasis(settings.platform_fee_basis),
            cadence_divisor=settings.cadence_divisor,
            referral_fee=Decimal(settings.referral_fee),
        )


@dataclass(frozen=True)
class EarningsBreakdown:
    """Result of an earnings calculation. All amounts in dollars."""
    gross_amount: Decimal
    processor_fee: Decimal
    referral_fee: Decimal
    platform_fee: Decimal
    net_employee_amount: Decimal
    cadence_divisor: int
    per_instance_earnings: Decimal
    is_clamped: bool = False

    @property
    def total_fees(self) -> Decimal:
        return self.processor_fee + self.referral_fee + self.platform_fee

    def to_dict(self) -> Dict[str, Union[str, int, bool]]:
        return {
            "gross_amount": str(self.gross_amount),
            "processor_fee": str(self.processor_fee),
            "referral_fee": str(self.referral_fee),
            "platform_fee": str(self.platform_fee),
            "net_employee_amount": str(self.net_employee_amount),
            "cadence_divisor": self.cadence_divisor,
            "per_instance_earnings": str(self.per_instance_earnings),
            "is_clamped": self.is_clamped,
        }


def _to_decimal(amount) -> Decimal:
    if isinstance(amount, float):
        amount = str(amount)
    try:
        return Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(amount)


def calculate_earnings(
    gross_amount,
    schedule: Optional[FeeSchedule] = None,
    referral_type: Optional[ReferralType] = None
) -> EarningsBreakdown:
    """Compute the employee share of a gross subscription price.

    Args:
        gross_amount: Price per billing cycle in dollars
        schedule: Fee schedule, defaults to the configured card schedule
        referral_type: Set when the paying customer was referred

    Returns:
        EarningsBreakdown whose net equals gross minus the three fees, or
        zero with ``is_clamped`` set when the fees exceed the gross.

    Raises:
        InvalidAmount: gross is not a positive amount
        ValidationError: the schedule is malformed
    """
    schedule = schedule or FeeSchedule.from_settings()
    gross = _to_decimal(gross_amount)
    if not gross.is_finite() or gross <= 0:
        raise InvalidAmount(gross_amount)
    gross = round_cents(gross)

    if schedule.cadence_divisor < 1:
        raise ValidationError(
            "Cadence divisor must be at least 1",
            {"cadence_divisor": schedule.cadence_divisor}
        )
    if not Decimal(0) <= schedule.platform_cut_fraction <= Decimal(1):
        raise ValidationError(
            "Platform cut must be between 0 and 1",
            {"platform_cut_fraction": str(schedule.platform_cut_fraction)}
        )

    processor_fee = schedule.processor.fee(gross)
    referral_fee = round_cents(schedule.referral_fee) if referral_type is not None else ZERO

    if schedule.platform_fee_basis == PlatformFeeBasis.NET:
        platform_base = max(gross - processor_fee - referral_fee, ZERO)
    else:
        platform_base = gross
    platform_fee = round_cents(platform_base * schedule.platform_cut_fraction)

    net = gross - processor_fee - referral_fee - platform_fee
    is_clamped = False
    if net < 0:
        logger.error(
            "Fees exceed gross amount, clamping employee earnings to zero",
            gross=str(gross),
            processor_fee=str(processor_fee),
            referral_fee=str(referral_fee),
            platform_fee=str(platform_fee),
            payment_method=schedule.processor.method.value
        )
        net = ZERO
        is_clamped = True

    per_instance = round_cents(net / Decimal(schedule.cadence_divisor))

    return EarningsBreakdown(
        gross_amount=gross,
        processor_fee=processor_fee,
        referral_fee=referral_fee,
        platform_fee=platform_fee,
        net_employee_amount=net,
        cadence_divisor=schedule.cadence_divisor,
        per_instance_earnings=per_instance,
        is_clamped=is_clamped,
    )


def customer_referral_earnings(
    referral_fee: Optional[Decimal] = None,
    processor: Optional[ProcessorFeeModel] = None
) -> Decimal:
    """What a referrer receives per billing cycle.

    The referral fee is paid out through the card processor, so its own
    processing fee is deducted: 5.00 - (0.145 + 0.30) = 4.56.
    """
    fee = Decimal(settings.referral_fee) if referral_fee is None else Decimal(referral_fee)
    processor = processor or processor_fee_model(PaymentMethod.CARD)
    return max(round_cents(fee - processor.raw_fee(fee)), ZERO)

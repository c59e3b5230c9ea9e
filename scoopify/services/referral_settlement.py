"""
Referral commissions.

A referred customer's paid billing month earns the referrer a fixed
commission (the referral fee net of its processing fee). Commissions accrue
as PENDING and are periodically batched into one payout per referrer.
"""

from datetime import date, datetime
from typing import List, Optional

import structlog
from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from scoopify.core.database import get_async_session
from scoopify.core.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from scoopify.models.base import decimal_to_cents
from scoopify.models.customer import Customer
from scoopify.models.referral import (
    CommissionStatus, ReferralCommission, ReferralPayout, ReferralPayoutStatus
)
from scoopify.models.subscription import Subscription
from scoopify.services.batch import BatchResult, ItemOutcome, ItemResult, run_batch
from scoopify.services.earnings_calculator import customer_referral_earnings
from scoopify.utils.dates import billing_month_key, utcnow

logger = structlog.get_logger(__name__)


class ReferralSettlementService:
    """Accrues and settles referral commissions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def accrue_commission(
        self,
        subscription_id: int,
        billing_day: date
    ) -> Optional[ReferralCommission]:
        """Create the month's PENDING commission for a referred subscription.

        Returns None when the customer was not referred or the month already
        accrued.
        """
        subscription = await self.db.get(Subscription, subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription not found: {subscription_id}",
                {"subscription_id": subscription_id}
            )
        customer = await self.db.get(Customer, subscription.customer_id)
        if not customer.is_referred:
            return None

        key = billing_month_key(billing_day)
        existing = await self.db.execute(
            select(ReferralCommission.id).where(
                and_(
                    ReferralCommission.subscription_id == subscription_id,
                    ReferralCommission.period_key == key
                )
            )
        )
        if existing.scalar_one_or_none() is not None:
            return None

        commission = ReferralCommission(
            referrer_user_id=customer.referrer_user_id,
            customer_id=customer.id,
            subscription_id=subscription_id,
            referral_type=customer.referral_type,
            period_key=key,
            amount_cents=decimal_to_cents(customer_referral_earnings()),
            status=CommissionStatus.PENDING,
        )
        self.db.add(commission)
        await self.db.flush()

        logger.info(
            "Referral commission accrued",
            referrer=customer.referrer_user_id,
            subscription_id=subscription_id,
            period=key,
            amount_cents=commission.amount_cents
        )
        return commission

    async def pending_referrers(self) -> List[str]:
        result = await self.db.execute(
            select(ReferralCommission.referrer_user_id)
            .where(ReferralCommission.status == CommissionStatus.PENDING)
            .distinct()
            .order_by(ReferralCommission.referrer_user_id)
        )
        return list(result.scalars().all())

    async def settle_referrer(self, referrer_user_id: str) -> Optional[ReferralPayout]:
        """Batch a referrer's PENDING commissions into one payout."""
        result = await self.db.execute(
            select(ReferralCommission).where(
                and_(
                    ReferralCommission.referrer_user_id == referrer_user_id,
                    ReferralCommission.status == CommissionStatus.PENDING
                )
            ).order_by(ReferralCommission.id)
        )
        commissions = list(result.scalars().all())
        if not commissions:
            return None

        payout = ReferralPayout(
            referrer_user_id=referrer_user_id,
            amount_cents=sum(c.amount_cents for c in commissions),
            commission_count=len(commissions),
            status=ReferralPayoutStatus.PENDING,
        )
        self.db.add(payout)
        await self.db.flush()

        ids = [c.id for c in commissions]
        batched = await self.db.execute(
            update(ReferralCommission)
            .where(
                and_(
                    ReferralCommission.id.in_(ids),
                    ReferralCommission.status == CommissionStatus.PENDING
                )
            )
            .values(status=CommissionStatus.BATCHED, referral_payout_id=payout.id)
            .execution_options(synchronize_session=False)
        )
        if batched.rowcount != len(ids):
            raise ConflictError(
                "Referral commissions changed while settling",
                {"referrer": referrer_user_id, "expected": len(ids), "updated": batched.rowcount}
            )

        logger.info(
            "Referral payout created",
            referrer=referrer_user_id,
            payout_id=payout.id,
            amount_cents=payout.amount_cents,
            commissions=len(ids)
        )
        return payout

    async def mark_payout_paid(self, payout_id: int, now: Optional[datetime] = None) -> ReferralPayout:
        """ReferralPayout PENDING -> PAID together with its commissions."""
        now = now or utcnow()
        payout = await self.db.get(ReferralPayout, payout_id, populate_existing=True)
        if payout is None:
            raise NotFoundError(f"Referral payout not found: {payout_id}", {"payout_id": payout_id})
        if payout.status != ReferralPayoutStatus.PENDING:
            raise InvalidTransitionError("referral_payout", payout.status.value, ReferralPayoutStatus.PAID.value)

        payout.status = ReferralPayoutStatus.PAID
        payout.paid_at = now
        await self.db.execute(
            update(ReferralCommission)
            .where(
                and_(
                    ReferralCommission.referral_payout_id == payout_id,
                    ReferralCommission.status == CommissionStatus.BATCHED
                )
            )
            .values(status=CommissionStatus.PAID)
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        return payout


async def accrue_commission_safely(subscription_id: int, billing_day: date) -> Optional[int]:
    """Accrue in an own transaction; a concurrent duplicate is not an error.

    Returns:
        Id of the new commission, or None
    """
    try:
        async with get_async_session() as session:
            commission = await ReferralSettlementService(session).accrue_commission(
                subscription_id, billing_day
            )
            return commission.id if commission else None
    except IntegrityError:
        logger.info("Referral commission already accrued", subscription_id=subscription_id)
        return None


async def settle_referrals(item_timeout: Optional[float] = None) -> BatchResult:
    """Create one payout per referrer with pending commissions."""
    async with get_async_session() as session:
        referrers = await ReferralSettlementService(session).pending_referrers()

    async def settle(referrer_user_id: str) -> ItemResult:
        async with get_async_session() as session:
            payout = await ReferralSettlementService(session).settle_referrer(referrer_user_id)
            if payout is None:
                return ItemResult(referrer_user_id, ItemOutcome.SKIPPED, detail="nothing pending")
            return ItemResult(referrer_user_id, ItemOutcome.CREATED, entity_id=payout.id)

    return await run_batch("settle_referrals", referrers, settle, item_timeout=item_timeout)

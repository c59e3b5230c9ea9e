"""
Tests for referral commission accrual and settlement.
"""

from datetime import date, datetime

import pytest
from sqlalchemy import select

from scoopify.core.database import get_async_session
from scoopify.core.exceptions import InvalidTransitionError, NotFoundError
from scoopify.models import (
    CommissionStatus, ReferralCommission, ReferralPayout, ReferralPayoutStatus, ReferralType
)
from scoopify.services.referral_settlement import (
    ReferralSettlementService, accrue_commission_safely, settle_referrals
)

from helpers import fetch

BILLING_DAY = date(2026, 10, 4)


@pytest.fixture
def referred_subscription(make_customer, make_subscription):
    async def factory(referrer="referrer-1", referral_type=ReferralType.CUSTOMER):
        customer = await make_customer(referral_type=referral_type, referrer_user_id=referrer)
        return await make_subscription(customer)

    return factory


async def accrue(subscription_id, billing_day=BILLING_DAY):
    async with get_async_session() as session:
        return await ReferralSettlementService(session).accrue_commission(subscription_id, billing_day)


async def commissions():
    async with get_async_session() as session:
        result = await session.execute(select(ReferralCommission).order_by(ReferralCommission.id))
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_accrues_monthly_commission(referred_subscription):
    subscription = await referred_subscription(referral_type=ReferralType.BUSINESS)

    commission = await accrue(subscription.id)

    assert commission.amount_cents == 456
    assert commission.period_key == "2026-10"
    assert commission.referrer_user_id == "referrer-1"
    assert commission.referral_type == ReferralType.BUSINESS
    assert commission.status == CommissionStatus.PENDING


@pytest.mark.asyncio
async def test_one_commission_per_billing_month(referred_subscription):
    subscription = await referred_subscription()

    assert await accrue(subscription.id) is not None
    assert await accrue(subscription.id, date(2026, 10, 30)) is None
    assert await accrue(subscription.id, date(2026, 11, 2)) is not None
    assert len(await commissions()) == 2


@pytest.mark.asyncio
async def test_safe_accrual_tolerates_duplicates(referred_subscription):
    subscription = await referred_subscription()

    first = await accrue_commission_safely(subscription.id, BILLING_DAY)
    second = await accrue_commission_safely(subscription.id, BILLING_DAY)

    assert first is not None
    assert second is None


@pytest.mark.asyncio
async def test_unreferred_customer_earns_nothing(make_customer, make_subscription):
    subscription = await make_subscription(await make_customer())

    assert await accrue(subscription.id) is None
    assert await commissions() == []


@pytest.mark.asyncio
async def test_unknown_subscription(database):
    with pytest.raises(NotFoundError):
        await accrue(404)


@pytest.mark.asyncio
async def test_settle_referrals_batches_per_referrer(referred_subscription):
    await accrue((await referred_subscription("referrer-1")).id)
    await accrue((await referred_subscription("referrer-1")).id)
    await accrue((await referred_subscription("referrer-2")).id)

    result = await settle_referrals()

    assert result.job == "settle_referrals"
    assert result.created == 2
    payouts = {item.subject_id: item.entity_id for item in result.items}
    first = await fetch(ReferralPayout, payouts["referrer-1"])
    assert first.amount_cents == 912
    assert first.commission_count == 2
    assert first.status == ReferralPayoutStatus.PENDING
    assert all(c.status == CommissionStatus.BATCHED for c in await commissions())

    again = await settle_referrals()
    assert again.items == []


@pytest.mark.asyncio
async def test_mark_referral_payout_paid(referred_subscription):
    await accrue((await referred_subscription()).id)
    result = await settle_referrals()
    payout_id = result.items[0].entity_id
    paid_at = datetime(2026, 11, 1, 9, 0)

    async with get_async_session() as session:
        payout = await ReferralSettlementService(session).mark_payout_paid(payout_id, now=paid_at)

    assert payout.status == ReferralPayoutStatus.PAID
    assert payout.paid_at == paid_at
    assert [c.status for c in await commissions()] == [CommissionStatus.PAID]

    with pytest.raises(InvalidTransitionError):
        async with get_async_session() as session:
            await ReferralSettlementService(session).mark_payout_paid(payout_id)

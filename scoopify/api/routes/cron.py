"""
Cron trigger API routes.

External schedulers call these with ``Authorization: Bearer <CRON_SECRET>``.
Every job is safe to trigger repeatedly.
"""

from datetime import date
from enum import Enum
from typing import Optional

from fastapi import APIRouter, Depends, Query

import structlog

from scoopify.api.dependencies import verify_cron_secret
from scoopify.api.schemas.common import BatchResponse, SuccessResponse
from scoopify.services.payment_retry_processor import PaymentRetryProcessor
from scoopify.services.payout_service import process_weekly_payouts
from scoopify.services.referral_settlement import settle_referrals
from scoopify.services.service_generator import ServiceGenerator
from scoopify.services.unclaimed_reconciler import JobUnlocker, UnclaimedServiceReconciler
from scoopify.utils.dates import utcnow

router = APIRouter(tags=["Cron"], dependencies=[Depends(verify_cron_secret)])
logger = structlog.get_logger(__name__)


class GenerationMode(str, Enum):
    WEEK = "week"
    DAY = "day"


@router.post("/generate-services", response_model=BatchResponse)
async def generate_services(
    target_date: Optional[date] = Query(None, description="Any date inside the target week (default today)"),
    mode: GenerationMode = Query(GenerationMode.WEEK)
):
    """Create this week's (or only today's) service instances."""
    target = target_date or utcnow().date()
    generator = ServiceGenerator()
    if mode == GenerationMode.DAY:
        result = await generator.generate_for_day(target)
    else:
        result = await generator.generate_for_week(target)
    return BatchResponse.from_result(result)


@router.post("/reconcile-unclaimed", response_model=BatchResponse)
async def reconcile_unclaimed():
    result = await UnclaimedServiceReconciler().reconcile()
    return BatchResponse.from_result(result)


@router.post("/unlock-jobs", response_model=SuccessResponse)
async def unlock_jobs():
    unlocked = await JobUnlocker().unlock_due_jobs()
    return SuccessResponse(message=f"{unlocked} jobs unlocked", data={"unlocked": unlocked})


@router.post("/retry-payments", response_model=BatchResponse)
async def retry_payments():
    result = await PaymentRetryProcessor().process_due()
    return BatchResponse.from_result(result)


@router.post("/process-payouts", response_model=BatchResponse)
async def process_payouts():
    result = await process_weekly_payouts()
    return BatchResponse.from_result(result)


@router.post("/settle-referrals", response_model=BatchResponse)
async def settle_referral_commissions():
    result = await settle_referrals()
    return BatchResponse.from_result(result)

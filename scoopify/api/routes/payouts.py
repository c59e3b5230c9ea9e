"""
Payout API routes.
"""

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

import structlog

from scoopify.api.dependencies import get_admin, get_caller, get_database
from scoopify.api.schemas.payouts import (
    MarkPaidBody, PayoutRequestBody, PayoutResponse, PayoutSchema
)
from scoopify.core.exceptions import AuthorizationError
from scoopify.core.identity import Caller
from scoopify.services.events import dispatch_events
from scoopify.services.payout_service import PayoutService

router = APIRouter(tags=["Payouts"])
logger = structlog.get_logger(__name__)


@router.post("/request", response_model=PayoutResponse)
async def request_payout(
    request: PayoutRequestBody,
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_database)
):
    """Request payment for completed services.

    The claimed total must match the stored earnings within one cent.
    """
    if not caller.is_employee:
        raise AuthorizationError("Only employees can request payouts")

    result = await PayoutService(db).request_payout(
        caller.user_id, request.service_instance_ids, request.claimed_total
    )
    await db.commit()
    await dispatch_events(result.events)
    return PayoutResponse(message="Payout requested", data=PayoutSchema.from_model(result.instance))


@router.post("/{payout_id}/mark-paid", response_model=PayoutResponse)
async def mark_payout_paid(
    body: MarkPaidBody,
    payout_id: int = Path(..., ge=1),
    admin: Caller = Depends(get_admin),
    db: AsyncSession = Depends(get_database)
):
    result = await PayoutService(db).mark_paid(payout_id, body.transaction_reference)
    await db.commit()
    await dispatch_events(result.events)
    logger.info("Payout marked paid", payout_id=payout_id, admin=admin.user_id)
    return PayoutResponse(message="Payout marked paid", data=PayoutSchema.from_model(result.instance))

"""
Payment reporting API routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from scoopify.api.dependencies import get_admin, get_database
from scoopify.api.schemas.payouts import RetryAnalyticsResponse, RetryAnalyticsSchema
from scoopify.core.identity import Caller
from scoopify.services.retry_analytics import RetryAnalyticsService

router = APIRouter(tags=["Payments"])


@router.get("/retry-analytics", response_model=RetryAnalyticsResponse)
async def retry_analytics(
    admin: Caller = Depends(get_admin),
    db: AsyncSession = Depends(get_database)
):
    """Transition statistics over all payment retry histories."""
    report = await RetryAnalyticsService(db).build_report()
    return RetryAnalyticsResponse(data=RetryAnalyticsSchema(**report.to_dict()))

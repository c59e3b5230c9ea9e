"""
Daily sweep of services nobody claimed.

Unclaimed instances scheduled before today move to today at the default
service time and take the period key of today's week, with a note in their
audit trail. When that week already holds the customer's service the stale
one is cancelled instead. Both are conditional updates, so a service claimed
in the meantime is left alone.
"""

from datetime import datetime, timedelta
from typing import Optional, Tuple

import structlog
from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError

from scoopify.core.config import settings
from scoopify.core.database import get_async_session
from scoopify.models.service_instance import ServiceInstance, ServiceStatus, append_note
from scoopify.services.batch import BatchResult, ItemOutcome, ItemResult, run_batch
from scoopify.utils.dates import at_hour, period_key, start_of_day, utcnow

logger = structlog.get_logger(__name__)

SUPERSEDED_REASON = "Superseded by this week's service"


def reschedule_note(previous: datetime) -> str:
    return f"Rescheduled from {previous:%m/%d/%Y} (unclaimed)"


def superseded_note(previous: datetime) -> str:
    return f"Cancelled: unclaimed since {previous:%m/%d/%Y}, this week is already scheduled"


class UnclaimedServiceReconciler:
    """Moves stale unclaimed services forward to today."""

    def __init__(self, item_timeout: Optional[float] = None):
        self.item_timeout = item_timeout

    async def reconcile(self, now: Optional[datetime] = None) -> BatchResult:
        now = now or utcnow()
        cutoff = start_of_day(now)
        target = at_hour(now.date(), settings.default_service_hour)

        async with get_async_session() as session:
            result = await session.execute(
                select(ServiceInstance.id, ServiceInstance.scheduled_date).where(
                    and_(
                        ServiceInstance.status == ServiceStatus.SCHEDULED,
                        ServiceInstance.employee_id.is_(None),
                        ServiceInstance.scheduled_date < cutoff
                    )
                ).order_by(ServiceInstance.scheduled_date)
            )
            stale = [(row.id, row.scheduled_date) for row in result]

        logger.info("Reconciling unclaimed services", cutoff=cutoff.isoformat(), stale=len(stale))

        return await run_batch(
            "reconcile_unclaimed",
            stale,
            lambda row: self._move(row, target, now),
            subject_id=lambda row: row[0],
            item_timeout=self.item_timeout
        )

    async def _move(self, row: Tuple[int, datetime], target: datetime, now: datetime) -> ItemResult:
        service_id, previous = row
        still_unclaimed = and_(
            ServiceInstance.id == service_id,
            ServiceInstance.status == ServiceStatus.SCHEDULED,
            ServiceInstance.employee_id.is_(None),
            ServiceInstance.scheduled_date == previous
        )
        try:
            async with get_async_session() as session:
                result = await session.execute(
                    update(ServiceInstance)
                    .where(still_unclaimed)
                    .values(
                        scheduled_date=target,
                        period_key=period_key(target.date()),
                        notes=append_note(reschedule_note(previous))
                    )
                    .execution_options(synchronize_session=False)
                )
        except IntegrityError:
            # The target week already has this customer's service
            return await self._supersede(service_id, still_unclaimed, previous, now)

        if result.rowcount == 0:
            return ItemResult(service_id, ItemOutcome.SKIPPED, detail="claimed or moved meanwhile")

        logger.info(
            "Service rescheduled",
            service_id=service_id,
            previous=previous.isoformat(),
            scheduled_date=target.isoformat()
        )
        return ItemResult(service_id, ItemOutcome.UPDATED, entity_id=service_id)

    async def _supersede(self, service_id: int, still_unclaimed, previous: datetime, now: datetime) -> ItemResult:
        async with get_async_session() as session:
            result = await session.execute(
                update(ServiceInstance)
                .where(still_unclaimed)
                .values(
                    status=ServiceStatus.CANCELLED,
                    cancelled_at=now,
                    cancellation_reason=SUPERSEDED_REASON,
                    notes=append_note(superseded_note(previous))
                )
                .execution_options(synchronize_session=False)
            )

        if result.rowcount == 0:
            return ItemResult(service_id, ItemOutcome.SKIPPED, detail="claimed or moved meanwhile")

        logger.info("Stale service superseded", service_id=service_id, previous=previous.isoformat())
        return ItemResult(service_id, ItemOutcome.UPDATED, entity_id=service_id, detail="superseded")


class JobUnlocker:
    """Releases locked jobs once their unlock hour has passed."""

    async def unlock_due_jobs(self, now: Optional[datetime] = None) -> int:
        """Unlock due jobs.

        Jobs scheduled on earlier days are always due; jobs scheduled today
        become due at settings.job_unlock_hour.

        Returns:
            Number of jobs unlocked
        """
        now = now or utcnow()
        today = start_of_day(now)
        cutoff = today + timedelta(days=1) if now.hour >= settings.job_unlock_hour else today

        async with get_async_session() as session:
            result = await session.execute(
                update(ServiceInstance)
                .where(
                    and_(
                        ServiceInstance.status == ServiceStatus.SCHEDULED,
                        ServiceInstance.employee_id.is_(None),
                        ServiceInstance.is_locked.is_(True),
                        ServiceInstance.scheduled_date < cutoff
                    )
                )
                .values(is_locked=False, unlocked_at=now)
                .execution_options(synchronize_session=False)
            )
            unlocked = result.rowcount

        if unlocked:
            logger.info("Jobs unlocked", count=unlocked, cutoff=cutoff.isoformat())
        return unlocked

"""
Employee payouts.

An employee asks to be paid for a set of completed services; the request is
accepted only when the claimed total matches the stored earnings and every
referenced service moves to PAYOUT_REQUESTED in the same statement.
"""

from datetime import datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from scoopify.core.config import settings
from scoopify.core.database import get_async_session
from scoopify.core.exceptions import (
    ConflictError, EmployeeNotFoundError, InvalidTransitionError, NotFoundError,
    PayoutMismatchError, ValidationError
)
from scoopify.models.base import decimal_to_cents
from scoopify.models.employee import Employee
from scoopify.models.payout import PayoutRequest, PayoutStatus
from scoopify.models.service_instance import PaymentStatus, ServiceInstance, ServiceStatus
from scoopify.services.batch import BatchResult, ItemOutcome, ItemResult, run_batch
from scoopify.services.events import EventKind, TransitionResult, event
from scoopify.services.service_lifecycle import check_payment_transition
from scoopify.utils.dates import utcnow, week_bounds

logger = structlog.get_logger(__name__)


class PayoutService:
    """Creates and settles payout requests."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def request_payout(
        self,
        employee_user_id: str,
        service_ids: Sequence[int],
        claimed_total: Decimal,
        now: Optional[datetime] = None
    ) -> TransitionResult[PayoutRequest]:
        """Request payment for completed services.

        Args:
            employee_user_id: Requesting employee's user id
            service_ids: Completed services with PENDING payment status
            claimed_total: Total the employee expects, in dollars

        Raises:
            ValidationError: empty or duplicate ids, ineligible services, or
                a total differing from the stored earnings by more than a cent
            ConflictError: a service changed while the request was written
        """
        now = now or utcnow()
        employee = await self._employee(employee_user_id)

        ids = list(service_ids)
        if not ids:
            raise ValidationError("No services selected for payout")
        if len(set(ids)) != len(ids):
            raise ValidationError("Duplicate services in payout request", {"service_ids": ids})

        result = await self.db.execute(select(ServiceInstance).where(ServiceInstance.id.in_(ids)))
        services = {s.id: s for s in result.scalars().all()}

        missing = [sid for sid in ids if sid not in services]
        if missing:
            raise ValidationError("Unknown services in payout request", {"service_ids": missing})
        foreign = [sid for sid in ids if services[sid].employee_id != employee.id]
        if foreign:
            raise ValidationError("Services belong to another employee", {"service_ids": foreign})
        ineligible = [
            sid for sid in ids
            if services[sid].status != ServiceStatus.COMPLETED
            or services[sid].payment_status != PaymentStatus.PENDING
        ]
        if ineligible:
            raise ValidationError(
                "Only completed services awaiting payment can be paid out",
                {"service_ids": ineligible}
            )

        computed_cents = sum(services[sid].potential_earnings_cents for sid in ids)
        requested_cents = decimal_to_cents(Decimal(str(claimed_total)))
        if abs(requested_cents - computed_cents) > settings.payout_tolerance_cents:
            raise PayoutMismatchError(computed_cents, requested_cents)

        payout = await self._create(employee, ids, computed_cents, now)
        return TransitionResult(
            payout,
            event(
                EventKind.PAYOUT_REQUESTED,
                employee.user_id,
                payout_id=payout.id,
                amount_cents=payout.amount_cents
            )
        )

    async def _create(
        self,
        employee: Employee,
        ids: List[int],
        amount_cents: int,
        now: datetime
    ) -> PayoutRequest:
        check_payment_transition(PaymentStatus.PENDING, PaymentStatus.PAYOUT_REQUESTED)
        payout = PayoutRequest(
            employee_id=employee.id,
            amount_cents=amount_cents,
            service_count=len(ids),
            status=PayoutStatus.REQUESTED,
            requested_at=now,
        )
        self.db.add(payout)
        await self.db.flush()

        moved = await self.db.execute(
            update(ServiceInstance)
            .where(
                and_(
                    ServiceInstance.id.in_(ids),
                    ServiceInstance.employee_id == employee.id,
                    ServiceInstance.status == ServiceStatus.COMPLETED,
                    ServiceInstance.payment_status == PaymentStatus.PENDING
                )
            )
            .values(payment_status=PaymentStatus.PAYOUT_REQUESTED, payout_id=payout.id)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != len(ids):
            # Raising rolls back the payout row and the partial update
            raise ConflictError(
                "Services changed while the payout was requested",
                {"expected": len(ids), "updated": moved.rowcount}
            )

        logger.info(
            "Payout requested",
            payout_id=payout.id,
            employee_id=employee.id,
            amount_cents=amount_cents,
            services=len(ids)
        )
        return payout

    async def mark_paid(
        self,
        payout_id: int,
        transaction_reference: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> TransitionResult[PayoutRequest]:
        """REQUESTED -> PAID, and its services PAYOUT_REQUESTED -> PAID."""
        now = now or utcnow()
        payout = await self.db.get(PayoutRequest, payout_id, populate_existing=True)
        if payout is None:
            raise NotFoundError(f"Payout not found: {payout_id}", {"payout_id": payout_id})
        if payout.status != PayoutStatus.REQUESTED:
            raise InvalidTransitionError("payout", payout.status.value, PayoutStatus.PAID.value)
        check_payment_transition(PaymentStatus.PAYOUT_REQUESTED, PaymentStatus.PAID)

        paid = await self.db.execute(
            update(ServiceInstance)
            .where(
                and_(
                    ServiceInstance.payout_id == payout_id,
                    ServiceInstance.payment_status == PaymentStatus.PAYOUT_REQUESTED
                )
            )
            .values(payment_status=PaymentStatus.PAID, paid_at=now)
            .execution_options(synchronize_session=False)
        )
        if paid.rowcount != payout.service_count:
            raise ConflictError(
                "Payout services are out of sync",
                {"payout_id": payout_id, "expected": payout.service_count, "updated": paid.rowcount}
            )

        payout.status = PayoutStatus.PAID
        payout.paid_at = now
        payout.transaction_reference = transaction_reference
        await self.db.flush()

        employee = await self.db.get(Employee, payout.employee_id)
        logger.info("Payout paid", payout_id=payout_id, amount_cents=payout.amount_cents)
        return TransitionResult(
            payout,
            event(
                EventKind.PAYOUT_PAID,
                employee.user_id if employee else None,
                payout_id=payout_id,
                amount_cents=payout.amount_cents
            )
        )

    async def create_for_period(
        self,
        employee_id: int,
        period_start: datetime,
        period_end: datetime,
        now: Optional[datetime] = None
    ) -> Optional[PayoutRequest]:
        """Payout covering the employee's unpaid services completed in the period."""
        now = now or utcnow()
        employee = await self.db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError(f"Employee not found: {employee_id}", {"employee_id": employee_id})

        result = await self.db.execute(
            select(ServiceInstance.id, ServiceInstance.potential_earnings_cents).where(
                and_(
                    ServiceInstance.employee_id == employee_id,
                    ServiceInstance.status == ServiceStatus.COMPLETED,
                    ServiceInstance.payment_status == PaymentStatus.PENDING,
                    ServiceInstance.completed_date >= period_start,
                    ServiceInstance.completed_date < period_end
                )
            ).order_by(ServiceInstance.id)
        )
        rows = result.all()
        if not rows:
            return None
        ids = [row.id for row in rows]
        return await self._create(employee, ids, sum(row.potential_earnings_cents for row in rows), now)

    async def _employee(self, user_id: str) -> Employee:
        result = await self.db.execute(select(Employee).where(Employee.user_id == user_id))
        employee = result.scalar_one_or_none()
        if employee is None:
            raise EmployeeNotFoundError(user_id)
        return employee


def previous_week_range(now: datetime):
    """[Monday 00:00, next Monday 00:00) of the week before now."""
    monday, _ = week_bounds(now.date() - timedelta(days=7))
    start = datetime.combine(monday, time.min)
    return start, start + timedelta(days=7)


async def process_weekly_payouts(
    now: Optional[datetime] = None,
    item_timeout: Optional[float] = None
) -> BatchResult:
    """One payout per employee for last week's completed, unpaid services."""
    now = now or utcnow()
    period_start, period_end = previous_week_range(now)

    async with get_async_session() as session:
        result = await session.execute(
            select(ServiceInstance.employee_id)
            .where(
                and_(
                    ServiceInstance.employee_id.is_not(None),
                    ServiceInstance.status == ServiceStatus.COMPLETED,
                    ServiceInstance.payment_status == PaymentStatus.PENDING,
                    ServiceInstance.completed_date >= period_start,
                    ServiceInstance.completed_date < period_end
                )
            )
            .distinct()
            .order_by(ServiceInstance.employee_id)
        )
        employee_ids = list(result.scalars().all())

    logger.info(
        "Processing weekly payouts",
        period_start=period_start.isoformat(),
        employees=len(employee_ids)
    )

    async def payout_for(employee_id: int) -> ItemResult:
        async with get_async_session() as session:
            payout = await PayoutService(session).create_for_period(
                employee_id, period_start, period_end, now
            )
            if payout is None:
                return ItemResult(employee_id, ItemOutcome.SKIPPED, detail="nothing eligible")
            return ItemResult(employee_id, ItemOutcome.CREATED, entity_id=payout.id)

    return await run_batch("weekly_payouts", employee_ids, payout_for, item_timeout=item_timeout)

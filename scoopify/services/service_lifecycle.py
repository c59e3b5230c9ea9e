"""
Claim/completion state machine of a single service instance.

    SCHEDULED -> CLAIMED -> IN_PROGRESS -> COMPLETED
    SCHEDULED | CLAIMED | IN_PROGRESS -> CANCELLED

Every transition is one conditional UPDATE whose WHERE clause repeats the
expected current state. When it matches no row somebody else got there first
and the transition fails; nothing is ever overwritten blindly. Transitions
return the events to notify about; callers dispatch them after commit.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy import select, update, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from scoopify.core.config import settings
from scoopify.core.exceptions import (
    AuthorizationError, EmployeeNotFoundError, InvalidTransitionError,
    JobNotAvailableError, ServiceNotFoundError, ValidationError
)
from scoopify.core.identity import Caller, UserRole
from scoopify.models.customer import Customer
from scoopify.models.employee import Employee
from scoopify.models.service_instance import (
    ChecklistItemCompletion, PAYMENT_STATUS_TRANSITIONS, PaymentStatus,
    PhotoKind, ServiceInstance, ServicePhoto, ServiceStatus, append_note
)
from scoopify.services.events import EventKind, TransitionResult, event
from scoopify.utils.dates import start_of_day, utcnow

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PhotoUpload:
    """An already stored photo to attach."""
    kind: PhotoKind
    url: str


def check_payment_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if target not in PAYMENT_STATUS_TRANSITIONS[current]:
        raise InvalidTransitionError("service_payment", current.value, target.value)


class ServiceLifecycle:
    """Transitions of one service instance on behalf of a caller."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # Queries

    async def available_jobs(
        self,
        caller: Caller,
        now: Optional[datetime] = None,
        limit: int = 100
    ) -> List[ServiceInstance]:
        """Claimable jobs scheduled up to the end of today, oldest first."""
        if caller.role not in (UserRole.EMPLOYEE, UserRole.ADMIN):
            raise AuthorizationError("Only employees can browse available jobs")

        now = now or utcnow()
        end_of_today = start_of_day(now) + timedelta(days=1)
        result = await self.db.execute(
            select(ServiceInstance)
            .where(
                and_(
                    ServiceInstance.status == ServiceStatus.SCHEDULED,
                    ServiceInstance.employee_id.is_(None),
                    ServiceInstance.is_locked.is_(False),
                    ServiceInstance.scheduled_date < end_of_today
                )
            )
            .order_by(ServiceInstance.scheduled_date, ServiceInstance.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_service(self, service_id: int) -> ServiceInstance:
        instance = await self.db.get(ServiceInstance, service_id, populate_existing=True)
        if instance is None:
            raise ServiceNotFoundError(service_id)
        return instance

    # Transitions

    async def claim(
        self,
        service_id: int,
        caller: Caller,
        now: Optional[datetime] = None
    ) -> TransitionResult[ServiceInstance]:
        """SCHEDULED -> CLAIMED. Exactly one of several concurrent claims wins."""
        now = now or utcnow()
        employee = await self._require_employee(caller)
        if not employee.has_completed_service_area_setup:
            raise ValidationError(
                "Complete your service area setup before claiming jobs",
                {"user_id": caller.user_id},
                code="SERVICE_AREA_SETUP_REQUIRED"
            )

        claimed = await self._conditional_update(
            service_id,
            [
                ServiceInstance.status == ServiceStatus.SCHEDULED,
                ServiceInstance.employee_id.is_(None),
                ServiceInstance.is_locked.is_(False),
            ],
            status=ServiceStatus.CLAIMED,
            employee_id=employee.id,
            claimed_at=now,
        )
        if not claimed:
            current = await self.db.get(ServiceInstance, service_id, populate_existing=True)
            if current is None:
                raise ServiceNotFoundError(service_id)
            if (
                current.status == ServiceStatus.SCHEDULED
                and current.employee_id is None
                and current.is_locked
            ):
                raise ValidationError(
                    "Job is not yet available for claiming",
                    {"service_id": service_id},
                    code="JOB_LOCKED"
                )
            raise JobNotAvailableError(service_id)

        instance = await self.get_service(service_id)
        logger.info("Service claimed", service_id=service_id, employee_id=employee.id)
        return TransitionResult(
            instance,
            event(
                EventKind.SERVICE_CLAIMED,
                await self._customer_user_id(instance),
                service_id=service_id,
                employee_name=employee.name
            )
        )

    async def release(
        self,
        service_id: int,
        caller: Caller,
        now: Optional[datetime] = None
    ) -> TransitionResult[ServiceInstance]:
        """CLAIMED -> SCHEDULED, by the employee holding the claim."""
        now = now or utcnow()
        employee = await self._require_employee(caller)

        released = await self._conditional_update(
            service_id,
            [
                ServiceInstance.status == ServiceStatus.CLAIMED,
                ServiceInstance.employee_id == employee.id,
            ],
            status=ServiceStatus.SCHEDULED,
            employee_id=None,
            claimed_at=None,
            notes=append_note(f"Released by employee {caller.user_id} on {now:%m/%d/%Y}"),
        )
        if not released:
            await self._raise_rejected(service_id, ServiceStatus.SCHEDULED, employee.id)

        instance = await self.get_service(service_id)
        logger.info("Service released", service_id=service_id, employee_id=employee.id)
        return TransitionResult(instance, [])

    async def start(
        self,
        service_id: int,
        caller: Caller,
        now: Optional[datetime] = None
    ) -> TransitionResult[ServiceInstance]:
        """CLAIMED -> IN_PROGRESS, by the employee holding the claim."""
        now = now or utcnow()
        employee = await self._require_employee(caller)

        started = await self._conditional_update(
            service_id,
            [
                ServiceInstance.status == ServiceStatus.CLAIMED,
                ServiceInstance.employee_id == employee.id,
            ],
            status=ServiceStatus.IN_PROGRESS,
            started_at=now,
        )
        if not started:
            await self._raise_rejected(service_id, ServiceStatus.IN_PROGRESS, employee.id)

        instance = await self.get_service(service_id)
        logger.info("Service started", service_id=service_id, employee_id=employee.id)
        return TransitionResult(
            instance,
            event(EventKind.SERVICE_STARTED, await self._customer_user_id(instance), service_id=service_id)
        )

    async def attach_photos(
        self,
        service_id: int,
        caller: Caller,
        photos: Sequence[PhotoUpload]
    ) -> TransitionResult[ServiceInstance]:
        """Attach photos to a claimed or in-progress service."""
        if not photos:
            raise ValidationError("No photos submitted")

        instance = await self.get_service(service_id)
        if instance.status not in (ServiceStatus.CLAIMED, ServiceStatus.IN_PROGRESS):
            raise ValidationError(
                "Photos can only be attached to claimed or in-progress services",
                {"service_id": service_id, "status": instance.status.value}
            )
        if not caller.is_admin:
            employee = await self._require_employee(caller)
            if instance.employee_id != employee.id:
                raise AuthorizationError("Service is claimed by another employee")

        counts = await self._photo_counts(service_id)
        self._check_photo_limit(sum(counts.values()) + len(photos))
        self._add_photos(service_id, photos, caller)
        await self.db.flush()

        logger.info("Photos attached", service_id=service_id, count=len(photos))
        return TransitionResult(await self.get_service(service_id), [])

    async def complete(
        self,
        service_id: int,
        caller: Caller,
        photos: Sequence[PhotoUpload] = (),
        checklist: Optional[Dict[str, bool]] = None,
        note: Optional[str] = None,
        admin_override: bool = False,
        now: Optional[datetime] = None
    ) -> TransitionResult[ServiceInstance]:
        """IN_PROGRESS -> COMPLETED.

        Requires the minimum number of before/after photos (already attached
        plus submitted) and every configured checklist item marked done. A
        rejected completion leaves the service IN_PROGRESS.
        """
        now = now or utcnow()
        checklist = checklist or {}

        instance = await self.get_service(service_id)
        if caller.is_admin:
            if not admin_override:
                raise AuthorizationError("Administrators must set admin_override to complete a service")
        else:
            employee = await self._require_employee(caller)
            if instance.employee_id != employee.id:
                raise AuthorizationError("Service is claimed by another employee")

        if instance.status != ServiceStatus.IN_PROGRESS:
            raise InvalidTransitionError("service", instance.status.value, ServiceStatus.COMPLETED.value)

        counts = await self._photo_counts(service_id)
        for photo in photos:
            counts[photo.kind] += 1
        self._check_photo_limit(sum(counts.values()))

        before, after = counts[PhotoKind.BEFORE], counts[PhotoKind.AFTER]
        if before < settings.min_before_photos or after < settings.min_after_photos:
            raise ValidationError(
                f"At least {settings.min_before_photos} before and "
                f"{settings.min_after_photos} after photos are required",
                {
                    "before_photos": before,
                    "after_photos": after,
                    "min_before_photos": settings.min_before_photos,
                    "min_after_photos": settings.min_after_photos,
                },
                code="PHOTOS_REQUIRED"
            )

        missing = [item for item in settings.completion_checklist if not checklist.get(item)]
        if missing:
            raise ValidationError(
                "Checklist incomplete",
                {"missing_items": missing},
                code="CHECKLIST_INCOMPLETE"
            )

        values = {"status": ServiceStatus.COMPLETED, "completed_date": now}
        if note:
            values["notes"] = append_note(f"Completion note: {note}")
        completed = await self._conditional_update(
            service_id,
            [
                ServiceInstance.status == ServiceStatus.IN_PROGRESS,
                ServiceInstance.employee_id == instance.employee_id,
            ],
            **values
        )
        if not completed:
            await self._raise_rejected(service_id, ServiceStatus.COMPLETED)

        self._add_photos(service_id, photos, caller)
        for item_key in dict.fromkeys(list(settings.completion_checklist) + list(checklist)):
            self.db.add(ChecklistItemCompletion(
                service_instance_id=service_id,
                item_key=item_key,
                done=bool(checklist.get(item_key))
            ))
        await self.db.flush()

        instance = await self.get_service(service_id)
        logger.info(
            "Service completed",
            service_id=service_id,
            employee_id=instance.employee_id,
            admin_override=caller.is_admin
        )
        return TransitionResult(
            instance,
            event(
                EventKind.SERVICE_COMPLETED,
                await self._customer_user_id(instance),
                service_id=service_id,
                completed_date=now.isoformat()
            )
        )

    async def cancel(
        self,
        service_id: int,
        caller: Caller,
        reason: str,
        admin_override: bool = False,
        now: Optional[datetime] = None
    ) -> TransitionResult[ServiceInstance]:
        """Cancel a non-terminal service.

        SCHEDULED and CLAIMED services can be cancelled by an admin or the
        owning customer; IN_PROGRESS ones only by an admin override.
        """
        now = now or utcnow()
        if caller.is_employee:
            raise AuthorizationError("Employees cannot cancel services")

        instance = await self.get_service(service_id)
        current = instance.status
        if current.is_terminal:
            raise InvalidTransitionError("service", current.value, ServiceStatus.CANCELLED.value)

        customer_user_id = await self._customer_user_id(instance)
        if caller.is_customer and caller.user_id != customer_user_id:
            raise AuthorizationError("Service belongs to another customer")
        if current == ServiceStatus.IN_PROGRESS and not (caller.is_admin and admin_override):
            raise AuthorizationError("Only an administrator override can cancel a service in progress")

        cancelled = await self._conditional_update(
            service_id,
            [ServiceInstance.status == current],
            status=ServiceStatus.CANCELLED,
            cancelled_at=now,
            cancellation_reason=reason,
            notes=append_note(f"Cancelled by {caller.role.value.lower()} on {now:%m/%d/%Y}: {reason}"),
        )
        if not cancelled:
            await self._raise_rejected(service_id, ServiceStatus.CANCELLED)

        instance = await self.get_service(service_id)
        logger.info("Service cancelled", service_id=service_id, by=caller.role.value, reason=reason)
        return TransitionResult(
            instance,
            event(EventKind.SERVICE_CANCELLED, customer_user_id, service_id=service_id, reason=reason)
        )

    async def advance_payment_status(
        self,
        service_id: int,
        target: PaymentStatus,
        payout_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> ServiceInstance:
        """PENDING -> PAYOUT_REQUESTED -> PAID on a completed service."""
        now = now or utcnow()
        instance = await self.get_service(service_id)
        if instance.status != ServiceStatus.COMPLETED:
            raise InvalidTransitionError(
                "service_payment", f"{instance.status.value}/{instance.payment_status.value}", target.value
            )
        current = instance.payment_status
        check_payment_transition(current, target)

        values = {"payment_status": target}
        if target == PaymentStatus.PAYOUT_REQUESTED:
            values["payout_id"] = payout_id
        if target == PaymentStatus.PAID:
            values["paid_at"] = now

        advanced = await self._conditional_update(
            service_id,
            [
                ServiceInstance.status == ServiceStatus.COMPLETED,
                ServiceInstance.payment_status == current,
            ],
            **values
        )
        if not advanced:
            raise InvalidTransitionError("service_payment", current.value, target.value)
        return await self.get_service(service_id)

    # Helpers

    async def _require_employee(self, caller: Caller) -> Employee:
        if caller.role != UserRole.EMPLOYEE:
            raise AuthorizationError("Only employees can perform this action", {"role": caller.role.value})
        result = await self.db.execute(select(Employee).where(Employee.user_id == caller.user_id))
        employee = result.scalar_one_or_none()
        if employee is None:
            raise EmployeeNotFoundError(caller.user_id)
        if not employee.is_active:
            raise AuthorizationError("Employee account is inactive", {"user_id": caller.user_id})
        return employee

    async def _conditional_update(self, service_id: int, conditions: list, **values) -> bool:
        result = await self.db.execute(
            update(ServiceInstance)
            .where(and_(ServiceInstance.id == service_id, *conditions))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _raise_rejected(
        self,
        service_id: int,
        target: ServiceStatus,
        employee_id: Optional[int] = None
    ) -> None:
        """Explain why a conditional update matched nothing."""
        current = await self.db.get(ServiceInstance, service_id, populate_existing=True)
        if current is None:
            raise ServiceNotFoundError(service_id)
        if employee_id is not None and current.employee_id not in (None, employee_id):
            raise AuthorizationError("Service is claimed by another employee", {"service_id": service_id})
        raise InvalidTransitionError("service", current.status.value, target.value)

    async def _customer_user_id(self, instance: ServiceInstance) -> Optional[str]:
        result = await self.db.execute(
            select(Customer.user_id).where(Customer.id == instance.customer_id)
        )
        return result.scalar_one_or_none()

    async def _photo_counts(self, service_id: int) -> Dict[PhotoKind, int]:
        result = await self.db.execute(
            select(ServicePhoto.kind, func.count(ServicePhoto.id))
            .where(ServicePhoto.service_instance_id == service_id)
            .group_by(ServicePhoto.kind)
        )
        counts = {kind: 0 for kind in PhotoKind}
        for kind, count in result.all():
            counts[kind] = count
        return counts

    def _check_photo_limit(self, total: int) -> None:
        if total > settings.max_photos_per_service:
            raise ValidationError(
                f"A service can have at most {settings.max_photos_per_service} photos",
                {"total_photos": total, "max_photos": settings.max_photos_per_service},
                code="TOO_MANY_PHOTOS"
            )

    def _add_photos(self, service_id: int, photos: Sequence[PhotoUpload], caller: Caller) -> None:
        for photo in photos:
            self.db.add(ServicePhoto(
                service_instance_id=service_id,
                kind=PhotoKind(photo.kind),
                url=photo.url,
                uploaded_by=caller.user_id
            ))

"""
Tests for the claim/completion state machine.
"""

import asyncio
from datetime import datetime

import pytest

from scoopify.core.config import settings
from scoopify.core.database import get_async_session
from scoopify.core.exceptions import (
    AuthorizationError, EmployeeNotFoundError, InvalidTransitionError,
    JobNotAvailableError, ServiceNotFoundError, ValidationError
)
from scoopify.models import PaymentStatus, PhotoKind, ServiceInstance, ServiceStatus
from scoopify.services.events import EventKind
from scoopify.services.service_lifecycle import PhotoUpload, ServiceLifecycle
from scoopify.utils.dates import at_hour

from helpers import ADMIN, WEDNESDAY, customer_caller, employee_caller, fetch

NOW = datetime(2026, 10, 21, 9, 30)


async def run(action: str, *args, **kwargs):
    """Run one lifecycle operation in its own transaction."""
    async with get_async_session() as session:
        return await getattr(ServiceLifecycle(session), action)(*args, **kwargs)


def photos(before: int = 4, after: int = 4):
    return (
        [PhotoUpload(PhotoKind.BEFORE, f"https://cdn.test/before-{i}.jpg") for i in range(before)]
        + [PhotoUpload(PhotoKind.AFTER, f"https://cdn.test/after-{i}.jpg") for i in range(after)]
    )


@pytest.fixture
async def employee(make_employee):
    return await make_employee("employee-1")


@pytest.fixture
async def customer(make_customer):
    return await make_customer("customer-1")


# Claiming

@pytest.mark.asyncio
async def test_claim_assigns_employee(employee, customer, make_service):
    service = await make_service(customer)

    result = await run("claim", service.id, employee_caller(), now=NOW)

    assert result.instance.status == ServiceStatus.CLAIMED
    assert result.instance.employee_id == employee.id
    assert result.instance.claimed_at == NOW
    assert [e.kind for e in result.events] == [EventKind.SERVICE_CLAIMED]
    assert result.events[0].recipient_user_id == "customer-1"


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(make_employee, customer, make_service):
    await make_employee("employee-1")
    await make_employee("employee-2")
    service = await make_service(customer)

    outcomes = await asyncio.gather(
        run("claim", service.id, employee_caller("employee-1")),
        run("claim", service.id, employee_caller("employee-2")),
        return_exceptions=True,
    )

    winners = [o for o in outcomes if not isinstance(o, Exception)]
    losers = [o for o in outcomes if isinstance(o, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], JobNotAvailableError)
    assert losers[0].message == "Job no longer available"
    stored = await fetch(ServiceInstance, service.id)
    assert stored.employee_id == winners[0].instance.employee_id


@pytest.mark.asyncio
async def test_claim_of_claimed_job_is_rejected(employee, make_employee, customer, make_service):
    await make_employee("employee-2")
    service = await make_service(customer)
    await run("claim", service.id, employee_caller("employee-1"))

    with pytest.raises(JobNotAvailableError):
        await run("claim", service.id, employee_caller("employee-2"))


@pytest.mark.asyncio
async def test_claim_of_locked_job(employee, customer, make_service):
    service = await make_service(customer, is_locked=True)

    with pytest.raises(ValidationError) as exc_info:
        await run("claim", service.id, employee_caller())

    assert exc_info.value.code == "JOB_LOCKED"


@pytest.mark.asyncio
async def test_claim_requires_service_area_setup(make_employee, customer, make_service):
    await make_employee("employee-1", setup_complete=False)
    service = await make_service(customer)

    with pytest.raises(ValidationError) as exc_info:
        await run("claim", service.id, employee_caller())

    assert exc_info.value.code == "SERVICE_AREA_SETUP_REQUIRED"
    assert (await fetch(ServiceInstance, service.id)).status == ServiceStatus.SCHEDULED


@pytest.mark.asyncio
async def test_claim_requires_active_employee_record(make_employee, customer, make_service):
    await make_employee("employee-inactive", is_active=False)
    service = await make_service(customer)

    with pytest.raises(EmployeeNotFoundError):
        await run("claim", service.id, employee_caller("nobody"))
    with pytest.raises(AuthorizationError):
        await run("claim", service.id, employee_caller("employee-inactive"))
    with pytest.raises(AuthorizationError):
        await run("claim", service.id, customer_caller("customer-1"))


@pytest.mark.asyncio
async def test_claim_of_unknown_service(employee):
    with pytest.raises(ServiceNotFoundError):
        await run("claim", 999, employee_caller())


@pytest.mark.asyncio
async def test_available_jobs_lists_claimable_work(employee, make_customer, make_service):
    open_job = await make_service(await make_customer())
    await make_service(await make_customer(), is_locked=True)
    await make_service(await make_customer(), status=ServiceStatus.CLAIMED, employee=employee)
    await make_service(await make_customer(), scheduled_date=at_hour(WEDNESDAY.replace(day=28), 7))

    async with get_async_session() as session:
        jobs = await ServiceLifecycle(session).available_jobs(employee_caller(), now=NOW)

    assert [job.id for job in jobs] == [open_job.id]


@pytest.mark.asyncio
async def test_customers_cannot_browse_available_jobs(database):
    with pytest.raises(AuthorizationError):
        await run("available_jobs", customer_caller("customer-1"))


# Release and start

@pytest.mark.asyncio
async def test_release_returns_job_to_pool(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.CLAIMED, employee=employee)

    result = await run("release", service.id, employee_caller(), now=NOW)

    assert result.instance.status == ServiceStatus.SCHEDULED
    assert result.instance.employee_id is None
    assert result.instance.claimed_at is None
    assert result.instance.note_lines == ["Released by employee employee-1 on 10/21/2026"]


@pytest.mark.asyncio
async def test_only_the_claiming_employee_can_release(employee, make_employee, customer, make_service):
    await make_employee("employee-2")
    service = await make_service(customer, status=ServiceStatus.CLAIMED, employee=employee)

    with pytest.raises(AuthorizationError):
        await run("release", service.id, employee_caller("employee-2"))


@pytest.mark.asyncio
async def test_start_moves_claimed_to_in_progress(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.CLAIMED, employee=employee)

    result = await run("start", service.id, employee_caller(), now=NOW)

    assert result.instance.status == ServiceStatus.IN_PROGRESS
    assert result.instance.started_at == NOW
    assert [e.kind for e in result.events] == [EventKind.SERVICE_STARTED]


@pytest.mark.asyncio
async def test_start_requires_claim(employee, customer, make_service):
    service = await make_service(customer)

    with pytest.raises(InvalidTransitionError):
        await run("start", service.id, employee_caller())


# Completion

@pytest.mark.asyncio
async def test_complete_with_photos(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.IN_PROGRESS, employee=employee)

    result = await run(
        "complete", service.id, employee_caller(),
        photos=photos(), note="Gate latched", now=NOW
    )

    assert result.instance.status == ServiceStatus.COMPLETED
    assert result.instance.completed_date == NOW
    assert result.instance.payment_status == PaymentStatus.PENDING
    assert len((await fetch(ServiceInstance, service.id)).photos) == 8
    assert result.instance.note_lines == ["Completion note: Gate latched"]
    assert [e.kind for e in result.events] == [EventKind.SERVICE_COMPLETED]


@pytest.mark.asyncio
async def test_photos_attached_earlier_count_towards_minimum(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.CLAIMED, employee=employee)

    await run("attach_photos", service.id, employee_caller(), photos(before=4, after=0))
    await run("start", service.id, employee_caller())
    result = await run("complete", service.id, employee_caller(), photos=photos(before=0, after=4))

    assert result.instance.status == ServiceStatus.COMPLETED
    stored = await fetch(ServiceInstance, service.id)
    assert stored.photo_count(PhotoKind.BEFORE) == 4
    assert stored.photo_count(PhotoKind.AFTER) == 4


@pytest.mark.asyncio
async def test_missing_photos_keep_service_in_progress(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.IN_PROGRESS, employee=employee)

    with pytest.raises(ValidationError) as exc_info:
        await run("complete", service.id, employee_caller(), photos=photos(before=4, after=3))

    assert exc_info.value.code == "PHOTOS_REQUIRED"
    assert exc_info.value.details["after_photos"] == 3
    stored = await fetch(ServiceInstance, service.id)
    assert stored.status == ServiceStatus.IN_PROGRESS
    assert stored.completed_date is None
    assert stored.photos == []


@pytest.mark.asyncio
async def test_checklist_must_be_complete(employee, customer, make_service, monkeypatch):
    monkeypatch.setattr(settings, "completion_checklist", ["gate_closed", "waste_bagged"])
    service = await make_service(customer, status=ServiceStatus.IN_PROGRESS, employee=employee)

    with pytest.raises(ValidationError) as exc_info:
        await run(
            "complete", service.id, employee_caller(),
            photos=photos(), checklist={"gate_closed": True, "waste_bagged": False}
        )
    assert exc_info.value.code == "CHECKLIST_INCOMPLETE"
    assert exc_info.value.details["missing_items"] == ["waste_bagged"]

    result = await run(
        "complete", service.id, employee_caller(),
        photos=photos(), checklist={"gate_closed": True, "waste_bagged": True}
    )
    assert result.instance.status == ServiceStatus.COMPLETED


@pytest.mark.asyncio
async def test_photo_limit(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.CLAIMED, employee=employee)

    with pytest.raises(ValidationError) as exc_info:
        await run("attach_photos", service.id, employee_caller(), photos(before=10, after=7))

    assert exc_info.value.code == "TOO_MANY_PHOTOS"


@pytest.mark.asyncio
async def test_complete_requires_in_progress(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.CLAIMED, employee=employee)

    with pytest.raises(InvalidTransitionError):
        await run("complete", service.id, employee_caller(), photos=photos())


@pytest.mark.asyncio
async def test_admin_completion_needs_override(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.IN_PROGRESS, employee=employee)

    with pytest.raises(AuthorizationError):
        await run("complete", service.id, ADMIN, photos=photos())

    result = await run("complete", service.id, ADMIN, photos=photos(), admin_override=True)
    assert result.instance.status == ServiceStatus.COMPLETED
    assert result.instance.employee_id == employee.id


# Cancellation

@pytest.mark.asyncio
async def test_customer_cancels_own_scheduled_service(customer, make_service):
    service = await make_service(customer)

    result = await run("cancel", service.id, customer_caller("customer-1"), reason="On vacation", now=NOW)

    assert result.instance.status == ServiceStatus.CANCELLED
    assert result.instance.cancellation_reason == "On vacation"
    assert result.instance.note_lines == ["Cancelled by customer on 10/21/2026: On vacation"]
    assert [e.kind for e in result.events] == [EventKind.SERVICE_CANCELLED]


@pytest.mark.asyncio
async def test_cancel_permissions(employee, customer, make_customer, make_service):
    await make_customer("customer-2")
    service = await make_service(customer, status=ServiceStatus.CLAIMED, employee=employee)

    with pytest.raises(AuthorizationError):
        await run("cancel", service.id, employee_caller(), reason="No")
    with pytest.raises(AuthorizationError):
        await run("cancel", service.id, customer_caller("customer-2"), reason="No")

    result = await run("cancel", service.id, ADMIN, reason="Duplicate")
    assert result.instance.status == ServiceStatus.CANCELLED


@pytest.mark.asyncio
async def test_in_progress_cancel_needs_admin_override(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.IN_PROGRESS, employee=employee)

    with pytest.raises(AuthorizationError):
        await run("cancel", service.id, customer_caller("customer-1"), reason="Changed my mind")
    with pytest.raises(AuthorizationError):
        await run("cancel", service.id, ADMIN, reason="Weather")

    result = await run("cancel", service.id, ADMIN, reason="Weather", admin_override=True)
    assert result.instance.status == ServiceStatus.CANCELLED


@pytest.mark.asyncio
async def test_terminal_services_cannot_be_cancelled(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.COMPLETED, employee=employee)

    with pytest.raises(InvalidTransitionError):
        await run("cancel", service.id, ADMIN, reason="Too late", admin_override=True)


# Payment status

@pytest.mark.asyncio
async def test_payment_status_advances_in_order(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.COMPLETED, employee=employee)

    with pytest.raises(InvalidTransitionError):
        await run("advance_payment_status", service.id, PaymentStatus.PAID)

    requested = await run("advance_payment_status", service.id, PaymentStatus.PAYOUT_REQUESTED)
    assert requested.payment_status == PaymentStatus.PAYOUT_REQUESTED

    paid = await run("advance_payment_status", service.id, PaymentStatus.PAID, now=NOW)
    assert paid.payment_status == PaymentStatus.PAID
    assert paid.paid_at == NOW


@pytest.mark.asyncio
async def test_payment_status_requires_completed_service(employee, customer, make_service):
    service = await make_service(customer, status=ServiceStatus.IN_PROGRESS, employee=employee)

    with pytest.raises(InvalidTransitionError):
        await run("advance_payment_status", service.id, PaymentStatus.PAYOUT_REQUESTED)

"""
Tests for employee payout requests and the weekly payout batch.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from scoopify.core.database import get_async_session
from scoopify.core.exceptions import (
    ConflictError, EmployeeNotFoundError, InvalidTransitionError, PayoutMismatchError,
    ValidationError
)
from scoopify.models import PaymentStatus, PayoutRequest, PayoutStatus, ServiceInstance, ServiceStatus
from scoopify.services.events import EventKind
from scoopify.services.payout_service import PayoutService, previous_week_range, process_weekly_payouts

from helpers import fetch

COMPLETED_AT = datetime(2026, 10, 21, 10, 0)
NOW = datetime(2026, 10, 28, 6, 0)


async def request(user_id, service_ids, claimed_total):
    async with get_async_session() as session:
        return await PayoutService(session).request_payout(user_id, service_ids, claimed_total, now=NOW)


async def mark_paid(payout_id, reference=None):
    async with get_async_session() as session:
        return await PayoutService(session).mark_paid(payout_id, reference, now=NOW)


@pytest.fixture
def completed_service(make_customer, make_service):
    async def factory(employee, earnings_cents=984, completed_date=COMPLETED_AT):
        return await make_service(
            await make_customer(),
            status=ServiceStatus.COMPLETED,
            employee=employee,
            earnings_cents=earnings_cents,
            completed_date=completed_date,
        )

    return factory


@pytest.fixture
async def employee(make_employee):
    return await make_employee("employee-1")


@pytest.mark.asyncio
async def test_request_payout_moves_services(employee, completed_service):
    first = await completed_service(employee)
    second = await completed_service(employee, earnings_cents=1020)

    result = await request("employee-1", [first.id, second.id], Decimal("20.04"))

    payout = result.instance
    assert payout.status == PayoutStatus.REQUESTED
    assert payout.amount_cents == 2004
    assert payout.service_count == 2
    assert payout.requested_at == NOW
    assert [e.kind for e in result.events] == [EventKind.PAYOUT_REQUESTED]
    for service in (first, second):
        stored = await fetch(ServiceInstance, service.id)
        assert stored.payment_status == PaymentStatus.PAYOUT_REQUESTED
        assert stored.payout_id == payout.id


@pytest.mark.asyncio
async def test_one_cent_rounding_difference_is_tolerated(employee, completed_service):
    first = await completed_service(employee)
    second = await completed_service(employee)

    result = await request("employee-1", [first.id, second.id], "19.69")

    # Stored earnings win over the claimed total
    assert result.instance.amount_cents == 1968


@pytest.mark.asyncio
async def test_mismatched_total_is_rejected(employee, completed_service):
    service = await completed_service(employee)

    with pytest.raises(PayoutMismatchError) as exc_info:
        await request("employee-1", [service.id], Decimal("9.86"))

    assert exc_info.value.details["discrepancy_cents"] == 2
    assert (await fetch(ServiceInstance, service.id)).payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.parametrize("selection", ["empty", "duplicate", "unknown"])
async def test_malformed_selection_is_rejected(employee, completed_service, selection):
    service = await completed_service(employee)
    service_ids = {
        "empty": [],
        "duplicate": [service.id, service.id],
        "unknown": [service.id, 999],
    }[selection]

    with pytest.raises(ValidationError):
        await request("employee-1", service_ids, Decimal("9.84"))


@pytest.mark.asyncio
async def test_services_of_another_employee_are_rejected(employee, make_employee, completed_service):
    other = await make_employee("employee-2")
    mine = await completed_service(employee)
    theirs = await completed_service(other)

    with pytest.raises(ValidationError) as exc_info:
        await request("employee-1", [mine.id, theirs.id], Decimal("19.68"))

    assert exc_info.value.details["service_ids"] == [theirs.id]
    # All or nothing
    assert (await fetch(ServiceInstance, mine.id)).payment_status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_incomplete_or_requested_services_are_ineligible(
    employee, make_customer, make_service, completed_service
):
    in_progress = await make_service(await make_customer(), status=ServiceStatus.IN_PROGRESS, employee=employee)
    done = await completed_service(employee)
    await request("employee-1", [done.id], Decimal("9.84"))

    with pytest.raises(ValidationError):
        await request("employee-1", [in_progress.id], Decimal("9.84"))
    with pytest.raises(ValidationError):
        await request("employee-1", [done.id], Decimal("9.84"))


@pytest.mark.asyncio
async def test_unknown_employee(database):
    with pytest.raises(EmployeeNotFoundError):
        await request("nobody", [1], Decimal("1.00"))


@pytest.mark.asyncio
async def test_mark_paid_settles_services(employee, completed_service):
    service = await completed_service(employee)
    payout = (await request("employee-1", [service.id], Decimal("9.84"))).instance

    result = await mark_paid(payout.id, "ach_123")

    assert result.instance.status == PayoutStatus.PAID
    assert result.instance.paid_at == NOW
    assert result.instance.transaction_reference == "ach_123"
    assert result.events[0].recipient_user_id == "employee-1"
    stored = await fetch(ServiceInstance, service.id)
    assert stored.payment_status == PaymentStatus.PAID
    assert stored.paid_at == NOW

    with pytest.raises(InvalidTransitionError):
        await mark_paid(payout.id)


@pytest.mark.asyncio
async def test_mark_paid_detects_out_of_sync_services(employee, completed_service):
    service = await completed_service(employee)
    payout = (await request("employee-1", [service.id], Decimal("9.84"))).instance
    async with get_async_session() as session:
        instance = await session.get(ServiceInstance, service.id)
        instance.payment_status = PaymentStatus.PENDING

    with pytest.raises(ConflictError):
        await mark_paid(payout.id)
    assert (await fetch(PayoutRequest, payout.id)).status == PayoutStatus.REQUESTED


def test_previous_week_range():
    start, end = previous_week_range(NOW)

    assert start == datetime(2026, 10, 19)
    assert end == datetime(2026, 10, 26)


@pytest.mark.asyncio
async def test_weekly_payouts_cover_previous_week(employee, make_employee, completed_service):
    other = await make_employee("employee-2")
    last_week = [await completed_service(employee), await completed_service(employee, earnings_cents=1020)]
    this_week = await completed_service(employee, completed_date=datetime(2026, 10, 27, 10))
    others = await completed_service(other)

    result = await process_weekly_payouts(now=NOW)

    assert result.job == "weekly_payouts"
    assert result.created == 2
    assert result.failed == 0
    payouts = {item.subject_id: item.entity_id for item in result.items}
    mine = await fetch(PayoutRequest, payouts[employee.id])
    assert mine.amount_cents == 2004
    assert mine.service_count == 2
    for service in last_week:
        assert (await fetch(ServiceInstance, service.id)).payout_id == mine.id
    assert (await fetch(ServiceInstance, this_week.id)).payment_status == PaymentStatus.PENDING
    assert (await fetch(ServiceInstance, others.id)).payout_id == payouts[other.id]

    again = await process_weekly_payouts(now=NOW)
    assert again.items == []

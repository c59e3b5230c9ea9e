"""
Shared fixtures: a throwaway SQLite database per test plus factories for the
entities most tests need.
"""

from datetime import date, datetime
from typing import Optional

import pytest

from scoopify.core.config import settings
from scoopify.core.database import DatabaseManager, close_database, get_async_session, init_database
from scoopify.models import (
    Customer, Employee, Payment, PaymentMethod, ReferralType, ServiceInstance,
    ServicePlan, ServiceStatus, Subscription, SubscriptionStatus
)
from scoopify.services.notifications import set_notifier
from scoopify.services.payment_retry_processor import record_failed_charge
from scoopify.services.payment_gateway import set_payment_gateway
from scoopify.utils.dates import Weekday, at_hour, period_key

from helpers import FAILED_AT, WEDNESDAY, RecordingNotifier


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """No Redis and no webhook in tests; globals reset afterwards."""
    monkeypatch.setattr(settings, "redis_url", None)
    monkeypatch.setattr(settings, "notification_webhook_url", None)
    monkeypatch.setattr(settings, "lock_new_jobs", False)
    monkeypatch.setattr(settings, "completion_checklist", [])
    yield
    set_notifier(None)
    set_payment_gateway(None)


@pytest.fixture
async def database(tmp_path):
    """Fresh SQLite database with all tables."""
    await init_database(database_url=f"sqlite:///{tmp_path / 'scoopify.db'}")
    await DatabaseManager.create_tables()
    yield
    await close_database()


@pytest.fixture
def notifier():
    recording = RecordingNotifier()
    set_notifier(recording)
    return recording


@pytest.fixture
async def plan(database) -> ServicePlan:
    async with get_async_session() as session:
        plan = ServicePlan(name="1 Dog Weekly", price_cents=5500)
        session.add(plan)
    return plan


@pytest.fixture
def make_customer(database):
    counter = {"n": 0}

    async def factory(
        user_id: Optional[str] = None,
        referral_type: Optional[ReferralType] = None,
        referrer_user_id: Optional[str] = None,
        gateway_customer_reference: Optional[str] = "cus_test",
    ) -> Customer:
        counter["n"] += 1
        async with get_async_session() as session:
            customer = Customer(
                user_id=user_id or f"customer-{counter['n']}",
                name=f"Customer {counter['n']}",
                referral_type=referral_type,
                referrer_user_id=referrer_user_id,
                gateway_customer_reference=gateway_customer_reference,
            )
            session.add(customer)
        return customer

    return factory


@pytest.fixture
def make_subscription(plan):
    async def factory(
        customer: Customer,
        service_day: Weekday = Weekday.WEDNESDAY,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        start_date: date = date(2026, 1, 1),
        end_date: Optional[date] = None,
        payment_method: PaymentMethod = PaymentMethod.CARD,
    ) -> Subscription:
        async with get_async_session() as session:
            subscription = Subscription(
                customer_id=customer.id,
                plan_id=plan.id,
                status=status,
                start_date=start_date,
                end_date=end_date,
                service_day=service_day,
                payment_method=payment_method,
            )
            session.add(subscription)
        return subscription

    return factory


@pytest.fixture
def make_employee(database):
    async def factory(
        user_id: str = "employee-1",
        setup_complete: bool = True,
        is_active: bool = True,
    ) -> Employee:
        async with get_async_session() as session:
            employee = Employee(
                user_id=user_id,
                name=f"Employee {user_id}",
                has_completed_service_area_setup=setup_complete,
                is_active=is_active,
            )
            session.add(employee)
        return employee

    return factory


@pytest.fixture
def make_service(plan):
    async def factory(
        customer: Customer,
        scheduled_date: datetime = at_hour(WEDNESDAY, 7),
        status: ServiceStatus = ServiceStatus.SCHEDULED,
        employee: Optional[Employee] = None,
        earnings_cents: int = 984,
        is_locked: bool = False,
        completed_date: Optional[datetime] = None,
        key: Optional[str] = None,
    ) -> ServiceInstance:
        async with get_async_session() as session:
            instance = ServiceInstance(
                customer_id=customer.id,
                service_plan_id=plan.id,
                status=status,
                scheduled_date=scheduled_date,
                period_key=key or period_key(scheduled_date.date()),
                employee_id=employee.id if employee else None,
                claimed_at=scheduled_date if employee else None,
                potential_earnings_cents=earnings_cents,
                is_locked=is_locked,
                completed_date=completed_date,
            )
            session.add(instance)
        return instance

    return factory


@pytest.fixture
def make_payment(database):
    async def factory(
        customer: Customer,
        subscription: Optional[Subscription] = None,
        amount_cents: int = 5500,
        gateway_customer_reference: Optional[str] = None,
    ) -> Payment:
        async with get_async_session() as session:
            payment = Payment(
                customer_id=customer.id,
                subscription_id=subscription.id if subscription else None,
                amount_cents=amount_cents,
                gateway_customer_reference=gateway_customer_reference,
            )
            session.add(payment)
        return payment

    return factory


@pytest.fixture
def failed_charge(make_customer, make_subscription, make_payment):
    """Customer, subscription and payment with a recorded failure.

    Returns (subscription, payment, retry_id).
    """
    async def factory(
        subscription_status: SubscriptionStatus = SubscriptionStatus.PAST_DUE,
        payment_reference: Optional[str] = None,
        **customer_kwargs
    ):
        customer = await make_customer(**customer_kwargs)
        subscription = await make_subscription(customer, status=subscription_status)
        payment = await make_payment(
            customer, subscription, gateway_customer_reference=payment_reference
        )
        async with get_async_session() as session:
            retry = await record_failed_charge(session, payment.id, "card_declined", now=FAILED_AT)
            retry_id = retry.id
        return subscription, payment, retry_id

    return factory

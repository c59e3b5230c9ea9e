"""
Service instance generation.

Expands active subscriptions into at most one SCHEDULED service instance per
customer per ISO week. Safe to run any number of times and from several
processes at once: existing instances are skipped and the unique constraint on
(customer_id, period_key) rejects a concurrent duplicate insert.
"""

from datetime import date
from typing import List, Optional

import structlog
from sqlalchemy import select, and_, or_
from sqlalchemy.exc import IntegrityError

from scoopify.core.config import settings
from scoopify.core.database import get_async_session
from scoopify.core.exceptions import InvariantViolation, NotFoundError
from scoopify.models.base import decimal_to_cents
from scoopify.models.customer import Customer
from scoopify.models.service_instance import ServiceInstance, ServiceStatus
from scoopify.models.subscription import ServicePlan, Subscription, SubscriptionStatus
from scoopify.services.batch import BatchResult, ItemOutcome, ItemResult, run_batch
from scoopify.services.earnings_calculator import FeeSchedule, calculate_earnings
from scoopify.services.events import EventKind, event
from scoopify.utils.dates import (
    Weekday, at_hour, occurrence_in_week, period_key, week_bounds
)

logger = structlog.get_logger(__name__)


class ServiceGenerator:
    """Creates the week's service instances from recurring subscriptions."""

    def __init__(self, notifier=None, item_timeout: Optional[float] = None):
        self.notifier = notifier
        self.item_timeout = item_timeout

    async def generate_for_week(self, target: date) -> BatchResult:
        """Generate instances for the ISO week containing target."""
        subscription_ids = await self._candidate_ids(target)
        logger.info(
            "Generating services for week",
            period=period_key(target),
            candidates=len(subscription_ids)
        )
        return await run_batch(
            "generate_services_week",
            subscription_ids,
            lambda subscription_id: self.generate_one(subscription_id, target),
            item_timeout=self.item_timeout,
            notifier=self.notifier
        )

    async def generate_for_day(self, day: date) -> BatchResult:
        """Generate instances only for subscriptions serviced on day's weekday."""
        weekday = Weekday.from_date(day)
        subscription_ids = await self._candidate_ids(day, weekday)
        logger.info(
            "Generating services for day",
            day=day.isoformat(),
            weekday=weekday.value,
            candidates=len(subscription_ids)
        )
        return await run_batch(
            "generate_services_day",
            subscription_ids,
            lambda subscription_id: self.generate_one(subscription_id, day),
            item_timeout=self.item_timeout,
            notifier=self.notifier
        )

    async def _candidate_ids(self, target: date, weekday: Optional[Weekday] = None) -> List[int]:
        """Active subscriptions overlapping the target week (or day)."""
        if weekday is not None:
            first, last = target, target
        else:
            first, last = week_bounds(target)

        conditions = [
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.start_date <= last,
            or_(Subscription.end_date.is_(None), Subscription.end_date >= first),
        ]
        if weekday is not None:
            conditions.append(Subscription.service_day == weekday)

        async with get_async_session() as session:
            result = await session.execute(
                select(Subscription.id).where(and_(*conditions)).order_by(Subscription.id)
            )
            return list(result.scalars().all())

    async def generate_one(self, subscription_id: int, target: date) -> ItemResult:
        """Create the instance of one subscription for the week containing target.

        Runs in its own transaction. The SERVICE_SCHEDULED event rides on the
        result; the batch runner sends it once the item is done.
        """
        try:
            async with get_async_session() as session:
                subscription = await session.get(Subscription, subscription_id)
                if subscription is None:
                    raise NotFoundError(
                        f"Subscription not found: {subscription_id}",
                        {"subscription_id": subscription_id}
                    )

                occurrence = occurrence_in_week(target, subscription.service_day)
                if not subscription.is_serviceable_on(occurrence):
                    return ItemResult(subscription_id, ItemOutcome.SKIPPED, detail="not serviceable")

                key = period_key(occurrence)
                existing = await session.execute(
                    select(ServiceInstance.id).where(
                        and_(
                            ServiceInstance.customer_id == subscription.customer_id,
                            ServiceInstance.period_key == key
                        )
                    )
                )
                existing_id = existing.scalar_one_or_none()
                if existing_id is not None:
                    return ItemResult(
                        subscription_id, ItemOutcome.SKIPPED,
                        entity_id=existing_id, detail="already generated"
                    )

                plan = await session.get(ServicePlan, subscription.plan_id)
                customer = await session.get(Customer, subscription.customer_id)

                breakdown = calculate_earnings(
                    plan.price,
                    FeeSchedule.from_settings(subscription.payment_method),
                    referral_type=customer.referral_type if customer.is_referred else None
                )
                if breakdown.is_clamped:
                    raise InvariantViolation(
                        "Fees exceed the subscription price",
                        {"subscription_id": subscription_id, **breakdown.to_dict()}
                    )

                instance = ServiceInstance(
                    customer_id=subscription.customer_id,
                    subscription_id=subscription.id,
                    service_plan_id=subscription.plan_id,
                    status=ServiceStatus.SCHEDULED,
                    scheduled_date=at_hour(occurrence, settings.default_service_hour),
                    period_key=key,
                    potential_earnings_cents=decimal_to_cents(breakdown.per_instance_earnings),
                    is_locked=settings.lock_new_jobs,
                )
                session.add(instance)
                await session.flush()

                events = event(
                    EventKind.SERVICE_SCHEDULED,
                    customer.user_id,
                    service_id=instance.id,
                    scheduled_date=instance.scheduled_date.isoformat()
                )
                instance_id = instance.id
        except IntegrityError:
            # Lost the race against a concurrent generator
            logger.info("Service already generated concurrently", subscription_id=subscription_id)
            return ItemResult(subscription_id, ItemOutcome.SKIPPED, detail="already generated")

        logger.info(
            "Service scheduled",
            subscription_id=subscription_id,
            service_id=instance_id,
            period=key
        )
        return ItemResult(subscription_id, ItemOutcome.CREATED, entity_id=instance_id, events=events)

"""
Failed charge retries.

A failed subscription charge gets a chain of PaymentRetry rows, each moving
SCHEDULED -> SUCCESS | FAILED exactly once. Processing calls the gateway
outside any database transaction and then finalizes the retry with a
version-checked write, so two processors racing on the same retry cannot both
finalize it.
"""

import asyncio
from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from scoopify.core.config import settings
from scoopify.core.database import get_async_session
from scoopify.core.exceptions import (
    ConflictError, InvalidTransitionError, NotFoundError, ValidationError
)
from scoopify.models.customer import Customer
from scoopify.models.payment import ChargeStatus, Payment, PaymentRetry, RetryStatus
from scoopify.models.subscription import Subscription, SubscriptionStatus
from scoopify.services.batch import BatchResult, ItemOutcome, ItemResult, run_batch
from scoopify.services.events import (
    DomainEvent, EventKind, TransitionResult, dispatch_events, event
)
from scoopify.services.payment_gateway import (
    GatewayResult, PaymentGateway, PaymentReference, get_payment_gateway
)
from scoopify.services.referral_settlement import accrue_commission_safely
from scoopify.utils.dates import utcnow

logger = structlog.get_logger(__name__)

GATEWAY_UNAVAILABLE = "gateway_unavailable"
MISSING_GATEWAY_REFERENCE = "missing_gateway_reference"


class RetryPolicy:
    """What happens after a retry reaches a terminal status."""

    def __init__(self, max_attempts: Optional[int] = None, interval_days: Optional[int] = None):
        self.max_attempts = max_attempts or settings.max_retry_attempts
        self.interval_days = interval_days or settings.retry_interval_days

    def next_retry_date(self, now: datetime) -> datetime:
        return now + timedelta(days=self.interval_days)

    def has_attempts_left(self, retry: PaymentRetry) -> bool:
        return retry.attempt_count < self.max_attempts

    def new_retry(self, payment_id: int, attempt_count: int, now: datetime) -> PaymentRetry:
        retry = PaymentRetry(
            payment_id=payment_id,
            status=RetryStatus.SCHEDULED,
            attempt_count=attempt_count,
            scheduled_date=self.next_retry_date(now),
        )
        retry.append_status(RetryStatus.SCHEDULED, now, note=f"attempt {attempt_count} scheduled")
        return retry

    async def after_failure(
        self,
        db: AsyncSession,
        retry: PaymentRetry,
        payment: Payment,
        customer: Customer,
        now: datetime
    ) -> List[DomainEvent]:
        """Schedule the next attempt, or mark the subscription past due."""
        if self.has_attempts_left(retry):
            next_retry = self.new_retry(payment.id, retry.attempt_count + 1, now)
            db.add(next_retry)
            logger.info(
                "Payment retry rescheduled",
                payment_id=payment.id,
                attempt=next_retry.attempt_count,
                scheduled_date=next_retry.scheduled_date.isoformat()
            )
            return event(
                EventKind.PAYMENT_RETRY_FAILED,
                customer.user_id,
                payment_id=payment.id,
                attempt=retry.attempt_count,
                next_attempt=next_retry.scheduled_date.isoformat()
            )

        if payment.subscription_id is not None:
            subscription = await db.get(Subscription, payment.subscription_id)
            if subscription is not None and subscription.status != SubscriptionStatus.CANCELLED:
                subscription.status = SubscriptionStatus.PAST_DUE
        logger.warning(
            "Payment retries exhausted",
            payment_id=payment.id,
            subscription_id=payment.subscription_id,
            attempts=retry.attempt_count
        )
        return event(
            EventKind.PAYMENT_RETRIES_EXHAUSTED,
            customer.user_id,
            payment_id=payment.id,
            attempts=retry.attempt_count
        )

    async def after_success(
        self,
        db: AsyncSession,
        retry: PaymentRetry,
        payment: Payment,
        customer: Customer,
        now: datetime
    ) -> List[DomainEvent]:
        """Settle the charge and reactivate the subscription."""
        payment.status = ChargeStatus.COMPLETED
        payment.failure_reason = None
        if payment.subscription_id is not None:
            subscription = await db.get(Subscription, payment.subscription_id)
            if subscription is not None:
                subscription.last_payment_date = now
                if subscription.status == SubscriptionStatus.PAST_DUE:
                    subscription.status = SubscriptionStatus.ACTIVE
        return event(
            EventKind.PAYMENT_RETRY_SUCCEEDED,
            customer.user_id,
            payment_id=payment.id,
            transaction_id=retry.transaction_id
        )


async def record_failed_charge(
    db: AsyncSession,
    payment_id: int,
    reason: str,
    now: Optional[datetime] = None,
    policy: Optional[RetryPolicy] = None
) -> PaymentRetry:
    """Mark a charge FAILED and schedule its first retry."""
    now = now or utcnow()
    policy = policy or RetryPolicy()

    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(f"Payment not found: {payment_id}", {"payment_id": payment_id})
    if payment.status == ChargeStatus.COMPLETED:
        raise InvalidTransitionError("payment", payment.status.value, ChargeStatus.FAILED.value)

    existing = await db.execute(
        select(PaymentRetry.id).where(PaymentRetry.payment_id == payment_id).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Payment already has a retry chain", {"payment_id": payment_id})

    payment.status = ChargeStatus.FAILED
    payment.failure_reason = reason
    retry = policy.new_retry(payment_id, 1, now)
    db.add(retry)
    await db.flush()

    logger.info(
        "Failed charge recorded",
        payment_id=payment_id,
        retry_id=retry.id,
        reason=reason,
        scheduled_date=retry.scheduled_date.isoformat()
    )
    return retry


class PaymentRetryProcessor:
    """Runs due payment retries against the gateway."""

    def __init__(
        self,
        gateway: Optional[PaymentGateway] = None,
        notifier=None,
        policy: Optional[RetryPolicy] = None,
        gateway_timeout: Optional[float] = None,
        item_timeout: Optional[float] = None
    ):
        self.gateway = gateway or get_payment_gateway()
        self.notifier = notifier
        self.policy = policy or RetryPolicy()
        self.gateway_timeout = gateway_timeout or settings.gateway_timeout_seconds
        self.item_timeout = item_timeout

    async def process(self, retry_id: int, now: Optional[datetime] = None) -> TransitionResult[PaymentRetry]:
        """Run one due retry: SCHEDULED -> SUCCESS | FAILED.

        Events are dispatched once the outcome is committed.

        Raises:
            NotFoundError: unknown retry
            InvalidTransitionError: retry already finalized
            ValidationError: retry not due yet
            ConflictError: another processor finalized the retry first
        """
        result = await self._attempt(retry_id, now or utcnow())
        await dispatch_events(result.events, self.notifier)
        return result

    async def _attempt(self, retry_id: int, now: datetime) -> TransitionResult[PaymentRetry]:
        async with get_async_session() as session:
            retry = await session.get(PaymentRetry, retry_id)
            if retry is None:
                raise NotFoundError(f"Payment retry not found: {retry_id}", {"retry_id": retry_id})
            if retry.status != RetryStatus.SCHEDULED:
                raise InvalidTransitionError("payment_retry", retry.status.value, "PROCESSED")
            if not retry.is_due(now):
                raise ValidationError(
                    "Payment retry is not due yet",
                    {"retry_id": retry_id, "scheduled_date": retry.scheduled_date.isoformat()}
                )
            seen_version = retry.version
            payment = await session.get(Payment, retry.payment_id)
            subscription_id = payment.subscription_id
            customer = await session.get(Customer, payment.customer_id)
            customer_reference = payment.gateway_customer_reference or customer.gateway_customer_reference
            reference = None
            if customer_reference:
                reference = PaymentReference(
                    retry_id=retry.id,
                    payment_id=payment.id,
                    customer_reference=customer_reference,
                    amount_cents=payment.amount_cents,
                    currency=payment.currency or settings.default_currency,
                )

        if reference is None:
            outcome = GatewayResult.declined(MISSING_GATEWAY_REFERENCE)
        else:
            outcome = await self._charge(reference)

        try:
            async with get_async_session() as session:
                result = await self._finalize(session, retry_id, seen_version, outcome, now)
        except (StaleDataError, IntegrityError):
            # Version moved or the next attempt already exists
            raise ConflictError(
                "Payment retry was finalized concurrently",
                {"retry_id": retry_id}
            )

        if outcome.success and subscription_id is not None:
            await accrue_commission_safely(subscription_id, now.date())
        return result

    async def _charge(self, reference: PaymentReference) -> GatewayResult:
        """Call the gateway; any error or timeout counts as a failed attempt."""
        try:
            return await asyncio.wait_for(
                self.gateway.charge_retry(reference), timeout=self.gateway_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Payment gateway timed out",
                retry_id=reference.retry_id,
                timeout=self.gateway_timeout
            )
        except Exception as e:
            logger.warning(
                "Payment gateway call failed",
                retry_id=reference.retry_id,
                error=str(e)
            )
        return GatewayResult.declined(GATEWAY_UNAVAILABLE)

    async def _finalize(
        self,
        session: AsyncSession,
        retry_id: int,
        seen_version: int,
        outcome: GatewayResult,
        now: datetime
    ) -> TransitionResult[PaymentRetry]:
        retry = await session.get(PaymentRetry, retry_id, populate_existing=True)
        if retry.version != seen_version or retry.status != RetryStatus.SCHEDULED:
            raise ConflictError(
                "Payment retry was finalized concurrently",
                {"retry_id": retry_id, "status": retry.status.value}
            )

        payment = await session.get(Payment, retry.payment_id)
        customer = await session.get(Customer, payment.customer_id)

        if outcome.success:
            retry.transition(RetryStatus.SUCCESS, now, transaction_id=outcome.transaction_id)
            events = await self.policy.after_success(session, retry, payment, customer, now)
        else:
            retry.transition(RetryStatus.FAILED, now, failure_reason=outcome.reason_code)
            payment.failure_reason = outcome.reason_code
            events = await self.policy.after_failure(session, retry, payment, customer, now)

        await session.flush()

        logger.info(
            "Payment retry processed",
            retry_id=retry_id,
            payment_id=payment.id,
            status=retry.status.value,
            attempt=retry.attempt_count,
            reason=retry.failure_reason
        )
        return TransitionResult(retry, events)

    async def due_retry_ids(self, now: datetime, limit: int = 500) -> List[int]:
        async with get_async_session() as session:
            result = await session.execute(
                select(PaymentRetry.id)
                .where(
                    and_(
                        PaymentRetry.status == RetryStatus.SCHEDULED,
                        PaymentRetry.scheduled_date <= now
                    )
                )
                .order_by(PaymentRetry.scheduled_date, PaymentRetry.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def process_due(self, now: Optional[datetime] = None) -> BatchResult:
        """Process every due retry independently."""
        now = now or utcnow()
        retry_ids = await self.due_retry_ids(now)
        logger.info("Processing due payment retries", count=len(retry_ids))

        async def handle(retry_id: int) -> ItemResult:
            try:
                result = await self._attempt(retry_id, now)
            except ConflictError:
                return ItemResult(retry_id, ItemOutcome.SKIPPED, entity_id=retry_id, detail="already handled")
            return ItemResult(
                retry_id, ItemOutcome.UPDATED,
                entity_id=retry_id,
                detail=result.instance.status.value,
                events=result.events
            )

        # Gateway time counts against the item timeout
        item_timeout = self.item_timeout or max(
            settings.batch_item_timeout_seconds, self.gateway_timeout + 5
        )
        return await run_batch(
            "retry_payments", retry_ids, handle, item_timeout=item_timeout, notifier=self.notifier
        )

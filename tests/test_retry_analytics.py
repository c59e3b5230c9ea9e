"""
Tests for the payment retry analytics report.
"""

from datetime import timedelta

import pytest

from scoopify.core.database import get_async_session
from scoopify.services.payment_gateway import GatewayResult
from scoopify.services.payment_retry_processor import PaymentRetryProcessor
from scoopify.services.retry_analytics import RetryAnalyticsService

from helpers import FAILED_AT, FakeGateway, RecordingNotifier

THREE_DAYS = 3 * 24 * 3600.0


async def build_report():
    async with get_async_session() as session:
        return await RetryAnalyticsService(session).build_report()


@pytest.mark.asyncio
async def test_empty_report(database):
    report = await build_report()

    assert report.total_retries == 0
    assert report.success_rate == 0.0
    assert report.most_common_success_path is None
    assert report.average_attempts_to_success is None
    assert report.transition_counts == {}


@pytest.mark.asyncio
async def test_report_over_retry_chains(failed_charge):
    first_retry = FAILED_AT + timedelta(days=3)
    _, _, straight = await failed_charge()
    _, _, bumpy = await failed_charge()
    _, _, another = await failed_charge()

    approve = PaymentRetryProcessor(gateway=FakeGateway(GatewayResult.approved("txn")), notifier=RecordingNotifier())
    decline = PaymentRetryProcessor(gateway=FakeGateway(GatewayResult.declined("card_declined")), notifier=RecordingNotifier())

    await approve.process(straight, now=first_retry)
    await approve.process(another, now=first_retry)
    await decline.process(bumpy, now=first_retry)
    second_attempt = await approve.due_retry_ids(first_retry + timedelta(days=3))
    await approve.process(second_attempt[0], now=first_retry + timedelta(days=3))

    report = await build_report()

    assert report.total_retries == 4
    assert report.successful_retries == 3
    assert report.failed_retries == 1
    assert report.success_rate == 0.75
    assert report.average_attempts_to_success == 1.33
    assert report.transition_counts == {
        "SCHEDULED->SUCCESS": 3,
        "SCHEDULED->FAILED": 1,
        "FAILED->SCHEDULED": 1,
    }
    assert report.average_transition_seconds["SCHEDULED->SUCCESS"] == THREE_DAYS
    assert report.average_transition_seconds["FAILED->SCHEDULED"] == 0.0
    assert report.most_common_success_path == "SCHEDULED -> SUCCESS"

    data = report.to_dict()
    assert data["success_rate"] == 0.75
    assert data["total_retries"] == 4

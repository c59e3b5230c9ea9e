"""
Tests for the outbound adapters: event dispatch, the webhook notifier and the
Stripe gateway, against a local aiohttp server.
"""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as LocalServer

from scoopify.core.exceptions import ConfigurationError, ExternalServiceError
from scoopify.services.events import DomainEvent, EventKind, dispatch_events, event
from scoopify.services.notifications import LogNotifier, WebhookNotifier, get_notifier
from scoopify.services.payment_gateway import PaymentReference, StripeGateway

from helpers import RecordingNotifier

REFERENCE = PaymentReference(retry_id=7, payment_id=3, customer_reference="cus_123", amount_cents=5500)


def test_event_without_recipient_is_dropped():
    assert event(EventKind.SERVICE_CLAIMED, None, service_id=1) == []
    assert event(EventKind.SERVICE_CLAIMED, "customer-1", service_id=1)[0].payload == {"service_id": 1}


@pytest.mark.asyncio
async def test_dispatch_is_best_effort():
    events = [DomainEvent(EventKind.PAYOUT_PAID, "employee-1", {"payout_id": 1})]

    assert await dispatch_events(events, RecordingNotifier()) == 1
    assert await dispatch_events(events, RecordingNotifier(fail=True)) == 0


def test_log_notifier_is_the_default():
    assert isinstance(get_notifier(), LogNotifier)


@pytest.mark.asyncio
async def test_webhook_notifier_posts_json():
    received = []

    async def hook(request):
        received.append(await request.json())
        return web.json_response({"ok": True})

    app = web.Application()
    app.router.add_post("/hook", hook)
    async with LocalServer(app) as server:
        notifier = WebhookNotifier(str(server.make_url("/hook")))
        await notifier.notify("customer-1", EventKind.SERVICE_COMPLETED, {"service_id": 5})

    assert received == [
        {"user_id": "customer-1", "template": "SERVICE_COMPLETED", "payload": {"service_id": 5}}
    ]


@pytest.mark.asyncio
async def test_webhook_rejection_raises():
    async def hook(request):
        return web.Response(status=500, text="relay down")

    app = web.Application()
    app.router.add_post("/hook", hook)
    async with LocalServer(app) as server:
        notifier = WebhookNotifier(str(server.make_url("/hook")))
        with pytest.raises(ExternalServiceError):
            await notifier.notify("customer-1", EventKind.SERVICE_COMPLETED, {})


def stripe_server(status: int, body: dict, received: list) -> LocalServer:
    async def payment_intents(request):
        received.append((dict(await request.post()), request.headers))
        return web.json_response(body, status=status)

    app = web.Application()
    app.router.add_post("/v1/payment_intents", payment_intents)
    return LocalServer(app)


@pytest.mark.asyncio
async def test_stripe_charge_succeeds():
    received = []
    async with stripe_server(200, {"id": "pi_1", "status": "succeeded"}, received) as server:
        gateway = StripeGateway(secret_key="sk_test", api_base=str(server.make_url("/v1")))
        result = await gateway.charge_retry(REFERENCE)

    assert result.success
    assert result.transaction_id == "pi_1"
    form, headers = received[0]
    assert form["amount"] == "5500"
    assert form["customer"] == "cus_123"
    assert headers["Idempotency-Key"] == "retry-7"
    assert headers["Authorization"] == "Bearer sk_test"


@pytest.mark.asyncio
async def test_stripe_decline_is_a_result():
    received = []
    body = {"error": {"code": "card_declined", "decline_code": "insufficient_funds"}}
    async with stripe_server(402, body, received) as server:
        gateway = StripeGateway(secret_key="sk_test", api_base=str(server.make_url("/v1")))
        result = await gateway.charge_retry(REFERENCE)

    assert not result.success
    assert result.reason_code == "insufficient_funds"


@pytest.mark.asyncio
async def test_stripe_server_error_raises():
    async with stripe_server(500, {}, []) as server:
        gateway = StripeGateway(secret_key="sk_test", api_base=str(server.make_url("/v1")))
        with pytest.raises(ExternalServiceError):
            await gateway.charge_retry(REFERENCE)


@pytest.mark.asyncio
async def test_stripe_requires_secret_key():
    gateway = StripeGateway(api_base="http://localhost")
    gateway.secret_key = None

    with pytest.raises(ConfigurationError):
        await gateway.charge_retry(REFERENCE)

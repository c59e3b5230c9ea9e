"""
Test doubles and constants shared by the test modules.
"""

import asyncio
from datetime import date, datetime
from typing import Any, Dict, List, Tuple

from scoopify.core.database import get_async_session
from scoopify.core.identity import Caller, UserRole
from scoopify.services.notifications import Notifier
from scoopify.services.payment_gateway import GatewayResult, PaymentGateway, PaymentReference

# Monday of ISO week 2026-W43
WEEK_MONDAY = date(2026, 10, 19)
WEDNESDAY = date(2026, 10, 21)
FAILED_AT = datetime(2026, 10, 1, 12, 0)

ADMIN = Caller(user_id="admin-1", role=UserRole.ADMIN)


def employee_caller(user_id: str = "employee-1") -> Caller:
    return Caller(user_id=user_id, role=UserRole.EMPLOYEE)


def customer_caller(user_id: str) -> Caller:
    return Caller(user_id=user_id, role=UserRole.CUSTOMER)


class RecordingNotifier(Notifier):
    """Keeps every notification in memory."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.sent: List[Tuple[str, Any, Dict[str, Any]]] = []
        self.fail = fail
        self.delay = delay

    async def notify(self, user_id, template_kind, payload):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("notifier down")
        self.sent.append((user_id, template_kind, payload))

    def kinds(self) -> List[Any]:
        return [kind for _, kind, _ in self.sent]


class FakeGateway(PaymentGateway):
    """Scripted gateway: returns results in order, raises exceptions, or stalls.

    The last scripted outcome repeats once the others are used up.
    """

    def __init__(self, *outcomes, delay: float = 0.0):
        self.outcomes = list(outcomes) or [GatewayResult.approved("txn_1")]
        self.delay = delay
        self.calls: List[PaymentReference] = []

    async def charge_retry(self, reference: PaymentReference) -> GatewayResult:
        self.calls.append(reference)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


async def fetch(model, ident):
    """Load a row in a fresh session, bypassing any caller's identity map."""
    async with get_async_session() as session:
        return await session.get(model, ident)


class FakeRedis:
    """The slice of redis.asyncio.Redis the job locks use."""

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def set(self, key, value, nx=False, px=None):
        if nx and key in self.values:
            return None
        self.values[key] = value
        self.ttls[key] = px
        return True

    async def eval(self, script, numkeys, key, token):
        if self.values.get(key) == token:
            del self.values[key]
            return 1
        return 0

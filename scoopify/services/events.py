"""
Domain events produced by state transitions.

Transitions never notify anyone themselves. They return the events they
produced and the caller dispatches them once the transaction has committed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class EventKind(str, Enum):
    """Notification templates known to the notifier."""
    SERVICE_SCHEDULED = "SERVICE_SCHEDULED"
    SERVICE_CLAIMED = "SERVICE_CLAIMED"
    SERVICE_RELEASED = "SERVICE_RELEASED"
    SERVICE_STARTED = "SERVICE_STARTED"
    SERVICE_COMPLETED = "SERVICE_COMPLETED"
    SERVICE_CANCELLED = "SERVICE_CANCELLED"
    PAYMENT_RETRY_SUCCEEDED = "PAYMENT_RETRY_SUCCEEDED"
    PAYMENT_RETRY_FAILED = "PAYMENT_RETRY_FAILED"
    PAYMENT_RETRIES_EXHAUSTED = "PAYMENT_RETRIES_EXHAUSTED"
    PAYOUT_REQUESTED = "PAYOUT_REQUESTED"
    PAYOUT_PAID = "PAYOUT_PAID"


@dataclass(frozen=True)
class DomainEvent:
    """Something a user should hear about."""
    kind: EventKind
    recipient_user_id: str
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TransitionResult(Generic[T]):
    """Entity after a transition plus the events to dispatch after commit."""
    instance: T
    events: List[DomainEvent] = field(default_factory=list)


async def dispatch_events(events: Iterable[DomainEvent], notifier=None) -> int:
    """Send events through the notifier, best-effort.

    A failing notification is logged and never propagates.

    Returns:
        Number of events delivered
    """
    from scoopify.services.notifications import get_notifier

    notifier = notifier or get_notifier()
    delivered = 0
    for event in events:
        try:
            await notifier.notify(event.recipient_user_id, event.kind, event.payload)
            delivered += 1
        except Exception as e:
            logger.warning(
                "Notification delivery failed",
                kind=event.kind.value,
                recipient=event.recipient_user_id,
                error=str(e)
            )
    return delivered


def event(kind: EventKind, recipient_user_id: Optional[str], **payload) -> List[DomainEvent]:
    """Single-event list, empty when there is nobody to notify."""
    if not recipient_user_id:
        return []
    return [DomainEvent(kind=kind, recipient_user_id=recipient_user_id, payload=payload)]

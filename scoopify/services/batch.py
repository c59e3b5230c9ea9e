"""
Per-item bookkeeping for batch jobs.

Every item of a batch runs on its own with an independent timeout; a failing
item is recorded and the batch moves on. Events an item returns are sent
after its timed section, so a slow notifier never fails committed work.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

import structlog

from scoopify.core.config import settings
from scoopify.core.exceptions import ScoopifyException
from scoopify.services.events import DomainEvent, dispatch_events
from scoopify.utils.dates import utcnow

logger = structlog.get_logger(__name__)

S = TypeVar("S")


class ItemOutcome(str, Enum):
    """What happened to a single batch item."""
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ItemResult:
    """Result for one subject of a batch."""
    subject_id: Any
    outcome: ItemOutcome
    entity_id: Optional[int] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    # Sent after commit, outside the item timeout
    events: List[DomainEvent] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "outcome": self.outcome.value,
            "entity_id": self.entity_id,
            "error": self.error,
            "detail": self.detail,
        }


@dataclass
class BatchResult:
    """Aggregated result of a batch job."""
    job: str
    items: List[ItemResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    def add(self, item: ItemResult) -> None:
        self.items.append(item)

    def count(self, outcome: ItemOutcome) -> int:
        return sum(1 for item in self.items if item.outcome == outcome)

    @property
    def created(self) -> int:
        return self.count(ItemOutcome.CREATED)

    @property
    def updated(self) -> int:
        return self.count(ItemOutcome.UPDATED)

    @property
    def skipped(self) -> int:
        return self.count(ItemOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self.count(ItemOutcome.FAILED)

    @property
    def errors(self) -> List[ItemResult]:
        return [item for item in self.items if item.outcome == ItemOutcome.FAILED]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "total": len(self.items),
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "items": [item.to_dict() for item in self.items],
        }


async def _notify(item: ItemResult, notifier, timeout: float, log) -> None:
    try:
        await asyncio.wait_for(dispatch_events(item.events, notifier), timeout=timeout)
    except asyncio.TimeoutError:
        log.warning("Batch item notifications timed out", subject_id=item.subject_id, timeout=timeout)
    finally:
        item.events = []


async def run_batch(
    job: str,
    subjects: Iterable[S],
    handler: Callable[[S], Awaitable[ItemResult]],
    subject_id: Callable[[S], Any] = lambda subject: subject,
    item_timeout: Optional[float] = None,
    notifier=None
) -> BatchResult:
    """Run handler for every subject, collecting per-item results.

    Args:
        job: Name used in logs and in the result
        subjects: Items to process
        handler: Coroutine processing one subject in its own transaction
        subject_id: Extracts the id reported for a subject
        item_timeout: Seconds allowed per item, defaults to settings
        notifier: Receives the events returned with each item

    Returns:
        BatchResult with one ItemResult per subject
    """
    timeout = item_timeout if item_timeout is not None else settings.batch_item_timeout_seconds
    result = BatchResult(job=job)
    log = logger.bind(job=job)

    for subject in subjects:
        sid = subject_id(subject)
        try:
            item = await asyncio.wait_for(handler(subject), timeout=timeout)
        except asyncio.TimeoutError:
            log.warning("Batch item timed out", subject_id=sid, timeout=timeout)
            item = ItemResult(sid, ItemOutcome.FAILED, error="timeout")
        except ScoopifyException as e:
            log.warning("Batch item rejected", subject_id=sid, error=e.message, code=e.code)
            item = ItemResult(sid, ItemOutcome.FAILED, error=e.message)
        except Exception as e:
            log.error("Batch item failed", subject_id=sid, error=str(e), exc_info=True)
            item = ItemResult(sid, ItemOutcome.FAILED, error=str(e))
        result.add(item)
        if item.events:
            await _notify(item, notifier, timeout, log)

    result.finished_at = utcnow()
    log.info(
        "Batch finished",
        total=len(result.items),
        created=result.created,
        updated=result.updated,
        skipped=result.skipped,
        failed=result.failed
    )
    return result

"""
Read-only report over payment retry status histories.

Histories are read per payment: the retry chain of one failed charge forms a
single path such as SCHEDULED -> FAILED -> SCHEDULED -> SUCCESS.
"""

from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scoopify.models.payment import PaymentRetry, PaymentRetryStatusEntry, RetryStatus


@dataclass
class RetryAnalytics:
    total_retries: int = 0
    successful_retries: int = 0
    failed_retries: int = 0
    transition_counts: Dict[str, int] = field(default_factory=dict)
    average_transition_seconds: Dict[str, float] = field(default_factory=dict)
    most_common_success_path: Optional[str] = None
    average_attempts_to_success: Optional[float] = None

    @property
    def success_rate(self) -> float:
        finished = self.successful_retries + self.failed_retries
        return self.successful_retries / finished if finished else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_retries": self.total_retries,
            "successful_retries": self.successful_retries,
            "failed_retries": self.failed_retries,
            "success_rate": round(self.success_rate, 4),
            "transition_counts": self.transition_counts,
            "average_transition_seconds": self.average_transition_seconds,
            "most_common_success_path": self.most_common_success_path,
            "average_attempts_to_success": self.average_attempts_to_success,
        }


class RetryAnalyticsService:
    """Aggregates retry histories."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def build_report(self) -> RetryAnalytics:
        result = await self.db.execute(
            select(
                PaymentRetry.payment_id,
                PaymentRetry.attempt_count,
                PaymentRetry.status,
                PaymentRetryStatusEntry.sequence,
                PaymentRetryStatusEntry.status.label("entry_status"),
                PaymentRetryStatusEntry.timestamp,
            )
            .join(PaymentRetryStatusEntry, PaymentRetryStatusEntry.payment_retry_id == PaymentRetry.id)
            .order_by(
                PaymentRetry.payment_id,
                PaymentRetry.attempt_count,
                PaymentRetryStatusEntry.sequence
            )
        )
        rows = result.all()

        retries = await self.db.execute(select(PaymentRetry.status, PaymentRetry.attempt_count))
        report = RetryAnalytics()
        success_attempts: List[int] = []
        for status, attempt_count in retries.all():
            report.total_retries += 1
            if status == RetryStatus.SUCCESS:
                report.successful_retries += 1
                success_attempts.append(attempt_count)
            elif status == RetryStatus.FAILED:
                report.failed_retries += 1
        if success_attempts:
            report.average_attempts_to_success = round(sum(success_attempts) / len(success_attempts), 2)

        chains: Dict[int, List[Any]] = defaultdict(list)
        for row in rows:
            chains[row.payment_id].append(row)

        transitions: Counter = Counter()
        durations: Dict[str, List[float]] = defaultdict(list)
        success_paths: Counter = Counter()
        for chain in chains.values():
            for previous, current in zip(chain, chain[1:]):
                key = f"{previous.entry_status.value}->{current.entry_status.value}"
                transitions[key] += 1
                durations[key].append((current.timestamp - previous.timestamp).total_seconds())
            if chain[-1].entry_status == RetryStatus.SUCCESS:
                success_paths[" -> ".join(row.entry_status.value for row in chain)] += 1

        report.transition_counts = dict(transitions)
        report.average_transition_seconds = {
            key: round(sum(values) / len(values), 2) for key, values in durations.items()
        }
        if success_paths:
            report.most_common_success_path = success_paths.most_common(1)[0][0]
        return report

"""
Task scheduler for the periodic business jobs.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from scoopify.core.config import settings
from scoopify.core.locks import JobLock, get_redis
from scoopify.services.payment_retry_processor import PaymentRetryProcessor
from scoopify.services.payout_service import process_weekly_payouts
from scoopify.services.referral_settlement import settle_referrals
from scoopify.services.service_generator import ServiceGenerator
from scoopify.services.unclaimed_reconciler import JobUnlocker, UnclaimedServiceReconciler
from scoopify.utils.dates import utcnow

logger = structlog.get_logger(__name__)

HOUR = 3600
DAY = 24 * HOUR


class ScheduledTask:
    """A job run every interval_seconds."""

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False
    ):
        self.name = name
        self.func = func
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.last_run: Optional[datetime] = None
        self.last_result: Any = None
        self.run_count = 0
        self.error_count = 0
        self.last_error: Optional[str] = None
        self.next_run = utcnow() if run_immediately else utcnow() + timedelta(seconds=interval_seconds)

    def should_run(self, now: Optional[datetime] = None) -> bool:
        return self.enabled and (now or utcnow()) >= self.next_run

    def schedule_next_run(self) -> None:
        self.next_run = utcnow() + timedelta(seconds=self.interval_seconds)

    async def run(self) -> Any:
        """Execute the task; failures are counted and re-raised."""
        start_time = utcnow()
        try:
            logger.debug("Running scheduled task", task=self.name)
            self.last_result = await self.func()
            self.run_count += 1
            logger.info(
                "Task completed",
                task=self.name,
                duration=(utcnow() - start_time).total_seconds(),
                run_count=self.run_count
            )
            return self.last_result
        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            logger.error("Task failed", task=self.name, error=str(e), error_count=self.error_count)
            raise
        finally:
            self.last_run = start_time
            self.schedule_next_run()


class TaskScheduler:
    """Runs the periodic jobs, one process at a time per job."""

    def __init__(self, loop_interval: Optional[int] = None):
        self.tasks: Dict[str, ScheduledTask] = {}
        self.running = False
        self.loop_interval = loop_interval or settings.scheduler_loop_interval

    async def initialize(self) -> None:
        logger.info("Initializing task scheduler")
        self._register_default_tasks()
        logger.info("Task scheduler initialized", tasks=len(self.tasks))

    def _register_default_tasks(self) -> None:
        self.register_task("generate_services", self._generate_services, DAY, run_immediately=True)
        self.register_task("reconcile_unclaimed", self._reconcile_unclaimed, DAY, run_immediately=True)
        self.register_task("unlock_jobs", self._unlock_jobs, 15 * 60, run_immediately=True)
        self.register_task("retry_payments", self._retry_payments, HOUR)
        self.register_task("process_payouts", self._process_payouts, 7 * DAY)
        self.register_task("settle_referrals", self._settle_referrals, DAY)

    def register_task(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        enabled: bool = True,
        run_immediately: bool = False
    ) -> ScheduledTask:
        """Register a job; it runs under a Redis lock named after it."""
        task = ScheduledTask(
            name=name,
            func=lambda: self._run_locked(name, func),
            interval_seconds=interval_seconds,
            enabled=enabled,
            run_immediately=run_immediately
        )
        self.tasks[name] = task
        logger.info("Registered task", task=name, interval=interval_seconds)
        return task

    def enable_task(self, name: str) -> None:
        if name in self.tasks:
            self.tasks[name].enabled = True
            logger.info("Enabled task", task=name)

    def disable_task(self, name: str) -> None:
        if name in self.tasks:
            self.tasks[name].enabled = False
            logger.info("Disabled task", task=name)

    async def start(self) -> None:
        logger.info("Starting task scheduler")
        self.running = True

        while self.running:
            try:
                await self.run_pending()
                await asyncio.sleep(self.loop_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Task scheduler loop error", error=str(e))
                await asyncio.sleep(self.loop_interval)

        logger.info("Task scheduler stopped")

    async def stop(self) -> None:
        logger.info("Stopping task scheduler")
        self.running = False

    async def run_pending(self) -> None:
        """Run every due task; one failing task does not affect the others."""
        pending = [task for task in self.tasks.values() if task.should_run()]
        if not pending:
            return
        results = await asyncio.gather(*(task.run() for task in pending), return_exceptions=True)
        for task, result in zip(pending, results):
            if isinstance(result, Exception):
                logger.error("Scheduled task raised", task=task.name, error=str(result))

    async def _run_locked(self, name: str, func: Callable[[], Awaitable[Any]]) -> Any:
        try:
            client = await get_redis()
        except Exception as e:
            logger.warning("Redis unavailable, running job without lock", task=name, error=str(e))
            client = None

        if client is None:
            return await func()

        async with JobLock(client, name) as acquired:
            if not acquired:
                return None
            return await func()

    async def health_check(self) -> Dict[str, Any]:
        total_tasks = len(self.tasks)
        tasks_with_errors = sum(1 for task in self.tasks.values() if task.error_count > 0)
        return {
            "healthy": self.running and tasks_with_errors < total_tasks * 0.5,
            "running": self.running,
            "total_tasks": total_tasks,
            "enabled_tasks": sum(1 for task in self.tasks.values() if task.enabled),
            "tasks_with_errors": tasks_with_errors,
            "tasks": {
                name: {
                    "enabled": task.enabled,
                    "last_run": task.last_run.isoformat() if task.last_run else None,
                    "next_run": task.next_run.isoformat(),
                    "run_count": task.run_count,
                    "error_count": task.error_count,
                    "last_error": task.last_error,
                }
                for name, task in self.tasks.items()
            },
        }

    # Jobs

    async def _generate_services(self):
        return await ServiceGenerator().generate_for_week(utcnow().date())

    async def _reconcile_unclaimed(self):
        return await UnclaimedServiceReconciler().reconcile()

    async def _unlock_jobs(self):
        return await JobUnlocker().unlock_due_jobs()

    async def _retry_payments(self):
        return await PaymentRetryProcessor().process_due()

    async def _process_payouts(self):
        return await process_weekly_payouts()

    async def _settle_referrals(self):
        return await settle_referrals()

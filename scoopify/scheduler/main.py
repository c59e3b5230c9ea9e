"""
Main entry point for the scheduler service.
"""

import asyncio
import signal

import structlog

from scoopify.core.config import settings
from scoopify.core.database import close_database, init_database
from scoopify.core.locks import close_redis
from scoopify.core.logging import setup_logging
from .task_scheduler import TaskScheduler

logger = structlog.get_logger(__name__)


class SchedulerMain:
    """Owns the task scheduler and its periodic health log."""

    def __init__(self):
        self.task_scheduler = None
        self.running = False
        self.tasks = []

    async def initialize(self):
        logger.info("Initializing scheduler service")
        await init_database()
        self.task_scheduler = TaskScheduler()
        await self.task_scheduler.initialize()
        logger.info("Scheduler service initialized")

    async def start(self):
        logger.info("Starting scheduler service")
        self.running = True
        self.tasks.append(asyncio.create_task(self.task_scheduler.start()))
        self.tasks.append(asyncio.create_task(self._periodic_health_check()))
        await asyncio.gather(*self.tasks, return_exceptions=True)

    async def stop(self):
        logger.info("Stopping scheduler service")
        self.running = False

        if self.task_scheduler:
            await self.task_scheduler.stop()

        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

        await close_redis()
        await close_database()
        logger.info("Scheduler service stopped")

    async def _periodic_health_check(self):
        while self.running:
            try:
                await asyncio.sleep(300)
                if not self.running:
                    break
                health = await self.task_scheduler.health_check()
                logger.info("Scheduler health check", healthy=health["healthy"], tasks=health["tasks"])
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Health check error", error=str(e))


async def main():
    """Run the scheduler until SIGINT/SIGTERM."""
    setup_logging()

    if not settings.scheduler_enabled:
        logger.warning("Scheduler disabled by configuration")
        return

    scheduler = SchedulerMain()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, lambda: asyncio.create_task(scheduler.stop()))

    try:
        await scheduler.initialize()
        await scheduler.start()
    finally:
        await scheduler.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()

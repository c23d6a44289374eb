"""Timer trigger: runs the reconciliation cycle on a fixed interval with APScheduler."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from tunnel_watch.cycle import TunnelWatch
from tunnel_watch.errors import ConfigurationError


logger = structlog.get_logger(__name__)

JOB_ID = "tunnel-watch.cycle"


class CycleScheduler:
    def __init__(self, watch: TunnelWatch, *, interval_seconds: int) -> None:
        self.watch = watch
        self.interval_seconds = max(1, int(interval_seconds))
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.running = False

    async def run_once(self) -> None:
        try:
            await self.watch.run_cycle()
        except ConfigurationError as exc:
            # Fatal for this cycle only; the next tick re-reads the inventory.
            logger.error("cycle_configuration_error", error=str(exc))

    def start(self) -> None:
        if self.running:
            logger.warning("scheduler_already_running")
            return
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=JOB_ID,
            name="reconcile tunnels",
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
            replace_existing=True,
        )
        self.scheduler.start()
        self.running = True
        logger.info("scheduler_started", interval_seconds=self.interval_seconds)

    def shutdown(self) -> None:
        if not self.running:
            return
        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("scheduler_stopped")

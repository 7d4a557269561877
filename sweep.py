"""
Quotation cleanup sweep.

Customers created alongside a quote that was never approved stay in the
"quotation" status. Once a day every such customer older than the retention
window is deleted in a single ``delete_many``.

The sweep is owned by the application lifespan: ``start()`` on startup,
``stop()`` on shutdown.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from pymongo.database import Database
from pymongo.errors import PyMongoError

import config
from database import StoreUnavailable, get_db, utcnow
from lifecycle import CustomerStatus
from logging_config import get_logger

logger = get_logger(__name__)


class QuotationSweep:
    def __init__(
        self,
        db_provider: Callable[[], Database] = get_db,
        retention: timedelta = timedelta(days=config.SWEEP_RETENTION_DAYS),
        interval_seconds: float = config.SWEEP_INTERVAL_SECONDS,
        startup_delay_seconds: float = config.SWEEP_STARTUP_DELAY_SECONDS,
    ):
        self.db_provider = db_provider
        self.retention = retention
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def cutoff(self, now: Optional[datetime] = None) -> datetime:
        return (now or utcnow()) - self.retention

    def run_once(self, now: Optional[datetime] = None) -> int:
        """Delete stale quotation-stage customers. Failures are logged, never raised."""
        cutoff = self.cutoff(now)
        try:
            result = self.db_provider()["customer"].delete_many({
                "status": CustomerStatus.QUOTATION.value,
                "created_at": {"$lt": cutoff},
            })
        except (PyMongoError, StoreUnavailable) as e:
            logger.error("quotation_sweep_failed", error=str(e), cutoff=cutoff.isoformat())
            return 0

        deleted = result.deleted_count
        if deleted:
            logger.info("quotation_sweep_deleted", deleted=deleted, cutoff=cutoff.isoformat())
        else:
            logger.debug("quotation_sweep_nothing_to_delete", cutoff=cutoff.isoformat())
        return deleted

    async def _run_forever(self) -> None:
        await asyncio.sleep(self.startup_delay_seconds)
        while True:
            try:
                await asyncio.to_thread(self.run_once)
            except Exception:
                logger.exception("quotation_sweep_crashed")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_forever(), name="quotation-sweep")
        logger.info(
            "quotation_sweep_started",
            retention_days=self.retention.days,
            interval_seconds=self.interval_seconds,
            startup_delay_seconds=self.startup_delay_seconds,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("quotation_sweep_stopped")

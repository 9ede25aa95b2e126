"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import settings
from .base import BaseWorker
from .expiry_sweep_worker import ExpirySweepWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """Starts, stops and reports on the application's background workers."""

    def __init__(self, sweep_enabled: bool = None, sweep_interval_seconds: int = None):
        self.workers: Dict[str, BaseWorker] = {}
        self.sweep_enabled = settings.sweep_worker_enabled if sweep_enabled is None else sweep_enabled
        self.sweep_interval_seconds = sweep_interval_seconds or settings.sweep_interval_seconds
        self._setup_workers()

    def _setup_workers(self) -> None:
        if self.sweep_enabled:
            self.workers["expiry_sweep"] = ExpirySweepWorker(interval_seconds=self.sweep_interval_seconds)
        else:
            logger.info("In-process expiry sweep disabled; relying on the cron route")

        logger.info(f"Initialized {len(self.workers)} workers")

    async def start_all(self) -> None:
        """Start all workers."""
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error(f"Failed to start worker {name}: {e!s}", exc_info=True)

        logger.info(f"Started {len(self.workers)} workers")

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        names = list(self.workers)
        results = await asyncio.gather(
            *(self.workers[name].stop() for name in names),
            return_exceptions=True,
        )

        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping worker {name}: {result!s}")

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """Get a worker by name; raises KeyError if unknown."""
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Running status of every worker."""
        return {name: worker.running for name, worker in self.workers.items()}

"""Background worker that runs the waitlist expiry sweep."""

import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.database import async_session_factory
from ..services.booking_gateway import build_booking_gateway
from ..services.notifier import NotificationDispatcher, build_notifier
from ..services.sweeper import SweepResult
from ..services.waitlist_service import WaitlistService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class ExpirySweepWorker(BaseWorker):
    """
    Periodically expires lapsed waitlist entries and cascades offers.

    Runs alongside the cron-triggered sweep route; overlapping sweeps are
    safe because every candidate is re-checked under its group lock.
    """

    def __init__(
        self,
        interval_seconds: int = 120,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Clock = utcnow,
    ):
        super().__init__(name="ExpirySweep", interval_seconds=interval_seconds)
        self.session_factory = session_factory
        self.dispatcher = dispatcher or NotificationDispatcher(build_notifier())
        self.clock = clock
        self.last_result: Optional[SweepResult] = None

    async def process(self) -> None:
        async with self.session_factory() as db:
            service = WaitlistService(
                db,
                dispatcher=self.dispatcher,
                booking_gateway=build_booking_gateway(),
                clock=self.clock,
            )
            result = await service.sweep()

        self.last_result = result
        if result.processed_count or result.failed_count:
            logger.info(
                f"Swept {result.processed_count} waitlist entries",
                extra={
                    "processed_count": result.processed_count,
                    "promoted_count": result.promoted_count,
                    "failed_count": result.failed_count,
                    "worker": self.name,
                }
            )

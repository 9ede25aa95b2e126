"""Expiry sweep: drives lapsed waitlist entries to expired and cascades offers."""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.config import settings
from ..core.observability import metrics_collector
from ..models.waitlist import GroupKey
from .notifier import NotificationDispatcher
from .transitions import TransitionEngine, TransitionOutcome, lapsed_window

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts from one sweep."""
    processed_count: int = 0
    promoted_count: int = 0
    failed_count: int = 0


class ExpirySweeper:
    """
    Finds entries past their patience or confirmation deadline and expires them.

    Each entry is handled in its own group transaction, so entries of one
    group are expired strictly one after another while different groups never
    block each other. Candidates are re-checked after the lock is taken:
    anything a concurrent caller already moved on is skipped, which makes a
    repeated or overlapping sweep a no-op.
    """

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        clock: Clock = utcnow,
        batch_size: Optional[int] = None,
        engine: Optional[TransitionEngine] = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        self.batch_size = batch_size or settings.sweep_batch_size
        self.engine = engine or TransitionEngine(db, clock=clock)

    async def sweep(self) -> SweepResult:
        """
        Run one sweep.

        Returns:
            SweepResult with the number of entries expired, cascade promotions
            made and entries that failed and will be retried next run
        """
        started = time.perf_counter()
        now = self.clock()
        result = SweepResult()

        candidates = await self.engine.store.find_lapsed(now, self.batch_size)
        # Release the read snapshot before taking any group lock
        await self.db.commit()

        by_group: Dict[GroupKey, List[UUID]] = {}
        for entry in candidates:
            by_group.setdefault(entry.group_key, []).append(entry.id)

        for key, entry_ids in by_group.items():
            for entry_id in entry_ids:
                try:
                    outcome = await self._expire_one(key, entry_id, now)
                except Exception as e:
                    result.failed_count += 1
                    logger.error(
                        "Failed to expire waitlist entry",
                        exc_info=True,
                        extra={"entry_id": str(entry_id), "group": str(key), "error": str(e)}
                    )
                    continue

                result.processed_count += len(outcome.expired)
                if outcome.promoted is not None:
                    result.promoted_count += 1
                    # Best-effort; failures are logged by the dispatcher
                    await self.dispatcher.dispatch_slot_available(outcome.promoted)

        duration = time.perf_counter() - started
        metrics_collector.record_sweep(duration)

        if candidates or result.failed_count:
            logger.info(
                "Waitlist sweep completed",
                extra={
                    "candidates": len(candidates),
                    "groups": len(by_group),
                    "processed_count": result.processed_count,
                    "promoted_count": result.promoted_count,
                    "failed_count": result.failed_count,
                    "duration_seconds": round(duration, 3),
                }
            )

        return result

    async def _expire_one(self, key: GroupKey, entry_id: UUID, now: datetime) -> TransitionOutcome:
        outcome = TransitionOutcome()
        async with self.engine.group_transaction(key):
            entry = await self.engine.store.get_entry(entry_id, refresh=True)
            if entry is None or lapsed_window(entry, now) is None:
                logger.debug(
                    "Sweep candidate already handled",
                    extra={"entry_id": str(entry_id), "status": getattr(entry, "status", None)}
                )
                return outcome
            outcome = await self.engine.expire(entry)
        return outcome

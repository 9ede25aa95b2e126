"""Waitlist entry state machine.

Every status change goes through :class:`TransitionEngine`. Its methods
assume the caller holds the group lock (see :meth:`TransitionEngine.group_transaction`)
and never commit on their own, so a transition, the re-ranking it causes and
any cascade promotion land in one atomic unit.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, FrozenSet, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.config import settings
from ..core.exceptions import InvalidTransitionError
from ..core.observability import metrics_collector
from ..models.waitlist import GroupKey, WaitlistEntry, WaitlistStatus
from .position_assigner import PositionAssigner
from .queue_store import QueueStore

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[WaitlistStatus, FrozenSet[WaitlistStatus]] = {
    WaitlistStatus.WAITING: frozenset({
        WaitlistStatus.NOTIFIED,
        WaitlistStatus.EXPIRED,
        WaitlistStatus.CANCELLED,
    }),
    WaitlistStatus.NOTIFIED: frozenset({
        WaitlistStatus.CONFIRMED,
        WaitlistStatus.EXPIRED,
        WaitlistStatus.CANCELLED,
    }),
    WaitlistStatus.CONFIRMED: frozenset(),
    WaitlistStatus.EXPIRED: frozenset(),
    WaitlistStatus.CANCELLED: frozenset(),
}

# Position held by the notified entry; waiting entries rank from 1.
OFFERED_POSITION = 0


def ensure_transition(entry: WaitlistEntry, target: WaitlistStatus) -> WaitlistStatus:
    """Raise InvalidTransitionError unless ``entry`` may move to ``target``; returns the current status."""
    current = WaitlistStatus(entry.status)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(str(entry.id), current.value, target.value)
    return current


def lapsed_window(entry: WaitlistEntry, now: datetime) -> Optional[str]:
    """
    Which deadline of a live entry has passed, if any.

    Returns "patience" for a waiting entry past ``expires_at``,
    "confirmation" for a notified entry past ``notification_expires_at``,
    otherwise None.
    """
    status = WaitlistStatus(entry.status)
    if status == WaitlistStatus.WAITING and entry.expires_at < now:
        return "patience"
    if (
        status == WaitlistStatus.NOTIFIED
        and entry.notification_expires_at is not None
        and entry.notification_expires_at < now
    ):
        return "confirmation"
    return None


@dataclass
class TransitionOutcome:
    """What a transition did to its group."""
    entry: Optional[WaitlistEntry] = None
    promoted: Optional[WaitlistEntry] = None
    expired: List[WaitlistEntry] = field(default_factory=list)

    def merge(self, other: "TransitionOutcome") -> "TransitionOutcome":
        self.expired.extend(other.expired)
        if other.promoted is not None:
            self.promoted = other.promoted
        return self


class TransitionEngine:
    """Applies lifecycle transitions with their re-ranking and cascade side effects."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utcnow,
        confirmation_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.clock = clock
        self.confirmation_window = confirmation_window or timedelta(
            minutes=settings.confirmation_window_minutes
        )
        self.store = QueueStore(db)
        self.positions = PositionAssigner(self.store)

    @asynccontextmanager
    async def group_transaction(self, key: GroupKey) -> AsyncIterator[None]:
        """
        Hold the group lock for the body and commit on exit.

        Any exception rolls the whole unit back, leaving the group exactly as
        it was before the lock was taken.
        """
        try:
            await self.store.lock_group(key, self.clock())
            yield
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise

    async def _move(self, entry: WaitlistEntry, target: WaitlistStatus, **values) -> WaitlistStatus:
        """Compare-and-swap ``entry`` into ``target`` and re-rank if it left the queue."""
        previous = ensure_transition(entry, target)
        vacated_position = entry.position
        now = self.clock()

        swapped = await self.store.compare_and_set_status(entry, previous, target, now, **values)
        if not swapped:
            # Lost a race: reload to report what the winner wrote
            await self.db.refresh(entry)
            logger.warning(
                "Waitlist transition lost a concurrent update",
                extra={
                    "entry_id": str(entry.id),
                    "expected_status": previous.value,
                    "current_status": entry.status,
                    "target_status": target.value,
                }
            )
            raise InvalidTransitionError(str(entry.id), str(entry.status), target.value)

        if previous == WaitlistStatus.WAITING:
            await self.positions.close_gap(entry.group_key, vacated_position, now)

        logger.info(
            "Waitlist entry transitioned",
            extra={
                "entry_id": str(entry.id),
                "group": str(entry.group_key),
                "from_status": previous.value,
                "to_status": target.value,
                "position": vacated_position,
            }
        )
        return previous

    async def promote_next(self, key: GroupKey, trigger: str = "slot_freed") -> TransitionOutcome:
        """
        Offer the freed slot to the head of the group's queue.

        Does nothing while the group holds a live offer. An offer whose
        confirmation window has lapsed, and waiting entries whose patience
        window has lapsed, are expired on the way instead.
        """
        outcome = TransitionOutcome()

        notified = await self.store.get_notified_entry(key)
        if notified is not None and lapsed_window(notified, self.clock()) == "confirmation":
            # expire() cascades back into promote_next
            return outcome.merge(await self.expire(notified))
        if notified is not None:
            logger.info(
                "Group already has a notified entry - skipping promotion",
                extra={"group": str(key), "notified_entry_id": str(notified.id), "trigger": trigger}
            )
            return outcome

        while True:
            candidate = await self.store.next_waiting(key)
            if candidate is None:
                logger.info("No waiting entries left to promote", extra={"group": str(key), "trigger": trigger})
                return outcome

            if lapsed_window(candidate, self.clock()) == "patience":
                await self._move(candidate, WaitlistStatus.EXPIRED)
                metrics_collector.record_expired("patience")
                outcome.expired.append(candidate)
                continue

            now = self.clock()
            await self._move(
                candidate,
                WaitlistStatus.NOTIFIED,
                position=OFFERED_POSITION,
                notification_sent_at=now,
                notification_expires_at=now + self.confirmation_window,
            )
            metrics_collector.record_promoted(trigger)
            outcome.promoted = candidate
            return outcome

    async def expire(self, entry: WaitlistEntry) -> TransitionOutcome:
        """Expire a waiting or notified entry; a notified one cascades to the next in line."""
        window = "confirmation" if entry.status == WaitlistStatus.NOTIFIED else "patience"
        previous = await self._move(entry, WaitlistStatus.EXPIRED)
        metrics_collector.record_expired(window)

        outcome = TransitionOutcome(entry=entry, expired=[entry])
        if previous == WaitlistStatus.NOTIFIED:
            outcome.merge(await self.promote_next(entry.group_key, trigger="cascade"))
        return outcome

    async def cancel(self, entry: WaitlistEntry, cancelled_by: Optional[str] = None) -> TransitionOutcome:
        """Cancel a waiting or notified entry; a notified one cascades to the next in line."""
        previous = await self._move(entry, WaitlistStatus.CANCELLED, cancelled_by=cancelled_by)
        metrics_collector.record_cancelled(previous.value)

        outcome = TransitionOutcome(entry=entry)
        if previous == WaitlistStatus.NOTIFIED:
            outcome.merge(await self.promote_next(entry.group_key, trigger="cascade"))
        return outcome

    async def confirm(self, entry: WaitlistEntry, appointment_ref: Optional[str] = None) -> TransitionOutcome:
        """Confirm a notified entry. The group is left with no notified entry and no cascade runs."""
        now = self.clock()
        await self._move(
            entry,
            WaitlistStatus.CONFIRMED,
            converted_appointment_ref=appointment_ref,
            converted_at=now,
        )
        metrics_collector.record_confirmed()
        return TransitionOutcome(entry=entry)

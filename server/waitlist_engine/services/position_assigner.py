"""Queue position assignment and re-ranking within a group."""

import logging
from datetime import datetime

from ..models.waitlist import GroupKey
from .queue_store import QueueStore

logger = logging.getLogger(__name__)


class PositionAssigner:
    """
    Keeps waiting positions of a group contiguous from 1.

    Both operations must run while the caller holds the group lock, in the
    same transaction as the insert or status change they accompany.
    """

    def __init__(self, store: QueueStore):
        self.store = store

    async def assign(self, key: GroupKey) -> int:
        """Position for a new arrival: one behind the last waiting entry."""
        return await self.store.count_waiting(key) + 1

    async def close_gap(self, key: GroupKey, vacated_position: int, now: datetime) -> int:
        """
        Re-rank after an entry left ``waiting`` from ``vacated_position``.

        Returns:
            Number of entries that moved up one place
        """
        moved = await self.store.shift_positions_down(key, vacated_position, now)
        if moved:
            logger.debug(
                "Re-ranked waiting entries",
                extra={
                    "group": str(key),
                    "vacated_position": vacated_position,
                    "moved": moved,
                }
            )
        return moved

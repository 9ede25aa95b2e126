"""Queue store: every read and write of waitlist rows goes through here."""

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models.group import WaitlistGroup
from ..models.waitlist import ACTIVE_STATUSES, GroupKey, WaitlistEntry, WaitlistStatus

logger = logging.getLogger(__name__)


def _in_group(key: GroupKey):
    return and_(
        WaitlistEntry.service_id == key.service_id,
        WaitlistEntry.employee_id == key.employee_id,
        WaitlistEntry.requested_date_time == key.requested_date_time,
    )


QUEUE_ORDER = (WaitlistEntry.position, WaitlistEntry.created_at)


class QueueStore:
    """Data access for waitlist entries and their group control records."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_group(self, key: GroupKey, now: datetime) -> None:
        """
        Serialize the current transaction against every other writer of the group.

        The control row is created on first use, then its version is bumped.
        The bump holds the row lock (PostgreSQL) or the database write lock
        (SQLite) until the transaction ends, so reads issued afterwards see
        the group as the previous lock holder committed it.
        """
        await self._ensure_group_row(key, now)

        stmt = (
            update(WaitlistGroup)
            .where(
                WaitlistGroup.service_id == key.service_id,
                WaitlistGroup.employee_id == key.employee_id,
                WaitlistGroup.requested_date_time == key.requested_date_time,
            )
            .values(version=WaitlistGroup.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

        logger.debug("Acquired waitlist group lock", extra={"group": str(key)})

    async def _ensure_group_row(self, key: GroupKey, now: datetime) -> None:
        values = {
            "id": uuid4(),
            "service_id": key.service_id,
            "employee_id": key.employee_id,
            "requested_date_time": key.requested_date_time,
            "version": 0,
            "created_at": now,
            "updated_at": now,
        }
        dialect = self.db.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert
            stmt = insert(WaitlistGroup).values(**values).on_conflict_do_nothing(
                index_elements=["service_id", "employee_id", "requested_date_time"]
            )
            await self.db.execute(stmt)
            return

        existing = await self.db.execute(
            select(WaitlistGroup.id).where(
                WaitlistGroup.service_id == key.service_id,
                WaitlistGroup.employee_id == key.employee_id,
                WaitlistGroup.requested_date_time == key.requested_date_time,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return
        try:
            async with self.db.begin_nested():
                self.db.add(WaitlistGroup(**values))
        except IntegrityError:
            # Created by a concurrent writer
            pass

    async def get_entry(self, entry_id: UUID, refresh: bool = False) -> Optional[WaitlistEntry]:
        """Get entry by ID; ``refresh`` overwrites any stale copy in the session."""
        stmt = select(WaitlistEntry).where(WaitlistEntry.id == entry_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_entry_or_raise(self, entry_id: UUID, refresh: bool = False) -> WaitlistEntry:
        """Get entry by ID or raise NotFoundError."""
        entry = await self.get_entry(entry_id, refresh=refresh)
        if entry is None:
            logger.warning("Waitlist entry not found", extra={"entry_id": str(entry_id)})
            raise NotFoundError(resource_type="waitlist entry", resource_id=str(entry_id))
        return entry

    async def add(self, entry: WaitlistEntry) -> WaitlistEntry:
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def count_waiting(self, key: GroupKey) -> int:
        stmt = select(func.count(WaitlistEntry.id)).where(
            _in_group(key),
            WaitlistEntry.status == WaitlistStatus.WAITING.value,
        )
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def get_notified_entry(self, key: GroupKey) -> Optional[WaitlistEntry]:
        """The group's single notified entry, if any."""
        stmt = (
            select(WaitlistEntry)
            .where(_in_group(key), WaitlistEntry.status == WaitlistStatus.NOTIFIED.value)
            .order_by(WaitlistEntry.notification_sent_at)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def next_waiting(self, key: GroupKey) -> Optional[WaitlistEntry]:
        """Head of the group's queue: lowest position, earliest enrollment."""
        stmt = (
            select(WaitlistEntry)
            .where(_in_group(key), WaitlistEntry.status == WaitlistStatus.WAITING.value)
            .order_by(*QUEUE_ORDER)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def list_group(self, key: GroupKey, statuses: Tuple[WaitlistStatus, ...] = ACTIVE_STATUSES) -> List[WaitlistEntry]:
        """Group members with the given statuses, in queue order."""
        stmt = (
            select(WaitlistEntry)
            .where(_in_group(key), WaitlistEntry.status.in_([s.value for s in statuses]))
            .order_by(*QUEUE_ORDER)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def find_active_for_client(self, client_id: str, key: GroupKey) -> Optional[WaitlistEntry]:
        stmt = (
            select(WaitlistEntry)
            .where(
                _in_group(key),
                WaitlistEntry.client_id == client_id,
                WaitlistEntry.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .limit(1)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def compare_and_set_status(
        self,
        entry: WaitlistEntry,
        expected: WaitlistStatus,
        target: WaitlistStatus,
        now: datetime,
        **values: Any,
    ) -> bool:
        """
        Move ``entry`` from ``expected`` to ``target`` only if nobody changed it since it was read.

        Returns False when the row's status or version no longer match, i.e.
        another writer got there first. On success the entry is reloaded.
        """
        stmt = (
            update(WaitlistEntry)
            .where(
                WaitlistEntry.id == entry.id,
                WaitlistEntry.status == expected.value,
                WaitlistEntry.version == entry.version,
            )
            .values(
                status=target.value,
                version=WaitlistEntry.version + 1,
                updated_at=now,
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount != 1:
            return False

        await self.db.refresh(entry)
        return True

    async def shift_positions_down(self, key: GroupKey, vacated_position: int, now: datetime) -> int:
        """Decrement every waiting position behind ``vacated_position``; returns rows moved."""
        stmt = (
            update(WaitlistEntry)
            .where(
                _in_group(key),
                WaitlistEntry.status == WaitlistStatus.WAITING.value,
                WaitlistEntry.position > vacated_position,
            )
            .values(
                position=WaitlistEntry.position - 1,
                version=WaitlistEntry.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount or 0

    async def find_lapsed(self, now: datetime, limit: int) -> List[WaitlistEntry]:
        """
        Entries whose deadline has passed: waiting past ``expires_at`` or notified
        past ``notification_expires_at``. Ordered by group, then queue order.
        """
        stmt = (
            select(WaitlistEntry)
            .where(
                or_(
                    and_(
                        WaitlistEntry.status == WaitlistStatus.WAITING.value,
                        WaitlistEntry.expires_at < now,
                    ),
                    and_(
                        WaitlistEntry.status == WaitlistStatus.NOTIFIED.value,
                        WaitlistEntry.notification_expires_at < now,
                    ),
                )
            )
            .order_by(
                WaitlistEntry.service_id,
                WaitlistEntry.employee_id,
                WaitlistEntry.requested_date_time,
                *QUEUE_ORDER,
            )
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def search(
        self,
        service_id: Optional[str] = None,
        employee_id: Optional[str] = None,
        status: Optional[WaitlistStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WaitlistEntry], bool]:
        """Filtered listing ordered by slot, then queue order; returns (items, has_more)."""
        conditions = []
        if service_id:
            conditions.append(WaitlistEntry.service_id == service_id)
        if employee_id:
            conditions.append(WaitlistEntry.employee_id == employee_id)
        if status:
            conditions.append(WaitlistEntry.status == WaitlistStatus(status).value)

        stmt = select(WaitlistEntry)
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = (
            stmt.order_by(WaitlistEntry.requested_date_time, *QUEUE_ORDER, WaitlistEntry.id)
            .offset(offset)
            .limit(limit + 1)
        )

        result = await self.db.execute(stmt)
        entries = list(result.scalars())
        has_more = len(entries) > limit
        return entries[:limit], has_more

    async def list_active_for_client(self, client_id: str) -> List[WaitlistEntry]:
        stmt = (
            select(WaitlistEntry)
            .where(
                WaitlistEntry.client_id == client_id,
                WaitlistEntry.status.in_([s.value for s in ACTIVE_STATUSES]),
            )
            .order_by(WaitlistEntry.requested_date_time, *QUEUE_ORDER)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

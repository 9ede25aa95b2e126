"""Waitlist entry model definition."""

from datetime import datetime
from enum import Enum
from typing import NamedTuple
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base


class WaitlistStatus(str, Enum):
    """Waitlist entry lifecycle status."""
    WAITING = "waiting"
    NOTIFIED = "notified"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    WaitlistStatus.CONFIRMED,
    WaitlistStatus.EXPIRED,
    WaitlistStatus.CANCELLED,
})

ACTIVE_STATUSES = (WaitlistStatus.WAITING, WaitlistStatus.NOTIFIED)


class ActorRole(str, Enum):
    """Role of the user acting on an entry."""
    CLIENT = "client"
    EMPLOYEE = "employee"
    ADMIN = "admin"


class GroupKey(NamedTuple):
    """Entries compete for a freed slot only within the same group."""
    service_id: str
    employee_id: str
    requested_date_time: datetime

    def __str__(self) -> str:
        return f"{self.service_id}:{self.employee_id}:{self.requested_date_time.isoformat()}"


class WaitlistEntry(Base):
    """A customer waiting for a fully-booked appointment slot."""

    __tablename__ = "waitlist_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Opaque references owned by other parts of the platform
    client_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    service_id: Mapped[str] = mapped_column(String(128), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(128), nullable=False)
    requested_date_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Snapshot taken at enrollment
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    selected_addon_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    total_price: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minor units

    # Queue state
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[WaitlistStatus] = mapped_column(
        String(20),
        nullable=False,
        default=WaitlistStatus.WAITING,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Deadlines
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notification_sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notification_expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Outcome
    converted_appointment_ref: Mapped[str | None] = mapped_column(String(128), nullable=True)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("length(client_id) > 0", name="ck_waitlist_client_id_not_empty"),
        CheckConstraint("duration_minutes > 0", name="ck_waitlist_duration_positive"),
        CheckConstraint("position >= 0", name="ck_waitlist_position_non_negative"),
        CheckConstraint("total_price IS NULL OR total_price >= 0", name="ck_waitlist_total_price_non_negative"),
        CheckConstraint(
            "status IN ('waiting', 'notified', 'confirmed', 'expired', 'cancelled')",
            name="ck_waitlist_status_valid",
        ),
        Index(
            "ix_waitlist_group_queue",
            "service_id", "employee_id", "requested_date_time", "status", "position",
        ),
        Index("ix_waitlist_status_expires_at", "status", "expires_at"),
        Index("ix_waitlist_status_notification_expires_at", "status", "notification_expires_at"),
    )

    @property
    def group_key(self) -> GroupKey:
        return GroupKey(self.service_id, self.employee_id, self.requested_date_time)

    def __repr__(self) -> str:
        return (
            f"<WaitlistEntry(id={self.id}, client_id='{self.client_id}', "
            f"group={self.group_key}, position={self.position}, status={self.status})>"
        )

"""Per-group control record used to serialize queue mutations."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base


class WaitlistGroup(Base):
    """
    One row per (service, employee, slot) group.

    Every read-decide-write sequence on a group starts by bumping ``version``
    on this row, which takes the row lock on PostgreSQL and the database write
    lock on SQLite. Concurrent writers to the same group therefore queue up
    behind each other until the holder commits.
    """

    __tablename__ = "waitlist_groups"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    service_id: Mapped[str] = mapped_column(String(128), nullable=False)
    employee_id: Mapped[str] = mapped_column(String(128), nullable=False)
    requested_date_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("service_id", "employee_id", "requested_date_time", name="uq_waitlist_group_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<WaitlistGroup(service_id='{self.service_id}', employee_id='{self.employee_id}', "
            f"requested_date_time={self.requested_date_time}, version={self.version})>"
        )

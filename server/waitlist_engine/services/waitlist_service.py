"""Waitlist service: the public operations of the waitlist engine."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, to_naive_utc, utcnow
from ..core.config import settings
from ..core.exceptions import (
    AlreadyEnrolledError,
    ConfirmationExpiredError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.waitlist import ActorRole, GroupKey, WaitlistEntry, WaitlistStatus
from ..schemas.waitlist import SearchWaitlistRequest
from .booking_gateway import BookingGateway, LocalBookingGateway
from .notifier import LoggingNotifier, NotificationDispatcher
from .sweeper import ExpirySweeper, SweepResult
from .transitions import TransitionEngine, TransitionOutcome, ensure_transition, lapsed_window

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """One page of a waitlist listing."""
    items: List[WaitlistEntry]
    next_cursor: Optional[str] = None


def ensure_can_act(entry: WaitlistEntry, acting_user_id: str, acting_role: ActorRole) -> None:
    """Only the entry's owner or an admin may act on an entry."""
    if ActorRole(acting_role) == ActorRole.ADMIN or entry.client_id == acting_user_id:
        return
    logger.warning(
        "Waitlist action forbidden",
        extra={
            "entry_id": str(entry.id),
            "acting_user_id": acting_user_id,
            "acting_role": ActorRole(acting_role).value,
        }
    )
    raise ForbiddenError(detail="Only the customer who joined the waitlist or an admin may do this")


def _parse_entry_id(entry_id) -> UUID:
    if isinstance(entry_id, UUID):
        return entry_id
    try:
        return UUID(str(entry_id))
    except ValueError:
        raise NotFoundError(resource_type="waitlist entry", resource_id=str(entry_id))


class WaitlistService:
    """Service for waitlist enrollment, lifecycle transitions and listings."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Optional[NotificationDispatcher] = None,
        booking_gateway: Optional[BookingGateway] = None,
        clock: Clock = utcnow,
        confirmation_window: Optional[timedelta] = None,
        patience_window: Optional[timedelta] = None,
    ):
        self.db = db
        self.clock = clock
        self.dispatcher = dispatcher or NotificationDispatcher(LoggingNotifier())
        self.booking_gateway = booking_gateway or LocalBookingGateway()
        self.patience_window = patience_window or timedelta(days=settings.patience_window_days)
        self.engine = TransitionEngine(db, clock=clock, confirmation_window=confirmation_window)
        self.store = self.engine.store

    async def enroll(
        self,
        client_id: str,
        service_id: str,
        employee_id: str,
        requested_date_time: datetime,
        duration: int,
        addon_ids: Iterable[str] = (),
        total_price: Optional[int] = None,
    ) -> WaitlistEntry:
        """
        Add a client to the waitlist of a fully booked slot.

        The entry is stored as ``waiting`` at the back of its group's queue.
        Its patience window runs for ``patience_window_days`` but never past
        the slot itself.

        Raises:
            ValidationError: If a required field is missing or out of range
            AlreadyEnrolledError: If the client already waits for this slot
        """
        now = self.clock()
        client_id, service_id, employee_id = (
            str(value).strip() if value is not None else ""
            for value in (client_id, service_id, employee_id)
        )
        violations = []
        for name, value in (
            ("client_id", client_id),
            ("service_id", service_id),
            ("employee_id", employee_id),
        ):
            if not value:
                violations.append({"path": name, "message": "This field is required"})
        if requested_date_time is None:
            violations.append({"path": "requested_date_time", "message": "This field is required"})
        else:
            requested_date_time = to_naive_utc(requested_date_time)
            if requested_date_time <= now:
                violations.append({"path": "requested_date_time", "message": "The requested slot must be in the future"})
        if duration is None or duration <= 0:
            violations.append({"path": "duration_minutes", "message": "Duration must be a positive number of minutes"})
        if total_price is not None and total_price < 0:
            violations.append({"path": "total_price", "message": "Total price cannot be negative"})

        if violations:
            logger.info("Rejected waitlist enrollment", extra={"violations": violations})
            raise ValidationError(detail="The waitlist enrollment is incomplete or invalid", violations=violations)

        key = GroupKey(service_id, employee_id, requested_date_time)
        addons = list(dict.fromkeys(addon_ids or ()))

        async with self.engine.group_transaction(key):
            existing = await self.store.find_active_for_client(client_id, key)
            if existing is not None:
                logger.info(
                    "Client already on waitlist for slot",
                    extra={"entry_id": str(existing.id), "client_id": client_id, "group": str(key)}
                )
                raise AlreadyEnrolledError(str(existing.id))

            position = await self.engine.positions.assign(key)
            entry = WaitlistEntry(
                client_id=client_id,
                service_id=key.service_id,
                employee_id=key.employee_id,
                requested_date_time=key.requested_date_time,
                duration_minutes=duration,
                selected_addon_ids=addons,
                total_price=total_price,
                position=position,
                status=WaitlistStatus.WAITING.value,
                version=1,
                expires_at=min(now + self.patience_window, key.requested_date_time),
                created_at=now,
                updated_at=now,
            )
            await self.store.add(entry)

        metrics_collector.record_enrolled()
        logger.info(
            "Client joined waitlist",
            extra={
                "entry_id": str(entry.id),
                "client_id": client_id,
                "group": str(key),
                "position": entry.position,
                "expires_at": entry.expires_at.isoformat(),
            }
        )
        return entry

    async def cancel(self, entry_id, acting_user_id: str, acting_role: ActorRole) -> WaitlistEntry:
        """
        Cancel a waiting or notified entry.

        Cancelling the notified entry hands the offer to the next customer.

        Raises:
            NotFoundError: If the entry does not exist
            ForbiddenError: If the actor is neither the owner nor an admin
            InvalidTransitionError: If the entry is already terminal
        """
        entry = await self.get_entry_or_raise(entry_id)
        ensure_can_act(entry, acting_user_id, acting_role)

        async with self.engine.group_transaction(entry.group_key):
            entry = await self.store.get_entry_or_raise(entry.id, refresh=True)
            outcome = await self.engine.cancel(entry, cancelled_by=acting_user_id)

        logger.info(
            "Waitlist entry cancelled",
            extra={
                "entry_id": str(entry.id),
                "acting_user_id": acting_user_id,
                "acting_role": ActorRole(acting_role).value,
                "promoted_entry_id": str(outcome.promoted.id) if outcome.promoted else None,
            }
        )
        await self._dispatch_promotion(outcome)
        return entry

    async def confirm(self, entry_id) -> WaitlistEntry:
        """
        Claim the offered slot for a notified entry.

        The appointment is created inside the same transaction; when the
        booking collaborator fails the entry stays ``notified``. A confirm that
        arrives after the confirmation deadline expires the entry, passes the
        offer on and then fails.

        Raises:
            NotFoundError: If the entry does not exist
            InvalidTransitionError: If the entry is not ``notified``
            ConfirmationExpiredError: If the confirmation window has closed
            BookingUnavailableError: If the appointment could not be created
        """
        entry = await self.get_entry_or_raise(entry_id)
        expired_at: Optional[datetime] = None

        async with self.engine.group_transaction(entry.group_key):
            entry = await self.store.get_entry_or_raise(entry.id, refresh=True)
            ensure_transition(entry, WaitlistStatus.CONFIRMED)

            if lapsed_window(entry, self.clock()) == "confirmation":
                expired_at = entry.notification_expires_at
                outcome = await self.engine.expire(entry)
            else:
                appointment_ref = await self.booking_gateway.create_appointment(entry)
                outcome = await self.engine.confirm(entry, appointment_ref)

        if expired_at is not None:
            logger.info(
                "Confirmation arrived after the deadline",
                extra={"entry_id": str(entry.id), "expired_at": expired_at.isoformat()}
            )
            await self._dispatch_promotion(outcome)
            raise ConfirmationExpiredError(str(entry.id), expired_at)

        logger.info(
            "Waitlist entry confirmed",
            extra={
                "entry_id": str(entry.id),
                "client_id": entry.client_id,
                "appointment_ref": entry.converted_appointment_ref,
            }
        )
        await self.dispatcher.dispatch_booking_confirmed(entry)
        return entry

    async def on_slot_freed(self, service_id: str, employee_id: str, requested_date_time: datetime) -> TransitionOutcome:
        """
        Offer a freed slot to the head of its waitlist.

        A no-op when the group already has a notified entry or nobody waits.
        """
        key = GroupKey(service_id, employee_id, to_naive_utc(requested_date_time))

        async with self.engine.group_transaction(key):
            outcome = await self.engine.promote_next(key, trigger="slot_freed")

        logger.info(
            "Processed freed slot",
            extra={
                "group": str(key),
                "promoted_entry_id": str(outcome.promoted.id) if outcome.promoted else None,
                "expired_count": len(outcome.expired),
            }
        )
        await self._dispatch_promotion(outcome)
        return outcome

    async def sweep(self, batch_size: Optional[int] = None) -> SweepResult:
        """Expire every lapsed entry and cascade offers."""
        sweeper = ExpirySweeper(
            self.db,
            self.dispatcher,
            clock=self.clock,
            batch_size=batch_size,
            engine=self.engine,
        )
        return await sweeper.sweep()

    async def get_entry_or_raise(self, entry_id) -> WaitlistEntry:
        return await self.store.get_entry_or_raise(_parse_entry_id(entry_id), refresh=True)

    async def list_client_entries(self, client_id: str) -> List[WaitlistEntry]:
        """Active (waiting or notified) entries of a client, soonest slot first."""
        return await self.store.list_active_for_client(client_id)

    async def search_entries(self, request: SearchWaitlistRequest) -> SearchResult:
        """
        Filtered listing for admins.

        Cursors are opaque offsets into the ordered listing.
        """
        offset = 0
        if request.cursor:
            try:
                offset = max(int(request.cursor), 0)
            except ValueError:
                logger.warning(
                    "Invalid cursor provided in waitlist search",
                    extra={"cursor": request.cursor}
                )

        entries, has_more = await self.store.search(
            service_id=request.service_id,
            employee_id=request.employee_id,
            status=request.status,
            limit=request.limit,
            offset=offset,
        )
        next_cursor = str(offset + len(entries)) if has_more else None

        logger.info(
            "Waitlist search completed",
            extra={
                "filters": {
                    "service_id": request.service_id,
                    "employee_id": request.employee_id,
                    "status": request.status.value if request.status else None,
                },
                "result_count": len(entries),
                "has_next_page": has_more,
            }
        )
        return SearchResult(items=entries, next_cursor=next_cursor)

    async def _dispatch_promotion(self, outcome: TransitionOutcome) -> None:
        if outcome.promoted is not None:
            await self.dispatcher.dispatch_slot_available(outcome.promoted)

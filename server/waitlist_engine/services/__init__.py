"""Service layer package."""

from .booking_gateway import BookingGateway, HttpBookingGateway, LocalBookingGateway
from .notifier import LoggingNotifier, NotificationDispatcher, Notifier, WebhookNotifier
from .position_assigner import PositionAssigner
from .queue_store import QueueStore
from .sweeper import ExpirySweeper, SweepResult
from .transitions import TransitionEngine, TransitionOutcome
from .waitlist_service import WaitlistService

__all__ = [
    "BookingGateway",
    "ExpirySweeper",
    "HttpBookingGateway",
    "LocalBookingGateway",
    "LoggingNotifier",
    "NotificationDispatcher",
    "Notifier",
    "PositionAssigner",
    "QueueStore",
    "SweepResult",
    "TransitionEngine",
    "TransitionOutcome",
    "WaitlistService",
    "WebhookNotifier",
]

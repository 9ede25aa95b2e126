"""Notification dispatch for waitlist offers and confirmations.

Delivery is best-effort. A failed or crashed notifier never undoes the
transition that triggered it: a notified customer who never receives the
message simply lets the confirmation window run out, and the sweep cascades
to the next entry. There is deliberately no outbox or redelivery.
"""

import logging
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Optional

import httpx

from ..core.config import settings
from ..core.exceptions import DispatchError
from ..core.observability import metrics_collector
from ..models.waitlist import WaitlistEntry
from ..schemas.waitlist import MessageKind, WaitlistMessage

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Capability that delivers a message to a customer."""

    @abstractmethod
    async def notify(self, message: WaitlistMessage) -> bool:
        """Deliver ``message``; return False (or raise) when delivery failed."""


class LoggingNotifier(Notifier):
    """Writes messages to the log. Used when no notifier endpoint is configured."""

    async def notify(self, message: WaitlistMessage) -> bool:
        logger.info(
            "Waitlist message (log only)",
            extra={
                "kind": message.kind.value,
                "entry_id": message.entry_id,
                "client_id": message.client_id,
                "confirmation_url": message.confirmation_url,
            }
        )
        return True


class WebhookNotifier(Notifier):
    """POSTs messages as JSON to the platform's notification service."""

    def __init__(self, url: str, timeout_seconds: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def notify(self, message: WaitlistMessage) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(self.url, json=message.model_dump(mode="json"))
        if response.is_success:
            return True
        raise DispatchError(message.entry_id, f"notifier responded with HTTP {response.status_code}")


def build_notifier() -> Notifier:
    """Notifier for the configured environment."""
    if settings.notification_webhook_url:
        return WebhookNotifier(settings.notification_webhook_url, settings.outbound_timeout_seconds)
    return LoggingNotifier()


class NotificationDispatcher:
    """Builds waitlist messages and hands them to a notifier, absorbing every failure."""

    def __init__(
        self,
        notifier: Notifier,
        confirmation_base_url: Optional[str] = None,
        confirmation_window: Optional[timedelta] = None,
    ):
        self.notifier = notifier
        self.confirmation_base_url = (confirmation_base_url or settings.confirmation_base_url).rstrip("/")
        self.confirmation_window = confirmation_window or timedelta(
            minutes=settings.confirmation_window_minutes
        )

    def confirmation_url(self, entry: WaitlistEntry) -> str:
        return f"{self.confirmation_base_url}/waitlist/confirm/{entry.id}"

    def _message(self, entry: WaitlistEntry, kind: MessageKind, **fields) -> WaitlistMessage:
        return WaitlistMessage(
            kind=kind,
            entry_id=str(entry.id),
            client_id=entry.client_id,
            service_id=entry.service_id,
            employee_id=entry.employee_id,
            requested_date_time=entry.requested_date_time,
            **fields,
        )

    def _window_minutes(self, entry: WaitlistEntry) -> int:
        window = self.confirmation_window
        if entry.notification_sent_at is not None and entry.notification_expires_at is not None:
            window = entry.notification_expires_at - entry.notification_sent_at
        return int(window.total_seconds() // 60)

    async def dispatch_slot_available(self, entry: WaitlistEntry) -> bool:
        """Tell a freshly notified customer how to claim the slot and by when."""
        message = self._message(
            entry,
            MessageKind.SLOT_AVAILABLE,
            confirmation_url=self.confirmation_url(entry),
            confirm_by=entry.notification_expires_at,
            expires_in_minutes=self._window_minutes(entry),
        )
        return await self._deliver(message)

    async def dispatch_booking_confirmed(self, entry: WaitlistEntry) -> bool:
        message = self._message(
            entry,
            MessageKind.BOOKING_CONFIRMED,
            appointment_ref=entry.converted_appointment_ref,
        )
        return await self._deliver(message)

    async def _deliver(self, message: WaitlistMessage) -> bool:
        try:
            delivered = await self.notifier.notify(message)
            if not delivered:
                raise DispatchError(message.entry_id, "notifier reported failure")
        except Exception as e:
            error = e if isinstance(e, DispatchError) else DispatchError(message.entry_id, str(e))
            metrics_collector.record_dispatch_failure(message.kind.value)
            logger.error(
                "Failed to dispatch waitlist message",
                extra={
                    "kind": message.kind.value,
                    "entry_id": message.entry_id,
                    "error": str(error),
                }
            )
            return False

        logger.info(
            "Waitlist message dispatched",
            extra={"kind": message.kind.value, "entry_id": message.entry_id}
        )
        return True

"""Booking collaborator that turns a confirmed waitlist entry into an appointment."""

import logging
import secrets
import string
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from ..core.config import settings
from ..core.exceptions import BookingUnavailableError
from ..models.waitlist import WaitlistEntry

logger = logging.getLogger(__name__)


class BookingGateway(ABC):
    """Creates the real appointment for a confirmed entry."""

    @abstractmethod
    async def create_appointment(self, entry: WaitlistEntry) -> str:
        """
        Materialize the appointment for ``entry``.

        Returns:
            Reference of the created appointment

        Raises:
            BookingUnavailableError: If the appointment could not be created
        """


class LocalBookingGateway(BookingGateway):
    """Issues appointment references locally when no booking service is configured."""

    def _generate_reference(self, length: int = 10) -> str:
        alphabet = string.ascii_uppercase + string.digits
        return "APT-" + ''.join(secrets.choice(alphabet) for _ in range(length))

    async def create_appointment(self, entry: WaitlistEntry) -> str:
        reference = self._generate_reference()
        logger.info(
            "Issued local appointment reference",
            extra={"entry_id": str(entry.id), "appointment_ref": reference}
        )
        return reference


class HttpBookingGateway(BookingGateway):
    """Creates appointments through the platform's booking service."""

    def __init__(self, base_url: str, timeout_seconds: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def create_appointment(self, entry: WaitlistEntry) -> str:
        payload = {
            "client_id": entry.client_id,
            "service_id": entry.service_id,
            "employee_id": entry.employee_id,
            "date_time": entry.requested_date_time.isoformat() + "Z",
            "duration_minutes": entry.duration_minutes,
            "addon_ids": list(entry.selected_addon_ids or []),
            "total_price": entry.total_price,
            "source": "waitlist",
            "waitlist_entry_id": str(entry.id),
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(f"{self.base_url}/appointments", json=payload)
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(
                "Booking service failed to create appointment",
                extra={"entry_id": str(entry.id), "error": str(e)}
            )
            raise BookingUnavailableError(str(entry.id)) from e

        reference = body.get("id") if isinstance(body, dict) else None
        if not reference:
            raise BookingUnavailableError(str(entry.id), detail="Booking service returned no appointment id")
        return str(reference)


def build_booking_gateway() -> BookingGateway:
    """Booking gateway for the configured environment."""
    if settings.booking_service_url:
        return HttpBookingGateway(settings.booking_service_url, settings.outbound_timeout_seconds)
    return LocalBookingGateway()

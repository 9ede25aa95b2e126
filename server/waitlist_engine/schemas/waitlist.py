"""Waitlist-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.waitlist import WaitlistStatus
from .common import PaginatedResponse


class EnrollRequest(BaseModel):
    """Request schema for joining a slot's waitlist."""

    client_id: Optional[str] = Field(None, max_length=128, description="Client to enroll; defaults to the caller")
    service_id: str = Field(..., max_length=128, description="Service being booked")
    employee_id: str = Field(..., max_length=128, description="Employee performing the service")
    requested_date_time: datetime = Field(..., description="Exact slot being waited for (ISO 8601)")
    duration_minutes: int = Field(..., description="Appointment length in minutes")
    selected_addon_ids: list[str] = Field(default_factory=list, description="Optional extras, in selection order")
    total_price: Optional[int] = Field(None, description="Price snapshot in minor units")


class EntryRequest(BaseModel):
    """Request schema addressing a single waitlist entry."""

    entry_id: str = Field(..., description="Waitlist entry ID")


class CancelRequest(EntryRequest):
    """Request schema for cancelling a waitlist entry."""

    reason: Optional[str] = Field(None, max_length=500, description="Free-text reason, logged only")


class SlotFreedRequest(BaseModel):
    """A previously booked slot became available again."""

    service_id: str = Field(..., max_length=128)
    employee_id: str = Field(..., max_length=128)
    requested_date_time: datetime = Field(..., description="Slot that was freed (ISO 8601)")


class SearchWaitlistRequest(BaseModel):
    """Request schema for the admin waitlist listing."""

    service_id: Optional[str] = Field(None, description="Filter by service")
    employee_id: Optional[str] = Field(None, description="Filter by employee")
    status: Optional[WaitlistStatus] = Field(None, description="Filter by status")
    limit: int = Field(50, ge=1, le=200, description="Page size")
    cursor: Optional[str] = Field(None, description="Cursor from a previous page")


class WaitlistEntry(BaseModel):
    """Waitlist entry response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Unique waitlist entry ID")
    client_id: str
    service_id: str
    employee_id: str
    requested_date_time: datetime
    duration_minutes: int
    selected_addon_ids: list[str]
    total_price: Optional[int] = None
    position: int = Field(..., description="Queue rank; 0 while the slot is offered to this entry")
    status: WaitlistStatus
    created_at: datetime
    expires_at: datetime = Field(..., description="End of the patience window")
    notification_sent_at: Optional[datetime] = None
    notification_expires_at: Optional[datetime] = Field(None, description="Confirmation deadline")
    converted_appointment_ref: Optional[str] = None
    converted_at: Optional[datetime] = None


class WaitlistListResponse(PaginatedResponse):
    """Response schema for waitlist listings."""

    items: list[WaitlistEntry] = Field(default_factory=list)


class SlotFreedResponse(BaseModel):
    """Result of offering a freed slot to its waitlist."""

    promoted: Optional[WaitlistEntry] = Field(None, description="Entry now holding the offer, if any")
    expired_count: int = Field(0, description="Lapsed waiting entries expired on the way")


class SweepResponse(BaseModel):
    """Response schema for one expiry sweep."""

    processed_count: int = Field(..., description="Entries moved to expired")
    promoted_count: int = Field(0, description="Cascade promotions performed")
    failed_count: int = Field(0, description="Entries that could not be processed this run")


class MessageKind(str, Enum):
    """Kinds of messages handed to the notifier."""
    SLOT_AVAILABLE = "slot_available"
    BOOKING_CONFIRMED = "booking_confirmed"


class WaitlistMessage(BaseModel):
    """Payload delivered to the external notifier."""

    kind: MessageKind
    entry_id: str
    client_id: str
    service_id: str
    employee_id: str
    requested_date_time: datetime
    confirmation_url: Optional[str] = None
    confirm_by: Optional[datetime] = None
    expires_in_minutes: Optional[int] = None
    appointment_ref: Optional[str] = None

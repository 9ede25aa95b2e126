"""Unit tests for the booking collaborator."""

import json

import httpx
import pytest

from conftest import SLOT
from waitlist_engine.core.exceptions import BookingUnavailableError
from waitlist_engine.models.waitlist import GroupKey
from waitlist_engine.services.booking_gateway import HttpBookingGateway, LocalBookingGateway

GROUP = GroupKey("svc-haircut", "emp-sam", SLOT)


@pytest.mark.asyncio
async def test_local_gateway_issues_references(enroll):
    entry = await enroll("client-a")
    gateway = LocalBookingGateway()

    first = await gateway.create_appointment(entry)
    second = await gateway.create_appointment(entry)

    assert first.startswith("APT-")
    assert len(first) == 14
    assert first != second


@pytest.mark.asyncio
async def test_http_gateway_returns_appointment_id(enroll):
    entry = await enroll("client-a", addon_ids=["addon-wash"])
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "appt-123"})

    gateway = HttpBookingGateway("https://booking.example.com/", transport=httpx.MockTransport(handler))

    assert await gateway.create_appointment(entry) == "appt-123"
    assert str(seen[0].url) == "https://booking.example.com/appointments"
    body = json.loads(seen[0].content)
    assert body["client_id"] == "client-a"
    assert body["addon_ids"] == ["addon-wash"]
    assert body["waitlist_entry_id"] == str(entry.id)
    assert body["date_time"] == "2026-03-30T10:00:00Z"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, json={"error": "down"}),
        httpx.Response(201, json={}),
        httpx.Response(201, content=b"not json"),
    ],
)
async def test_http_gateway_failures(enroll, response):
    entry = await enroll("client-a")
    gateway = HttpBookingGateway(
        "https://booking.example.com",
        transport=httpx.MockTransport(lambda request: response),
    )

    with pytest.raises(BookingUnavailableError) as exc_info:
        await gateway.create_appointment(entry)
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_http_gateway_connection_error(enroll):
    entry = await enroll("client-a")

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = HttpBookingGateway("https://booking.example.com", transport=httpx.MockTransport(handler))

    with pytest.raises(BookingUnavailableError):
        await gateway.create_appointment(entry)

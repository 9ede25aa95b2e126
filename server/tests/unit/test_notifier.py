"""Unit tests for notification dispatch."""

import json
from datetime import timedelta

import httpx
import pytest

from conftest import CONFIRMATION_BASE_URL, SLOT, START, RecordingNotifier
from waitlist_engine.core.exceptions import DispatchError
from waitlist_engine.core.observability import REGISTRY
from waitlist_engine.models.waitlist import GroupKey
from waitlist_engine.schemas.waitlist import MessageKind
from waitlist_engine.services.notifier import LoggingNotifier, NotificationDispatcher, WebhookNotifier
from waitlist_engine.services.waitlist_service import WaitlistService

GROUP = GroupKey("svc-haircut", "emp-sam", SLOT)


async def _offered(enroll, service):
    entry = await enroll("client-a")
    outcome = await service.on_slot_freed(*GROUP)
    assert outcome.promoted.id == entry.id
    return outcome.promoted


@pytest.mark.asyncio
async def test_slot_available_message_content(enroll, service, notifier):
    entry = await _offered(enroll, service)

    message = notifier.for_entry(entry.id)[0]
    assert message.kind == MessageKind.SLOT_AVAILABLE
    assert message.client_id == "client-a"
    assert message.requested_date_time == SLOT
    assert message.confirmation_url == f"{CONFIRMATION_BASE_URL}/waitlist/confirm/{entry.id}"
    assert message.confirm_by == START + timedelta(minutes=15)
    assert message.expires_in_minutes == 15


@pytest.mark.asyncio
async def test_slot_available_message_follows_entry_deadline(test_session, dispatcher, notifier, clock):
    """Test the advertised window matches the entry even when the service uses a longer one."""
    service = WaitlistService(
        test_session,
        dispatcher=dispatcher,
        clock=clock,
        confirmation_window=timedelta(minutes=30),
    )
    entry = await service.enroll("client-a", GROUP.service_id, GROUP.employee_id, SLOT, 45)
    await service.on_slot_freed(*GROUP)

    message = notifier.for_entry(entry.id)[0]
    assert message.confirm_by == START + timedelta(minutes=30)
    assert message.expires_in_minutes == 30


@pytest.mark.asyncio
async def test_dispatcher_absorbs_failures(enroll, service):
    entry = await _offered(enroll, service)
    before = REGISTRY.get_sample_value(
        "waitlist_dispatch_failures_total", {"kind": "slot_available"}
    ) or 0.0

    for notifier in (RecordingNotifier(fail=True), RecordingNotifier(explode=True)):
        dispatcher = NotificationDispatcher(notifier, confirmation_base_url=CONFIRMATION_BASE_URL)
        assert await dispatcher.dispatch_slot_available(entry) is False
        assert len(notifier.messages) == 1

    assert REGISTRY.get_sample_value(
        "waitlist_dispatch_failures_total", {"kind": "slot_available"}
    ) == before + 2


@pytest.mark.asyncio
async def test_logging_notifier_always_succeeds(enroll, service):
    entry = await _offered(enroll, service)
    dispatcher = NotificationDispatcher(LoggingNotifier())

    assert await dispatcher.dispatch_slot_available(entry) is True


@pytest.mark.asyncio
async def test_webhook_notifier_posts_json(enroll, service):
    entry = await _offered(enroll, service)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202)

    notifier = WebhookNotifier("https://notify.example.com/hooks/waitlist", transport=httpx.MockTransport(handler))
    dispatcher = NotificationDispatcher(notifier, confirmation_base_url=CONFIRMATION_BASE_URL)

    assert await dispatcher.dispatch_slot_available(entry) is True

    body = json.loads(seen[0].content)
    assert seen[0].method == "POST"
    assert body["kind"] == "slot_available"
    assert body["entry_id"] == str(entry.id)
    assert body["confirmation_url"].endswith(f"/waitlist/confirm/{entry.id}")


@pytest.mark.asyncio
async def test_webhook_notifier_rejects_error_status(enroll, service):
    entry = await _offered(enroll, service)
    notifier = WebhookNotifier(
        "https://notify.example.com/hooks/waitlist",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    dispatcher = NotificationDispatcher(notifier)
    message = dispatcher._message(entry, MessageKind.SLOT_AVAILABLE)

    with pytest.raises(DispatchError) as exc_info:
        await notifier.notify(message)
    assert "503" in exc_info.value.reason

    assert await dispatcher.dispatch_slot_available(entry) is False

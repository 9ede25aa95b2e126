"""Concurrency tests: separate sessions racing on the same group."""

import asyncio

import pytest

from conftest import SLOT, FrozenClock, RecordingNotifier
from waitlist_engine.core.exceptions import InvalidTransitionError
from waitlist_engine.models.waitlist import ActorRole, GroupKey, WaitlistStatus
from waitlist_engine.services.notifier import NotificationDispatcher
from waitlist_engine.services.waitlist_service import WaitlistService

GROUP = GroupKey("svc-haircut", "emp-sam", SLOT)


def _service(session, clock):
    return WaitlistService(session, dispatcher=NotificationDispatcher(RecordingNotifier()), clock=clock)


async def _enroll(session_factory, clock, client_id):
    async with session_factory() as session:
        return await _service(session, clock).enroll(
            client_id, GROUP.service_id, GROUP.employee_id, GROUP.requested_date_time, 30
        )


async def _live_entries(session_factory, clock):
    async with session_factory() as session:
        return await _service(session, clock).store.list_group(GROUP)


@pytest.mark.asyncio
async def test_concurrent_confirms_exactly_one_wins(file_session_factory):
    """Test two confirms of the same offer: one succeeds, the other conflicts."""
    clock = FrozenClock()
    a = await _enroll(file_session_factory, clock, "client-a")
    async with file_session_factory() as session:
        await _service(session, clock).on_slot_freed(*GROUP)

    async def confirm():
        async with file_session_factory() as session:
            return await _service(session, clock).confirm(a.id)

    results = await asyncio.gather(confirm(), confirm(), return_exceptions=True)

    successes = [r for r in results if not isinstance(r, Exception)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], InvalidTransitionError)
    assert successes[0].status == WaitlistStatus.CONFIRMED


@pytest.mark.asyncio
async def test_concurrent_enrollments_get_distinct_positions(file_session_factory):
    clock = FrozenClock()

    entries = await asyncio.gather(
        *(_enroll(file_session_factory, clock, f"client-{i}") for i in range(6))
    )

    assert sorted(e.position for e in entries) == [1, 2, 3, 4, 5, 6]


@pytest.mark.asyncio
async def test_confirm_racing_sweep(file_session_factory):
    """Test a lapsed offer is resolved once, whichever caller writes first."""
    clock = FrozenClock()
    a = await _enroll(file_session_factory, clock, "client-a")
    await _enroll(file_session_factory, clock, "client-b")
    async with file_session_factory() as session:
        await _service(session, clock).on_slot_freed(*GROUP)
    clock.advance(minutes=16)

    async def confirm():
        async with file_session_factory() as session:
            return await _service(session, clock).confirm(a.id)

    async def sweep():
        async with file_session_factory() as session:
            return await _service(session, clock).sweep()

    results = await asyncio.gather(confirm(), sweep(), return_exceptions=True)

    # The confirm always fails: either it expires the entry itself or finds it expired
    assert isinstance(results[0], Exception)
    live = await _live_entries(file_session_factory, clock)
    assert [(e.client_id, e.status) for e in live] == [("client-b", "notified")]


@pytest.mark.asyncio
async def test_concurrent_sweeps_do_not_double_cascade(file_session_factory):
    clock = FrozenClock()
    for client_id in ("client-a", "client-b", "client-c"):
        await _enroll(file_session_factory, clock, client_id)
    async with file_session_factory() as session:
        await _service(session, clock).on_slot_freed(*GROUP)
    clock.advance(minutes=16)

    async def sweep():
        async with file_session_factory() as session:
            return await _service(session, clock).sweep()

    results = await asyncio.gather(sweep(), sweep())

    assert sum(r.processed_count for r in results) == 1
    assert sum(r.promoted_count for r in results) == 1
    live = await _live_entries(file_session_factory, clock)
    assert [(e.client_id, e.status, e.position) for e in live] == [
        ("client-b", "notified", 0),
        ("client-c", "waiting", 1),
    ]


@pytest.mark.asyncio
async def test_concurrent_cancels_keep_positions_contiguous(file_session_factory):
    clock = FrozenClock()
    entries = [await _enroll(file_session_factory, clock, f"client-{i}") for i in range(5)]

    async def cancel(entry):
        async with file_session_factory() as session:
            await _service(session, clock).cancel(entry.id, entry.client_id, ActorRole.CLIENT)

    await asyncio.gather(cancel(entries[0]), cancel(entries[2]), cancel(entries[3]))

    live = await _live_entries(file_session_factory, clock)
    assert [(e.client_id, e.position) for e in live] == [("client-1", 1), ("client-4", 2)]

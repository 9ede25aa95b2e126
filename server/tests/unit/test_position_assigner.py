"""Unit tests for queue position assignment."""

import pytest

from conftest import SLOT
from waitlist_engine.models.waitlist import ActorRole, GroupKey
from waitlist_engine.services.position_assigner import PositionAssigner
from waitlist_engine.services.queue_store import QueueStore

GROUP = GroupKey("svc-haircut", "emp-sam", SLOT)


@pytest.mark.asyncio
async def test_assign_in_empty_group(test_session):
    assigner = PositionAssigner(QueueStore(test_session))

    assert await assigner.assign(GROUP) == 1


@pytest.mark.asyncio
async def test_assign_counts_only_waiting_entries(enroll, service):
    await enroll("client-a")
    await enroll("client-b")
    await service.on_slot_freed(*GROUP)

    assert await service.engine.positions.assign(GROUP) == 2


@pytest.mark.asyncio
async def test_assign_is_scoped_to_group(enroll, service):
    await enroll("client-a")
    await enroll("client-b")

    other = GroupKey(GROUP.service_id, "emp-kim", SLOT)
    assert await service.engine.positions.assign(other) == 1


@pytest.mark.asyncio
async def test_removal_closes_gap(enroll, service):
    """Test leaving from the middle shifts everyone behind up by one."""
    entries = [await enroll(f"client-{i}") for i in range(5)]

    await service.cancel(entries[1].id, "client-1", ActorRole.CLIENT)
    await service.cancel(entries[3].id, "client-3", ActorRole.CLIENT)

    waiting = await service.store.list_group(GROUP)
    assert [(e.client_id, e.position) for e in waiting] == [
        ("client-0", 1),
        ("client-2", 2),
        ("client-4", 3),
    ]


@pytest.mark.asyncio
async def test_removing_last_moves_nobody(enroll, service):
    a = await enroll("client-a")
    b = await enroll("client-b")

    await service.cancel(b.id, "client-b", ActorRole.CLIENT)

    assert (await service.get_entry_or_raise(a.id)).position == 1
    assert (await service.get_entry_or_raise(a.id)).version == 1


@pytest.mark.asyncio
async def test_simultaneous_enrollments_get_distinct_positions(enroll, service):
    """Test entries created at the same instant still rank by arrival."""
    entries = [await enroll(f"client-{i}") for i in range(4)]

    assert len({e.created_at for e in entries}) == 1
    assert [e.position for e in entries] == [1, 2, 3, 4]

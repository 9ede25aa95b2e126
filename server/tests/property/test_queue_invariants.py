"""Property-based tests for waitlist queue invariants."""

import asyncio
from collections import Counter

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from conftest import SLOT, FrozenClock, RecordingNotifier, create_schema
from waitlist_engine.core.exceptions import ConflictError, ValidationError
from waitlist_engine.models.waitlist import ActorRole, GroupKey, WaitlistStatus
from waitlist_engine.services.notifier import NotificationDispatcher
from waitlist_engine.services.waitlist_service import WaitlistService

GROUPS = [
    GroupKey("svc-haircut", "emp-sam", SLOT),
    GroupKey("svc-haircut", "emp-kim", SLOT),
]
CLIENTS = [f"client-{i}" for i in range(5)]

operation = st.one_of(
    st.tuples(st.just("enroll"), st.sampled_from(CLIENTS), st.integers(0, len(GROUPS) - 1)),
    st.tuples(st.just("cancel"), st.sampled_from(CLIENTS), st.integers(0, len(GROUPS) - 1)),
    st.tuples(st.just("confirm"), st.sampled_from(CLIENTS), st.integers(0, len(GROUPS) - 1)),
    st.tuples(st.just("slot_freed"), st.just(None), st.integers(0, len(GROUPS) - 1)),
    st.tuples(st.just("advance"), st.integers(1, 60 * 24 * 3), st.just(0)),
    st.tuples(st.just("sweep"), st.just(None), st.just(0)),
)


async def _check_invariants(service: WaitlistService) -> None:
    for key in GROUPS:
        entries = await service.store.list_group(key, statuses=tuple(WaitlistStatus))
        live = [e for e in entries if not WaitlistStatus(e.status).is_terminal]

        statuses = Counter(e.status for e in live)
        assert statuses[WaitlistStatus.NOTIFIED.value] <= 1

        waiting = sorted(e.position for e in live if e.status == WaitlistStatus.WAITING.value)
        assert waiting == list(range(1, len(waiting) + 1))

        notified = [e for e in live if e.status == WaitlistStatus.NOTIFIED.value]
        assert all(e.position == 0 and e.notification_expires_at is not None for e in notified)

        per_client = Counter(e.client_id for e in live)
        assert all(count == 1 for count in per_client.values())


async def _apply(service: WaitlistService, clock: FrozenClock, op) -> None:
    kind, arg, group_index = op
    key = GROUPS[group_index]

    if kind == "advance":
        clock.advance(minutes=arg)
        return
    if kind == "sweep":
        await service.sweep()
        return
    if kind == "slot_freed":
        await service.on_slot_freed(*key)
        return
    if kind == "enroll":
        await service.enroll(arg, key.service_id, key.employee_id, key.requested_date_time, 30)
        return

    entry = await service.store.find_active_for_client(arg, key)
    if entry is None:
        return
    if kind == "cancel":
        await service.cancel(entry.id, arg, ActorRole.CLIENT)
    else:
        await service.confirm(entry.id)


async def _run(operations) -> None:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)
    clock = FrozenClock()
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    try:
        async with session_factory() as session:
            service = WaitlistService(
                session,
                dispatcher=NotificationDispatcher(RecordingNotifier()),
                clock=clock,
            )
            for op in operations:
                try:
                    await _apply(service, clock, op)
                except (ConflictError, ValidationError):
                    pass
                await _check_invariants(service)

            # A second sweep with nothing changed in between is a no-op
            await service.sweep()
            again = await service.sweep()
            assert again.processed_count == 0
            assert again.promoted_count == 0
    finally:
        await engine.dispose()


@settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(st.lists(operation, max_size=30))
def test_queue_invariants_hold_for_any_operation_sequence(operations):
    """Test at most one offer per group and contiguous waiting positions, always."""
    asyncio.run(_run(operations))


@settings(max_examples=25, deadline=None)
@given(st.lists(st.sampled_from(CLIENTS), min_size=1, max_size=5, unique=True), st.data())
def test_cancellations_keep_relative_order(clients, data):
    """Test cancelling any subset leaves the rest in enrollment order."""
    cancelled = data.draw(st.sets(st.sampled_from(clients)))

    async def scenario():
        engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        await create_schema(engine)
        clock = FrozenClock()
        try:
            async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as session:
                service = WaitlistService(session, dispatcher=NotificationDispatcher(RecordingNotifier()), clock=clock)
                key = GROUPS[0]
                ids = {}
                for client_id in clients:
                    entry = await service.enroll(client_id, key.service_id, key.employee_id, key.requested_date_time, 30)
                    ids[client_id] = entry.id
                for client_id in cancelled:
                    await service.cancel(ids[client_id], client_id, ActorRole.CLIENT)

                remaining = await service.store.list_group(key)
                return [(e.client_id, e.position) for e in remaining]
        finally:
            await engine.dispose()

    expected = [c for c in clients if c not in cancelled]
    assert asyncio.run(scenario()) == [(c, i + 1) for i, c in enumerate(expected)]

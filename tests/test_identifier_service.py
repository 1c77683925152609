import asyncio

import pytest

from refurbline.models.identifier_counter import CounterNamespace, IdentifierCounterAudit
from refurbline.services.identifier_service import IdentifierService
from refurbline.services import qlid
from sqlalchemy import select


async def test_ticks_are_sequential(db):
    service = IdentifierService(db)
    assert await service.next_tick() == 1
    assert await service.next_tick() == 2
    assert await service.next_qlid() == "QLID0000000003"
    assert await service.current_tick() == 3


async def test_namespaces_are_independent(db):
    service = IdentifierService(db)
    await service.next_ticks(5, CounterNamespace.QLID)
    assert await service.next_tick(CounterNamespace.CERTIFICATION) == 1
    assert await service.current_tick(CounterNamespace.QLID) == 5


async def test_next_ticks_reserves_a_contiguous_block(db):
    service = IdentifierService(db)
    await service.next_tick()
    assert await service.next_ticks(3) == [2, 3, 4]


async def test_unknown_namespace_rejected(db):
    with pytest.raises(ValueError):
        await IdentifierService(db).next_tick("INVOICE")


async def test_preview_does_not_consume(db):
    service = IdentifierService(db)
    assert await service.preview_next_qlid() == "QLID0000000001"
    assert await service.preview_next_qlid() == "QLID0000000001"
    assert await service.next_qlid() == "QLID0000000001"


async def test_initialize_moves_forward_only_and_is_audited(db):
    service = IdentifierService(db, actor="admin")
    await service.initialize_counter(CounterNamespace.QLID, 10 ** 10 - 1)
    assert await service.next_qlid() == "QLIDA0000000000"

    with pytest.raises(ValueError):
        await service.initialize_counter(CounterNamespace.QLID, 5)

    audits = (await db.execute(select(IdentifierCounterAudit))).scalars().all()
    assert [(a.operation, a.old_value, a.new_value, a.actor) for a in audits] == [
        ("INITIALIZE", 0, 10 ** 10 - 1, "admin"),
    ]


async def test_concurrent_callers_get_distinct_gap_free_ticks(session_factory):
    async def take_tick():
        async with session_factory() as session:
            tick = await IdentifierService(session).next_tick()
            await session.commit()
            return tick

    ticks = await asyncio.gather(*(take_tick() for _ in range(1000)))

    assert len(set(ticks)) == 1000
    assert sorted(ticks) == list(range(min(ticks), min(ticks) + 1000))


async def test_ticks_continue_across_sessions(session_factory):
    async with session_factory() as session:
        first = await IdentifierService(session).next_tick()
        await session.commit()

    async with session_factory() as session:
        second = await IdentifierService(session).next_tick()
        await session.commit()

    assert second == first + 1
    assert qlid.tick_to_qlid(second) == "QLID0000000002"

from refurbline.models.refurb_job import JobState
from refurbline.services.step_ledger_service import StepLedgerService, split_payload

from helpers import ACTOR, walk_to


def test_split_payload_routes_unknown_keys():
    values = split_payload({"notes": "ok", "measurements": {"v": 4.1}, "imei": "3520", "input_values": {"a": 1}})

    assert values["notes"] == "ok"
    assert values["measurements"] == {"v": 4.1}
    assert values["input_values"] == {"a": 1, "imei": "3520"}
    assert values["photo_urls"] is None


def test_split_payload_empty():
    values = split_payload(None)
    assert set(values.values()) == {None}


async def test_rerecord_replaces_in_place(service, db):
    job = await service.create_job(category="TABLET", actor="intake-1")
    job = await walk_to(service, job, JobState.IN_PROGRESS.value)
    ledger = StepLedgerService(db)

    first = await ledger.record_step(job, "IN_PROGRESS", "screen_test", {"checklist_results": {"dead_pixels": 2}}, ACTOR)
    assert first.revision == 1

    second = await ledger.record_step(
        job, "IN_PROGRESS", "screen_test", {"checklist_results": {"dead_pixels": 0}}, "tech-9", "Nine",
    )
    assert second.id == first.id
    assert second.revision == 2
    assert second.checklist_results == {"dead_pixels": 0}
    assert second.completed_by_name == "Nine"

    assert await ledger.count_steps(job.id, "IN_PROGRESS") == 1
    assert await ledger.get_step(job.id, "IN_PROGRESS", "missing") is None


async def test_steps_are_scoped_by_stage(service, db):
    job = await service.create_job(category="TABLET", actor="intake-1")
    job = await walk_to(service, job, JobState.IN_PROGRESS.value)
    ledger = StepLedgerService(db)

    await ledger.record_step(job, "IN_PROGRESS", "wipe", None, ACTOR)
    await ledger.record_step(job, "DIAGNOSED", "wipe", None, ACTOR)

    assert len(await ledger.list_steps(job.id)) == 2
    assert [s.state_code for s in await ledger.list_steps(job.id, "DIAGNOSED")] == ["DIAGNOSED"]

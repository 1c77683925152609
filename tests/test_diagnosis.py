import pytest

from refurbline.core.errors import (
    AlreadyResolved, IllegalTransition, JobNotEligible, OverrideReasonRequired, RepairsOutstanding,
)
from refurbline.models.diagnosis import RepairStatus
from refurbline.models.refurb_job import JobAction, JobState
from refurbline.services.job_lifecycle_service import JobLifecycleService

from helpers import ACTOR, walk_to


class RecordingConsumer:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def consume(self, qlid, diagnosis_id, parts_used, actor):
        self.calls.append((qlid, diagnosis_id, parts_used, actor))
        if self.fail:
            raise RuntimeError("insufficient stock")


async def diagnosed_job(service):
    job = await service.create_job(category="LAPTOP", actor="intake-1")
    return await walk_to(service, job, JobState.DIAGNOSED.value)


async def test_defect_requires_diagnosable_stage(service):
    job = await service.create_job(category="LAPTOP", actor="intake-1")
    with pytest.raises(JobNotEligible):
        await service.diagnoses.open_diagnosis(job, "bat-01", "MAJOR", ACTOR)


async def test_open_diagnosis_records_stage(service):
    job = await diagnosed_job(service)
    diagnosis = await service.diagnoses.open_diagnosis(
        job, " bat-01 ", "MAJOR", ACTOR, description="Battery swollen",
        parts_required=[{"part_number": "BAT-X1", "quantity": 1}],
    )

    assert diagnosis.defect_code == "BAT-01"
    assert diagnosis.repair_status == RepairStatus.PENDING.value
    assert diagnosis.diagnosed_state == JobState.DIAGNOSED.value
    assert [d.id for d in await service.diagnoses.list_for_job(job.id)] == [diagnosis.id]


async def test_repair_guard_blocks_leaving_repair(service):
    job = await diagnosed_job(service)
    diagnosis = await service.diagnoses.open_diagnosis(job, "SCR-02", "MINOR", ACTOR)
    job = await service.advance(job, JobAction.ADVANCE, expected_state="DIAGNOSED", actor=ACTOR)

    with pytest.raises(RepairsOutstanding):
        await service.advance(job.qlid, JobAction.ADVANCE, expected_state="REPAIR_IN_PROGRESS", actor=ACTOR)

    await service.diagnoses.mark_repaired(diagnosis, ACTOR, parts_used=[{"part_number": "SCR-9"}])
    job = await service.advance(job.qlid, JobAction.ADVANCE, expected_state="REPAIR_IN_PROGRESS", actor=ACTOR)
    assert job.current_state == JobState.REPAIR_COMPLETE.value


async def test_wont_fix_closes_a_diagnosis(service):
    job = await diagnosed_job(service)
    diagnosis = await service.diagnoses.open_diagnosis(job, "CAS-03", "COSMETIC", ACTOR)
    job = await service.advance(job, JobAction.ADVANCE, expected_state="DIAGNOSED", actor=ACTOR)

    await service.diagnoses.mark_wont_fix(diagnosis, ACTOR, reason="scratch within tolerance")
    assert await service.diagnoses.can_leave_repair_stage(job)

    with pytest.raises(AlreadyResolved):
        await service.diagnoses.mark_wont_fix(diagnosis, ACTOR)
    with pytest.raises(AlreadyResolved):
        await service.diagnoses.mark_repaired(diagnosis.id, ACTOR)


async def test_repair_guard_override(service):
    job = await diagnosed_job(service)
    await service.diagnoses.open_diagnosis(job, "KBD-04", "MAJOR", ACTOR)
    job = await service.advance(job, JobAction.ADVANCE, expected_state="DIAGNOSED", actor=ACTOR)

    with pytest.raises(OverrideReasonRequired):
        await service.advance(
            job.qlid, JobAction.ADVANCE, expected_state="REPAIR_IN_PROGRESS", actor="lead-1", override=True,
        )

    job = await service.advance(
        job.qlid, JobAction.ADVANCE, expected_state="REPAIR_IN_PROGRESS", actor="lead-1",
        override=True, reason="keyboard ships separately",
    )
    assert job.current_state == JobState.REPAIR_COMPLETE.value

    last = (await service.get_transitions(job))[-1]
    assert last.is_override is True
    assert last.action == JobAction.ADVANCE.value


async def test_resolve_past_repair_respects_guard(service):
    job = await service.create_job(category="LAPTOP", actor="intake-1")
    job = await walk_to(service, job, JobState.FINAL_TEST_IN_PROGRESS.value)
    await service.diagnoses.open_diagnosis(job, "FAN-05", "MAJOR", ACTOR)
    job = await service.escalate(job, "fan noise under load", expected_state="FINAL_TEST_IN_PROGRESS", actor=ACTOR)

    with pytest.raises(RepairsOutstanding):
        await service.resolve(job.qlid, "FINAL_TEST_IN_PROGRESS", expected_state="ESCALATED", actor="lead-1")

    # Sending the job back to repair is always possible
    job = await service.resolve(job.qlid, "REPAIR_IN_PROGRESS", expected_state="ESCALATED", actor="lead-1")
    assert job.current_state == JobState.REPAIR_IN_PROGRESS.value
    assert job.resume_state is None


async def test_final_test_cannot_pass_with_open_defect(service):
    job = await service.create_job(category="LAPTOP", actor="intake-1")
    job = await walk_to(service, job, JobState.FINAL_TEST_IN_PROGRESS.value)
    diagnosis = await service.diagnoses.open_diagnosis(job, "KBD-02", "MINOR", ACTOR)

    with pytest.raises(RepairsOutstanding):
        await service.advance(job.qlid, JobAction.ADVANCE, expected_state="FINAL_TEST_IN_PROGRESS", actor=ACTOR)
    job = await service.get_job(job.qlid)
    assert job.current_state == JobState.FINAL_TEST_IN_PROGRESS.value

    await service.diagnoses.mark_repaired(diagnosis, ACTOR)
    job = await service.advance(job, JobAction.ADVANCE, expected_state="FINAL_TEST_IN_PROGRESS", actor=ACTOR)
    assert job.current_state == JobState.FINAL_TEST_PASSED.value


async def test_final_test_can_fail_with_open_defect(service):
    job = await service.create_job(category="LAPTOP", actor="intake-1")
    job = await walk_to(service, job, JobState.FINAL_TEST_IN_PROGRESS.value)
    await service.diagnoses.open_diagnosis(job, "KBD-02", "MINOR", ACTOR)

    job = await service.advance(job, JobAction.FAIL, expected_state="FINAL_TEST_IN_PROGRESS", actor=ACTOR)
    assert job.current_state == JobState.FINAL_TEST_FAILED.value
    assert job.attempt_count == 1


async def test_start_repair_only_once(service):
    job = await diagnosed_job(service)
    diagnosis = await service.diagnoses.open_diagnosis(job, "HNG-06", "MINOR", ACTOR)

    diagnosis = await service.diagnoses.start_repair(diagnosis, ACTOR)
    assert diagnosis.repair_status == RepairStatus.IN_PROGRESS.value
    assert diagnosis.repair_started_at is not None

    with pytest.raises(IllegalTransition):
        await service.diagnoses.start_repair(diagnosis.id, ACTOR)


async def test_parts_are_reported_to_consumer(db):
    consumer = RecordingConsumer()
    service = JobLifecycleService(db, parts_consumer=consumer)
    job = await diagnosed_job(service)
    diagnosis = await service.diagnoses.open_diagnosis(job, "BAT-01", "MAJOR", ACTOR)

    parts = [{"part_number": "BAT-X1", "quantity": 1}]
    diagnosis = await service.diagnoses.mark_repaired(diagnosis, "tech-9", parts_used=parts, notes="replaced")

    assert diagnosis.repair_status == RepairStatus.DONE.value
    assert diagnosis.repaired_by == "tech-9"
    assert consumer.calls == [(job.qlid, diagnosis.id, parts, "tech-9")]


async def test_rejected_consumption_undoes_repair(db):
    service = JobLifecycleService(db, parts_consumer=RecordingConsumer(fail=True))
    job = await diagnosed_job(service)
    diagnosis = await service.diagnoses.open_diagnosis(job, "BAT-01", "MAJOR", ACTOR)
    diagnosis_id = diagnosis.id

    with pytest.raises(RuntimeError):
        await service.diagnoses.mark_repaired(diagnosis_id, ACTOR, parts_used=[{"part_number": "BAT-X1"}])

    diagnosis = await service.diagnoses.get_diagnosis(diagnosis_id)
    assert diagnosis.repair_status == RepairStatus.PENDING.value
    assert diagnosis.repaired_at is None

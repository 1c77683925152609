import re
from datetime import date

import pytest

from refurbline.core.errors import AlreadyRevoked, CertificationNotFound, JobNotEligible
from refurbline.models.refurb_job import JobAction, JobState
from refurbline.services.certification_service import (
    CertificationRequest, CertificationService, WarrantyInfo, format_certification_id,
)

from helpers import walk_to


@pytest.fixture
def certifications(db):
    return CertificationService(db)


async def certified_job(service, level="GOOD", **kwargs):
    job = await service.create_job(category="PHONE", actor="intake-1", **kwargs)
    return await walk_to(service, job, JobState.CERTIFIED.value, level=level)


def test_certification_id_format():
    assert format_certification_id(42, date(2026, 10, 17)) == "CRT-20261017-000042"


async def test_issue_requires_success_side(service, certifications):
    job = await service.create_job(category="PHONE", actor="intake-1")
    job = await walk_to(service, job, JobState.FINAL_TEST_PASSED.value)

    with pytest.raises(JobNotEligible):
        await certifications.issue(job, "GOOD", None, "qa-1")


async def test_issue_sets_grade_and_guarantee(service, certifications):
    job = await service.create_job(category="PHONE", actor="intake-1", manufacturer="Acme", serial_number="SN-1")
    job = await walk_to(service, job, JobState.FINAL_TEST_PASSED.value)
    warranty = WarrantyInfo(type="MANUFACTURER", status="ACTIVE", provider="Acme")

    job = await service.advance(
        job, JobAction.ADVANCE, expected_state=JobState.FINAL_TEST_PASSED, actor="qa-1",
        certification=CertificationRequest(level="GOOD", warranty=warranty, actor_name="QA One"),
    )
    certification = await certifications.get_active_for_job(job)

    assert re.fullmatch(r"CRT-\d{8}-000001", certification.certification_id)
    assert certification.certification_level == "GOOD"
    assert certification.final_grade == "B"
    assert certification.guarantee_days == 60
    assert certification.warranty_type == "MANUFACTURER"
    assert certification.serial_number == "SN-1"
    assert job.final_grade == "B"
    assert job.warranty_eligible is True


async def test_issue_is_idempotent(service, certifications):
    job = await certified_job(service, level="EXCELLENT")

    first = await certifications.get_active_for_job(job)
    second = await certifications.issue(job, "FAIR", None, "qa-2")

    assert second.id == first.id
    assert second.certification_level == "EXCELLENT"
    assert len(await certifications.list_for_job(job)) == 1


async def test_not_certified_gets_failing_grade(service, certifications):
    job = await certified_job(service, level="NOT_CERTIFIED")

    assert job.final_grade == "F"
    assert job.warranty_eligible is False


async def test_revoke_is_one_way(service, certifications):
    job = await certified_job(service)
    certification = await certifications.get_active_for_job(job)

    revoked = await certifications.revoke(certification.certification_id, "grading error", "lead-1")
    assert revoked.is_revoked is True
    assert revoked.revoked_reason == "grading error"

    with pytest.raises(AlreadyRevoked):
        await certifications.revoke(certification, "again", "lead-1")

    # A revoked certification no longer blocks a new one
    replacement = await certifications.issue(job, "FAIR", None, "qa-1")
    assert replacement.id != certification.id
    assert (await certifications.get_active_for_job(job)).id == replacement.id
    assert job.final_grade == "C"


async def test_verify_statuses(service, certifications):
    job = await certified_job(service, level="EXCELLENT")
    certification = await certifications.get_active_for_job(job)

    result = await certifications.verify(certification.certification_id.lower())
    assert result["status"] == "VALID"
    assert result["valid"] is True
    assert result["qlid"] == job.qlid

    await certifications.revoke(certification.certification_id, "customer return", "lead-1")
    assert (await certifications.verify(certification.certification_id))["status"] == "REVOKED"

    missing = await certifications.verify("CRT-20000101-999999")
    assert missing == {"certification_id": "CRT-20000101-999999", "status": "NOT_FOUND", "valid": False}

    with pytest.raises(CertificationNotFound):
        await certifications.get_certification("CRT-20000101-999999")


async def test_report_collects_history(service, certifications):
    job = await service.create_job(category="PHONE", actor="intake-1")
    job = await walk_to(service, job, JobState.DIAGNOSED.value)
    diagnosis = await service.diagnoses.open_diagnosis(job, "BAT-01", "MAJOR", "tech-7")
    await service.diagnoses.mark_repaired(diagnosis, "tech-7")
    await service.record_step(job, "battery_health", {"measurements": {"cycles": 12}}, "tech-7")
    job = await walk_to(service, job, JobState.CERTIFIED.value)
    certification = await certifications.get_active_for_job(job)

    report = await certifications.get_report(certification.certification_id)

    assert report.job.id == job.id
    assert [d.defect_code for d in report.diagnoses] == ["BAT-01"]
    assert [c.step_code for c in report.completions] == ["battery_health"]
    assert report.transitions[0].action == "CREATE"
    assert report.transitions[-1].to_state == JobState.CERTIFIED.value


async def test_list_and_stats(service, certifications):
    first = await certifications.get_active_for_job(await certified_job(service))
    await certified_job(service, level="FAIR")
    await certifications.revoke(first, "mislabelled", "lead-1")

    items, total = await certifications.list_certifications(include_revoked=False)
    assert total == 1
    assert items[0].certification_level == "FAIR"

    stats = await certifications.get_stats()
    assert stats["total"] == 2
    assert stats["active"] == 1
    assert stats["revoked"] == 1
    assert stats["issued_today"] == 2
    assert stats["by_level"] == {"FAIR": 1}

"""Test helpers for walking jobs through the lifecycle."""

from refurbline.models.refurb_job import JobAction, JobState
from refurbline.services.certification_service import CertificationRequest
from refurbline.services.job_lifecycle_service import JobLifecycleService


ACTOR = "tech-7"

# Every main-path stage after ASSIGNED moves on with ADVANCE
ADVANCE_FROM = {
    JobState.ASSIGNED.value,
    JobState.IN_PROGRESS.value,
    JobState.SECURITY_PREP_COMPLETE.value,
    JobState.DIAGNOSED.value,
    JobState.REPAIR_IN_PROGRESS.value,
    JobState.REPAIR_COMPLETE.value,
    JobState.FINAL_TEST_IN_PROGRESS.value,
    JobState.FINAL_TEST_PASSED.value,
    JobState.CERTIFIED.value,
}


async def walk_to(service: JobLifecycleService, job, target: str, actor: str = ACTOR, level: str = "GOOD"):
    """
    Advance a job along the main path until it reaches target.

    Entering CERTIFIED issues a certification at the given level.
    """
    if job.current_state == JobState.QUEUED.value:
        job = await service.assign(job, actor, expected_state=JobState.QUEUED.value, actor="lead-1")
    while job.current_state != target:
        assert job.current_state in ADVANCE_FROM, f"cannot walk from {job.current_state} to {target}"
        certification = None
        if job.current_state == JobState.FINAL_TEST_PASSED.value:
            certification = CertificationRequest(level=level)
        job = await service.advance(
            job, JobAction.ADVANCE.value, expected_state=job.current_state, actor=actor,
            certification=certification,
        )
    return job


SUPERVISOR_HEADERS = {"X-Actor-Id": "lead-1", "X-Actor-Name": "Lead One", "X-Actor-Role": "SUPERVISOR"}
TECH_HEADERS = {"X-Actor-Id": ACTOR, "X-Actor-Name": "Tech Seven", "X-Actor-Role": "TECHNICIAN"}

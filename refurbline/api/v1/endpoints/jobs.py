"""API endpoints for refurbishment jobs: intake, transitions and the step ledger."""
from typing import Optional, List

from fastapi import APIRouter, Query, status

from refurbline.api.deps import DB, CurrentActor, OverrideActor
from refurbline.models.refurb_job import RefurbJob, JobState, ProductCategory, JobPriority
from refurbline.schemas.refurb_job import (
    JobCreate, JobResponse, JobListResponse, JobStats, LabelFields,
    # Transitions
    JobAssign, JobTransitionRequest, JobEscapeRequest, JobResolve, JobOverride,
    TransitionResponse,
    # Step ledger
    StepRecord, StepCompletionResponse,
)
from refurbline.services.concurrency import retry_on_stale_state
from refurbline.services.job_lifecycle_service import JobLifecycleService
from refurbline.services.job_state_machine import get_allowed_actions


router = APIRouter()


def _job_response(job: RefurbJob) -> JobResponse:
    response = JobResponse.model_validate(job)
    response.allowed_actions = get_allowed_actions(job.current_state, job.attempt_count, job.max_attempts)
    return response


# ==================== Job Endpoints ====================

@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(data: JobCreate, db: DB, actor: CurrentActor):
    """Create a job in QUEUED and issue its QLID."""
    service = JobLifecycleService(db)
    job = await service.create_job(
        category=data.category.value,
        actor=actor.id,
        pallet_id=data.pallet_id,
        manufacturer=data.manufacturer,
        model=data.model,
        serial_number=data.serial_number,
        priority=data.priority.value,
        max_attempts=data.max_attempts,
        notes=data.notes,
        actor_name=actor.name,
    )
    await db.commit()
    return _job_response(job)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    db: DB,
    state: Optional[JobState] = None,
    technician_id: Optional[str] = None,
    category: Optional[ProductCategory] = None,
    priority: Optional[JobPriority] = None,
    pallet_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
):
    """List jobs in work-queue order."""
    jobs, total = await JobLifecycleService(db).list_jobs(
        state=state,
        technician_id=technician_id,
        category=category,
        priority=priority,
        pallet_id=pallet_id,
        skip=skip,
        limit=limit,
    )
    return JobListResponse(items=[_job_response(job) for job in jobs], total=total, skip=skip, limit=limit)


@router.get("/stats", response_model=JobStats)
async def get_job_stats(db: DB):
    """Work-queue statistics."""
    return await JobLifecycleService(db).get_stats()


@router.get("/{identifier}", response_model=JobResponse)
async def get_job(identifier: str, db: DB):
    """Get a job by QLID or container scan payload."""
    job = await JobLifecycleService(db).get_job(identifier)
    return _job_response(job)


@router.get("/{identifier}/history", response_model=List[TransitionResponse])
async def get_job_history(identifier: str, db: DB):
    """Full transition log of a job, oldest first."""
    return await JobLifecycleService(db).get_transitions(identifier)


@router.get("/{identifier}/allowed-actions", response_model=List[str])
async def get_allowed_job_actions(identifier: str, db: DB):
    return await JobLifecycleService(db).allowed_actions(identifier)


@router.get("/{identifier}/label", response_model=LabelFields)
async def get_label_fields(identifier: str, db: DB, container_id: Optional[str] = None):
    """Fields for printing the item label."""
    return await JobLifecycleService(db).get_label_fields(identifier, container_id)


# ==================== Transition Endpoints ====================

@router.post("/{identifier}/assign", response_model=JobResponse)
async def assign_job(identifier: str, data: JobAssign, db: DB, actor: CurrentActor):
    """Assign or reassign a technician."""
    job = await JobLifecycleService(db).assign(
        identifier,
        technician_id=data.technician_id,
        expected_state=data.expected_state,
        actor=actor.id,
        technician_name=data.technician_name,
        notes=data.notes,
        actor_name=actor.name,
    )
    await db.commit()
    return _job_response(job)


@router.post("/{identifier}/transition", response_model=JobResponse)
async def transition_job(identifier: str, data: JobTransitionRequest, db: DB, actor: CurrentActor):
    """
    Apply ADVANCE, FAIL, RETRY or DISPOSE.

    A certification can be attached when the transition lands in
    CERTIFIED or COMPLETE.
    """
    job = await JobLifecycleService(db).advance(
        identifier,
        action=data.action,
        expected_state=data.expected_state,
        actor=actor.id,
        reason=data.reason,
        notes=data.notes,
        override=data.override,
        disposition=data.disposition,
        certification=data.certification.to_request(actor.name) if data.certification else None,
        actor_name=actor.name,
    )
    await db.commit()
    return _job_response(job)


@router.post("/{identifier}/escalate", response_model=JobResponse)
async def escalate_job(identifier: str, data: JobEscapeRequest, db: DB, actor: CurrentActor):
    """Escalate a job for supervisor attention."""
    service = JobLifecycleService(db)
    if data.expected_state is not None:
        job = await service.escalate(identifier, data.reason, data.expected_state, actor.id, actor.name)
    else:
        async def escalate_current():
            current = await service.get_job(identifier)
            return await service.escalate(current, data.reason, current.current_state, actor.id, actor.name)

        job = await retry_on_stale_state(escalate_current)
    await db.commit()
    return _job_response(job)


@router.post("/{identifier}/block", response_model=JobResponse)
async def block_job(identifier: str, data: JobEscapeRequest, db: DB, actor: CurrentActor):
    """Block a job (missing parts, waiting on a customer, ...)."""
    service = JobLifecycleService(db)
    if data.expected_state is not None:
        job = await service.block(identifier, data.reason, data.expected_state, actor.id, actor.name)
    else:
        async def block_current():
            current = await service.get_job(identifier)
            return await service.block(current, data.reason, current.current_state, actor.id, actor.name)

        job = await retry_on_stale_state(block_current)
    await db.commit()
    return _job_response(job)


@router.post("/{identifier}/resolve", response_model=JobResponse)
async def resolve_job(identifier: str, data: JobResolve, db: DB, actor: CurrentActor):
    """Return a blocked or escalated job to work."""
    job = await JobLifecycleService(db).resolve(
        identifier,
        target_state=data.target_state,
        expected_state=data.expected_state,
        actor=actor.id,
        reason=data.reason,
        override=data.override,
        certification=data.certification.to_request(actor.name) if data.certification else None,
        actor_name=actor.name,
    )
    await db.commit()
    return _job_response(job)


@router.post("/{identifier}/override", response_model=JobResponse)
async def override_job(identifier: str, data: JobOverride, db: DB, actor: OverrideActor):
    """Force a job into a working stage. Supervisor roles only."""
    job = await JobLifecycleService(db).override(
        identifier,
        target_state=data.target_state,
        expected_state=data.expected_state,
        actor=actor.id,
        reason=data.reason,
        certification=data.certification.to_request(actor.name) if data.certification else None,
        actor_name=actor.name,
    )
    await db.commit()
    return _job_response(job)


# ==================== Step Ledger Endpoints ====================

@router.post("/{identifier}/steps", response_model=StepCompletionResponse, status_code=status.HTTP_201_CREATED)
async def record_step(identifier: str, data: StepRecord, db: DB, actor: CurrentActor):
    """Record (or replace) the operator data for a step."""
    completion = await JobLifecycleService(db).record_step(
        identifier,
        step_code=data.step_code,
        payload=data.payload(),
        actor=actor.id,
        state_code=data.state_code,
        actor_name=actor.name,
    )
    await db.commit()
    return completion


@router.get("/{identifier}/steps", response_model=List[StepCompletionResponse])
async def list_steps(identifier: str, db: DB, state_code: Optional[JobState] = None):
    return await JobLifecycleService(db).list_steps(identifier, state_code)

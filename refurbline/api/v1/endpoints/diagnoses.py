"""API endpoints for defects found on a job and their repairs."""
from typing import List
from uuid import UUID

from fastapi import APIRouter, status

from refurbline.api.deps import DB, CurrentActor
from refurbline.schemas.diagnosis import (
    DiagnosisCreate, DiagnosisRepaired, DiagnosisWontFix, DiagnosisResponse
)
from refurbline.services.diagnosis_service import DiagnosisService
from refurbline.services.job_lifecycle_service import JobLifecycleService


router = APIRouter()


@router.post("/job/{identifier}", response_model=DiagnosisResponse, status_code=status.HTTP_201_CREATED)
async def open_diagnosis(identifier: str, data: DiagnosisCreate, db: DB, actor: CurrentActor):
    """Record a defect on a job in a diagnosis, repair or test stage."""
    job = await JobLifecycleService(db).get_job(identifier)
    diagnosis = await DiagnosisService(db).open_diagnosis(
        job,
        defect_code=data.defect_code,
        severity=data.severity,
        actor=actor.id,
        description=data.description,
        measurements=data.measurements,
        photo_urls=data.photo_urls,
        repair_action=data.repair_action,
        parts_required=data.parts_required,
    )
    await db.commit()
    return diagnosis


@router.get("/job/{identifier}", response_model=List[DiagnosisResponse])
async def list_job_diagnoses(identifier: str, db: DB):
    job = await JobLifecycleService(db).get_job(identifier)
    return await DiagnosisService(db).list_for_job(job.id)


@router.get("/{diagnosis_id}", response_model=DiagnosisResponse)
async def get_diagnosis(diagnosis_id: UUID, db: DB):
    return await DiagnosisService(db).get_diagnosis(diagnosis_id)


@router.post("/{diagnosis_id}/start", response_model=DiagnosisResponse)
async def start_repair(diagnosis_id: UUID, db: DB, actor: CurrentActor):
    diagnosis = await DiagnosisService(db).start_repair(diagnosis_id, actor.id)
    await db.commit()
    return diagnosis


@router.post("/{diagnosis_id}/repaired", response_model=DiagnosisResponse)
async def mark_repaired(diagnosis_id: UUID, data: DiagnosisRepaired, db: DB, actor: CurrentActor):
    """Close a defect as repaired and report the parts used."""
    diagnosis = await DiagnosisService(db).mark_repaired(
        diagnosis_id, actor.id, parts_used=data.parts_used, notes=data.notes,
    )
    await db.commit()
    return diagnosis


@router.post("/{diagnosis_id}/wont-fix", response_model=DiagnosisResponse)
async def mark_wont_fix(diagnosis_id: UUID, data: DiagnosisWontFix, db: DB, actor: CurrentActor):
    """Close a defect without repairing it."""
    diagnosis = await DiagnosisService(db).mark_wont_fix(diagnosis_id, actor.id, reason=data.reason)
    await db.commit()
    return diagnosis

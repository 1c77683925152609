"""API endpoints for certifications."""
from typing import Optional, List

from fastapi import APIRouter, Query, status

from refurbline.api.deps import DB, CurrentActor
from refurbline.models.certification import CertificationLevel
from refurbline.schemas.certification import (
    CertificationIssue, CertificationRevoke, CertificationResponse,
    CertificationListResponse, CertificationVerifyResponse, CertificationStats,
)
from refurbline.schemas.report import CertificationReportResponse
from refurbline.services.certification_service import CertificationService
from refurbline.services.job_lifecycle_service import JobLifecycleService


router = APIRouter()


@router.post("/job/{identifier}", response_model=CertificationResponse, status_code=status.HTTP_201_CREATED)
async def issue_certification(identifier: str, data: CertificationIssue, db: DB, actor: CurrentActor):
    """
    Issue a certification for a CERTIFIED or COMPLETE job.

    Re-issuing returns the job's active certification unchanged.
    """
    job = await JobLifecycleService(db).get_job(identifier)
    request = data.to_request(actor.name)
    certification = await CertificationService(db).issue(
        job, request.level, request.warranty, actor.id, request.actor_name,
    )
    await db.commit()
    return certification


@router.get("/job/{identifier}", response_model=List[CertificationResponse])
async def list_job_certifications(identifier: str, db: DB):
    """All certifications of a job, revoked ones included."""
    job = await JobLifecycleService(db).get_job(identifier)
    return await CertificationService(db).list_for_job(job)


@router.get("", response_model=CertificationListResponse)
async def list_certifications(
    db: DB,
    qlid: Optional[str] = None,
    level: Optional[CertificationLevel] = None,
    include_revoked: bool = True,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
):
    items, total = await CertificationService(db).list_certifications(
        qlid=qlid, level=level, include_revoked=include_revoked, skip=skip, limit=limit,
    )
    return CertificationListResponse(
        items=[CertificationResponse.model_validate(item) for item in items],
        total=total, skip=skip, limit=limit,
    )


@router.get("/stats", response_model=CertificationStats)
async def get_certification_stats(db: DB):
    return await CertificationService(db).get_stats()


@router.get("/verify/{certification_id}", response_model=CertificationVerifyResponse)
async def verify_certification(certification_id: str, db: DB):
    """Public verification; unknown ids answer NOT_FOUND rather than 404."""
    return await CertificationService(db).verify(certification_id)


@router.get("/{certification_id}", response_model=CertificationResponse)
async def get_certification(certification_id: str, db: DB):
    return await CertificationService(db).get_certification(certification_id)


@router.get("/{certification_id}/report", response_model=CertificationReportResponse)
async def get_certification_report(certification_id: str, db: DB):
    """Certificate with the job's diagnoses, step data and transitions."""
    report = await CertificationService(db).get_report(certification_id)
    return CertificationReportResponse.model_validate(report, from_attributes=True)


@router.post("/{certification_id}/revoke", response_model=CertificationResponse)
async def revoke_certification(certification_id: str, data: CertificationRevoke, db: DB, actor: CurrentActor):
    certification = await CertificationService(db).revoke(certification_id, data.reason, actor.id)
    await db.commit()
    return certification

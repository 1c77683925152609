"""
Certification Issuer

ISSUE RULES:
- Job must be CERTIFIED or COMPLETE (the success side of the lifecycle)
- At most one active (non-revoked) certification per job; re-issuing
  returns the existing one
- Identifier drawn from the CERTIFICATION counter, independent of QLIDs:
      CRT-20261017-000042
- Level maps to the job's final grade via CERT_TO_GRADE

REVOCATION:
- One-way; a second revoke raises AlreadyRevoked
- The row is flagged, never deleted; the job keeps its grade history
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from refurbline.config import settings
from refurbline.core.enum_utils import get_enum_value
from refurbline.core.errors import AlreadyRevoked, CertificationNotFound, JobNotEligible
from refurbline.models.certification import Certification, CertificationLevel, WarrantyType, WarrantyStatus
from refurbline.models.diagnosis import JobDiagnosis
from refurbline.models.identifier_counter import CounterNamespace
from refurbline.models.refurb_job import RefurbJob, JobTransition, FinalGrade
from refurbline.models.step_completion import StepCompletion
from refurbline.services.identifier_service import IdentifierService
from refurbline.services.job_state_machine import SUCCESS_STATES


logger = logging.getLogger(__name__)


# Level -> final grade
CERT_TO_GRADE: Dict[str, str] = {
    CertificationLevel.EXCELLENT.value: FinalGrade.A.value,
    CertificationLevel.GOOD.value: FinalGrade.B.value,
    CertificationLevel.FAIR.value: FinalGrade.C.value,
    CertificationLevel.NOT_CERTIFIED.value: FinalGrade.F.value,
}

# Level -> refurbisher guarantee days
GUARANTEE_DAYS_BY_LEVEL: Dict[str, int] = {
    CertificationLevel.EXCELLENT.value: 90,
    CertificationLevel.GOOD.value: 60,
    CertificationLevel.FAIR.value: 30,
    CertificationLevel.NOT_CERTIFIED.value: 0,
}


@dataclass
class WarrantyInfo:
    """Device warranty as verified by the certifier."""
    type: str = WarrantyType.NONE.value
    status: str = WarrantyStatus.UNKNOWN.value
    provider: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    coverage: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class CertificationRequest:
    """Issue request carried by a transition into CERTIFIED/COMPLETE."""
    level: Union[str, CertificationLevel]
    warranty: Optional[WarrantyInfo] = None
    actor_name: Optional[str] = None


@dataclass
class CertificationReport:
    """Everything the report renderer needs, read-only."""
    certification: Certification
    job: RefurbJob
    diagnoses: List[JobDiagnosis] = field(default_factory=list)
    completions: List[StepCompletion] = field(default_factory=list)
    transitions: List[JobTransition] = field(default_factory=list)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they are stored in UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def format_certification_id(tick: int, issued_on: Optional[date] = None) -> str:
    issued_on = issued_on or datetime.now(timezone.utc).date()
    return f"{settings.CERTIFICATION_ID_PREFIX}-{issued_on:%Y%m%d}-{tick:06d}"


class CertificationService:
    """Service for issuing, revoking and looking up certifications."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== Lookup ====================

    async def get_certification(self, certification_id: str, for_update: bool = False) -> Certification:
        """
        Get a certification by its own identifier.

        Raises:
            CertificationNotFound: If the id does not exist
        """
        query = select(Certification).where(Certification.certification_id == certification_id.strip().upper())
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        certification = result.scalar_one_or_none()
        if certification is None:
            raise CertificationNotFound(
                f"Certification {certification_id} not found", certification_id=certification_id
            )
        return certification

    async def get_active_for_job(self, job: Union[RefurbJob, uuid.UUID]) -> Optional[Certification]:
        """Reverse lookup: the job never stores its certification id."""
        job_id = job.id if isinstance(job, RefurbJob) else job
        result = await self.db.execute(
            select(Certification)
            .where(Certification.job_id == job_id, Certification.is_revoked.is_(False))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_for_job(self, job: RefurbJob) -> List[Certification]:
        result = await self.db.execute(
            select(Certification)
            .where(Certification.job_id == job.id)
            .order_by(Certification.certified_at)
        )
        return list(result.scalars().all())

    # ==================== Issue / Revoke ====================

    async def issue(
        self,
        job: RefurbJob,
        level: Union[str, CertificationLevel],
        warranty: Optional[WarrantyInfo],
        actor: str,
        actor_name: Optional[str] = None,
    ) -> Certification:
        """
        Issue a certification for a job, or return the active one.

        Args:
            job: Job on the success side of the lifecycle
            level: CertificationLevel
            warranty: Optional device warranty details
            actor: Certifier id

        Returns:
            The new or already-active certification

        Raises:
            JobNotEligible: If the job is not CERTIFIED or COMPLETE
        """
        level = get_enum_value(level)
        if level not in CERT_TO_GRADE:
            raise ValueError(f"Invalid certification level '{level}'")

        # Lock the job row; concurrent issuers for the same job serialize here
        result = await self.db.execute(
            select(RefurbJob)
            .where(RefurbJob.id == job.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        job = result.scalar_one()
        job_id = job.id

        if job.current_state not in SUCCESS_STATES:
            raise JobNotEligible(
                f"Job {job.qlid} is in '{job.current_state}'; certification requires "
                f"{' or '.join(sorted(SUCCESS_STATES))}",
                qlid=job.qlid, current_state=job.current_state,
            )

        existing = await self.get_active_for_job(job)
        if existing is not None:
            if existing.certification_level != level:
                logger.warning(
                    "Job %s already certified %s as %s; ignoring re-issue as %s",
                    job.qlid, existing.certification_id, existing.certification_level, level,
                )
            return existing

        tick = await IdentifierService(self.db, actor=actor).next_tick(CounterNamespace.CERTIFICATION)
        now = datetime.now(timezone.utc)
        warranty = warranty or WarrantyInfo()
        guarantee_days = GUARANTEE_DAYS_BY_LEVEL[level]
        grade = CERT_TO_GRADE[level]

        certification = Certification(
            certification_id=format_certification_id(tick, now.date()),
            job_id=job.id,
            qlid=job.qlid,
            category=job.category,
            manufacturer=job.manufacturer,
            model=job.model,
            serial_number=job.serial_number,
            certification_level=level,
            final_grade=grade,
            warranty_type=get_enum_value(warranty.type),
            warranty_status=get_enum_value(warranty.status),
            warranty_provider=warranty.provider,
            warranty_start_date=warranty.start_date,
            warranty_end_date=warranty.end_date,
            warranty_coverage=warranty.coverage,
            warranty_notes=warranty.notes,
            guarantee_days=guarantee_days,
            guarantee_expires_at=now + timedelta(days=guarantee_days) if guarantee_days else None,
            certified_by=actor,
            certified_by_name=actor_name,
            certified_at=now,
            valid_until=now + timedelta(days=settings.CERTIFICATION_VALIDITY_DAYS),
            is_revoked=False,
        )

        try:
            async with self.db.begin_nested():
                self.db.add(certification)
                job.final_grade = grade
                job.warranty_eligible = level != CertificationLevel.NOT_CERTIFIED.value
        except IntegrityError:
            # Lost a race on the active-certification index
            existing = await self.get_active_for_job(job_id)
            if existing is None:
                raise
            return existing

        logger.info(
            "Certification %s issued for %s: %s (grade %s) by %s",
            certification.certification_id, job.qlid, level, grade, actor,
        )
        return certification

    async def revoke(
        self,
        certification: Union[Certification, str],
        reason: str,
        actor: str,
    ) -> Certification:
        """
        Revoke a certification. One-way; the record is kept.

        Raises:
            AlreadyRevoked: If the certification was already revoked
        """
        certification_id = (
            certification.certification_id if isinstance(certification, Certification) else certification
        )
        certification = await self.get_certification(certification_id, for_update=True)

        if certification.is_revoked:
            raise AlreadyRevoked(
                f"Certification {certification.certification_id} was already revoked",
                certification_id=certification.certification_id,
            )

        certification.is_revoked = True
        certification.revoked_at = datetime.now(timezone.utc)
        certification.revoked_by = actor
        certification.revoked_reason = reason
        await self.db.flush()

        logger.warning(
            "Certification %s for %s revoked by %s: %s",
            certification.certification_id, certification.qlid, actor, reason,
        )
        return certification

    # ==================== Verification / Reporting ====================

    async def verify(self, certification_id: str) -> Dict[str, Any]:
        """
        Public verification of a certification id.

        Returns:
            Dict with status VALID, EXPIRED, REVOKED or NOT_FOUND
        """
        try:
            certification = await self.get_certification(certification_id)
        except CertificationNotFound:
            return {"certification_id": certification_id, "status": "NOT_FOUND", "valid": False}

        valid_until = as_utc(certification.valid_until)
        if certification.is_revoked:
            status = "REVOKED"
        elif valid_until is not None and valid_until < datetime.now(timezone.utc):
            status = "EXPIRED"
        else:
            status = "VALID"

        return {
            "certification_id": certification.certification_id,
            "status": status,
            "valid": status == "VALID",
            "qlid": certification.qlid,
            "category": certification.category,
            "manufacturer": certification.manufacturer,
            "model": certification.model,
            "certification_level": certification.certification_level,
            "final_grade": certification.final_grade,
            "certified_at": as_utc(certification.certified_at),
            "valid_until": valid_until,
            "revoked_at": as_utc(certification.revoked_at),
            "revoked_reason": certification.revoked_reason,
        }

    async def get_report(self, certification_id: str) -> CertificationReport:
        """Collect the certification and its job history for the report renderer."""
        certification = await self.get_certification(certification_id)

        job = (await self.db.execute(
            select(RefurbJob).where(RefurbJob.id == certification.job_id)
        )).scalar_one()
        diagnoses = (await self.db.execute(
            select(JobDiagnosis).where(JobDiagnosis.job_id == job.id).order_by(JobDiagnosis.diagnosed_at)
        )).scalars().all()
        completions = (await self.db.execute(
            select(StepCompletion).where(StepCompletion.job_id == job.id).order_by(StepCompletion.completed_at)
        )).scalars().all()
        transitions = (await self.db.execute(
            select(JobTransition).where(JobTransition.job_id == job.id).order_by(JobTransition.sequence)
        )).scalars().all()

        return CertificationReport(
            certification=certification,
            job=job,
            diagnoses=list(diagnoses),
            completions=list(completions),
            transitions=list(transitions),
        )

    async def list_certifications(
        self,
        qlid: Optional[str] = None,
        level: Optional[Union[str, CertificationLevel]] = None,
        include_revoked: bool = True,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Certification], int]:
        """List certifications with pagination, newest first."""
        query = select(Certification)
        if qlid:
            query = query.where(Certification.qlid == qlid.strip().upper())
        if level:
            query = query.where(Certification.certification_level == get_enum_value(level))
        if not include_revoked:
            query = query.where(Certification.is_revoked.is_(False))

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar_one()

        query = query.order_by(Certification.certified_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_stats(self) -> Dict[str, Any]:
        result = await self.db.execute(
            select(Certification.certification_level, func.count(Certification.id))
            .where(Certification.is_revoked.is_(False))
            .group_by(Certification.certification_level)
        )
        by_level = {level: count for level, count in result.all()}

        revoked = (await self.db.execute(
            select(func.count(Certification.id)).where(Certification.is_revoked.is_(True))
        )).scalar_one()

        today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        issued_today = (await self.db.execute(
            select(func.count(Certification.id)).where(Certification.certified_at >= today_start)
        )).scalar_one()

        return {
            "total": sum(by_level.values()) + revoked,
            "active": sum(by_level.values()),
            "revoked": revoked,
            "issued_today": issued_today,
            "by_level": by_level,
        }

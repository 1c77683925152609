"""
Diagnosis / Repair Tracker

Defects are opened against a job while it is being diagnosed, repaired or
tested, and each follows its own repair lifecycle:

    PENDING → IN_PROGRESS → DONE
       └──────────┴──────→ WONT_FIX

can_leave_repair_stage() is the precondition JobLifecycleService checks
before a job moves past the repair stage.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from refurbline.core.enum_utils import get_enum_value
from refurbline.core.errors import AlreadyResolved, DiagnosisNotFound, IllegalTransition, JobNotEligible
from refurbline.models.diagnosis import (
    JobDiagnosis, DiagnosisSeverity, RepairStatus, OPEN_REPAIR_STATUSES, CLOSED_REPAIR_STATUSES
)
from refurbline.models.refurb_job import RefurbJob, JobState
from refurbline.services.parts_notifier import PartsConsumer, LoggingPartsConsumer


logger = logging.getLogger(__name__)


# Job stages in which a defect may be recorded
DIAGNOSABLE_STATES = frozenset({
    JobState.SECURITY_PREP_COMPLETE.value,
    JobState.DIAGNOSED.value,
    JobState.REPAIR_IN_PROGRESS.value,
    JobState.FINAL_TEST_IN_PROGRESS.value,
    JobState.FINAL_TEST_FAILED.value,
})


class DiagnosisService:
    """Service for recording defects and their repairs."""

    def __init__(self, db: AsyncSession, parts_consumer: Optional[PartsConsumer] = None):
        self.db = db
        self.parts_consumer = parts_consumer or LoggingPartsConsumer()

    async def get_diagnosis(self, diagnosis_id: uuid.UUID, for_update: bool = False) -> JobDiagnosis:
        """
        Get a diagnosis by id.

        Raises:
            DiagnosisNotFound: If the id does not exist
        """
        query = select(JobDiagnosis).where(JobDiagnosis.id == diagnosis_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        diagnosis = result.scalar_one_or_none()
        if diagnosis is None:
            raise DiagnosisNotFound(f"Diagnosis {diagnosis_id} not found", diagnosis_id=str(diagnosis_id))
        return diagnosis

    async def _lock(self, diagnosis: Union[JobDiagnosis, uuid.UUID]) -> JobDiagnosis:
        diagnosis_id = diagnosis.id if isinstance(diagnosis, JobDiagnosis) else diagnosis
        return await self.get_diagnosis(diagnosis_id, for_update=True)

    async def open_diagnosis(
        self,
        job: RefurbJob,
        defect_code: str,
        severity: Union[str, DiagnosisSeverity],
        actor: str,
        description: Optional[str] = None,
        measurements: Optional[dict] = None,
        photo_urls: Optional[List[str]] = None,
        repair_action: Optional[str] = None,
        parts_required: Optional[List[dict]] = None,
    ) -> JobDiagnosis:
        """
        Record a defect found on a job.

        Raises:
            JobNotEligible: If the job is not in a diagnosis/repair/test stage
        """
        # Read the stage under the job row lock so it cannot move past repair meanwhile
        result = await self.db.execute(
            select(RefurbJob.current_state).where(RefurbJob.id == job.id).with_for_update()
        )
        current_state = result.scalar_one()
        if current_state not in DIAGNOSABLE_STATES:
            raise JobNotEligible(
                f"Cannot record a defect on {job.qlid} in '{current_state}'. "
                f"Allowed stages: {', '.join(sorted(DIAGNOSABLE_STATES))}",
                qlid=job.qlid, current_state=current_state,
            )

        diagnosis = JobDiagnosis(
            job_id=job.id,
            qlid=job.qlid,
            defect_code=defect_code.strip().upper(),
            severity=get_enum_value(severity),
            description=description,
            measurements=measurements,
            photo_urls=photo_urls,
            diagnosed_state=current_state,
            diagnosed_by=actor,
            diagnosed_at=datetime.now(timezone.utc),
            repair_action=repair_action,
            parts_required=parts_required,
            repair_status=RepairStatus.PENDING.value,
        )
        self.db.add(diagnosis)
        await self.db.flush()

        logger.info("Defect %s (%s) opened on %s by %s", diagnosis.defect_code, diagnosis.severity, job.qlid, actor)
        return diagnosis

    async def start_repair(self, diagnosis: Union[JobDiagnosis, uuid.UUID], actor: str) -> JobDiagnosis:
        """
        Move a diagnosis from PENDING to IN_PROGRESS.

        Raises:
            AlreadyResolved: If the diagnosis is DONE or WONT_FIX
            IllegalTransition: If the repair was already started
        """
        diagnosis = await self._lock(diagnosis)
        self._ensure_open(diagnosis)
        if diagnosis.repair_status != RepairStatus.PENDING.value:
            raise IllegalTransition(
                f"Repair of {diagnosis.defect_code} on {diagnosis.qlid} is already in progress",
                current_state=diagnosis.repair_status,
                target_state=RepairStatus.IN_PROGRESS.value,
            )

        diagnosis.repair_status = RepairStatus.IN_PROGRESS.value
        diagnosis.repair_started_at = datetime.now(timezone.utc)
        diagnosis.repaired_by = actor
        await self.db.flush()
        return diagnosis

    async def mark_repaired(
        self,
        diagnosis: Union[JobDiagnosis, uuid.UUID],
        actor: str,
        parts_used: Optional[List[dict]] = None,
        notes: Optional[str] = None,
    ) -> JobDiagnosis:
        """
        Close a diagnosis as repaired and report the parts consumed.

        Raises:
            AlreadyResolved: If the diagnosis was already closed
        """
        # The consumer runs inside the savepoint so a rejected consumption undoes the repair
        async with self.db.begin_nested():
            diagnosis = await self._lock(diagnosis)
            self._ensure_open(diagnosis)

            now = datetime.now(timezone.utc)
            diagnosis.repair_status = RepairStatus.DONE.value
            diagnosis.repair_started_at = diagnosis.repair_started_at or now
            diagnosis.repaired_by = actor
            diagnosis.repaired_at = now
            diagnosis.parts_used = parts_used or []
            diagnosis.resolution_notes = notes
            await self.db.flush()

            await self.parts_consumer.consume(diagnosis.qlid, diagnosis.id, diagnosis.parts_used, actor)

        logger.info("Defect %s on %s repaired by %s", diagnosis.defect_code, diagnosis.qlid, actor)
        return diagnosis

    async def mark_wont_fix(
        self,
        diagnosis: Union[JobDiagnosis, uuid.UUID],
        actor: str,
        reason: Optional[str] = None,
    ) -> JobDiagnosis:
        """
        Close a diagnosis without repairing it.

        Raises:
            AlreadyResolved: If the diagnosis was already closed
        """
        diagnosis = await self._lock(diagnosis)
        self._ensure_open(diagnosis)

        diagnosis.repair_status = RepairStatus.WONT_FIX.value
        diagnosis.repaired_by = actor
        diagnosis.repaired_at = datetime.now(timezone.utc)
        diagnosis.resolution_notes = reason
        await self.db.flush()

        logger.info("Defect %s on %s closed as WONT_FIX by %s", diagnosis.defect_code, diagnosis.qlid, actor)
        return diagnosis

    def _ensure_open(self, diagnosis: JobDiagnosis) -> None:
        if diagnosis.repair_status in CLOSED_REPAIR_STATUSES:
            raise AlreadyResolved(
                f"Diagnosis {diagnosis.defect_code} on {diagnosis.qlid} is already {diagnosis.repair_status}",
                diagnosis_id=str(diagnosis.id),
                repair_status=diagnosis.repair_status,
            )

    async def list_for_job(self, job_id: uuid.UUID) -> List[JobDiagnosis]:
        result = await self.db.execute(
            select(JobDiagnosis)
            .where(JobDiagnosis.job_id == job_id)
            .order_by(JobDiagnosis.diagnosed_at)
        )
        return list(result.scalars().all())

    async def count_open(self, job_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.count(JobDiagnosis.id)).where(
                JobDiagnosis.job_id == job_id,
                JobDiagnosis.repair_status.in_(OPEN_REPAIR_STATUSES),
            )
        )
        return result.scalar_one()

    async def can_leave_repair_stage(self, job: Union[RefurbJob, uuid.UUID]) -> bool:
        """True only if every diagnosis of the job is DONE or WONT_FIX."""
        job_id = job.id if isinstance(job, RefurbJob) else job
        return await self.count_open(job_id) == 0

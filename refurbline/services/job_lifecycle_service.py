"""
Job Lifecycle Engine

Orchestrates every stage change of a refurbishment job:

1. Locks the job row and checks the caller's observed state
   (StaleState on mismatch; the caller re-reads and retries)
2. Looks the action up in the transition table (IllegalTransition on a miss)
3. Applies the attempt-limit and repair guards
4. Updates the job and appends the transition record
5. Runs side effects (auto-disposition, certification)

Steps 1-5 run inside one SAVEPOINT, so a failure leaves nothing behind:
no transition is partially applied. The caller owns the outer transaction
(get_db commits per request).

USAGE:
    service = JobLifecycleService(db)
    job = await service.create_job(category="PHONE", actor="tech-7")
    job = await service.assign(job, "tech-7", expected_state="QUEUED", actor="lead-1")
    job = await service.advance(job, "ADVANCE", expected_state="ASSIGNED", actor="tech-7")
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import select, func, inspect
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from refurbline.config import settings
from refurbline.core.enum_utils import get_enum_value
from refurbline.core.errors import (
    IllegalTransition, JobNotEligible, JobNotFound, OverrideReasonRequired, RepairsOutstanding, StaleState
)
from refurbline.models.identifier_counter import CounterNamespace
from refurbline.models.refurb_job import RefurbJob, JobTransition, JobState, JobAction, JobPriority
from refurbline.models.step_completion import StepCompletion
from refurbline.services import qlid as qlid_codec
from refurbline.services.certification_service import CertificationService, CertificationRequest
from refurbline.services.diagnosis_service import DiagnosisService
from refurbline.services.identifier_service import IdentifierService
from refurbline.services.parts_notifier import PartsConsumer
from refurbline.services.step_ledger_service import StepLedgerService
from refurbline.services.job_state_machine import (
    ESCAPE_STATES, SUCCESS_STATES, TERMINAL_STATES,
    validate_transition, get_allowed_actions, get_resolve_targets, get_override_targets,
    is_escape, is_terminal, is_past_repair,
)


logger = logging.getLogger(__name__)

JobRef = Union[RefurbJob, uuid.UUID, str]

ATTEMPT_LIMIT_REASON = "attempt limit reached"
ATTEMPT_LIMIT_DISPOSITION = "ATTEMPT_LIMIT_REACHED"


class JobLifecycleService:
    """
    The refurbishment state machine, backed by the job store.

    Only this service writes current_state, attempt_count,
    current_step_index, resume_state and transition_seq.
    """

    def __init__(self, db: AsyncSession, parts_consumer: Optional[PartsConsumer] = None):
        self.db = db
        self.identifiers = IdentifierService(db)
        self.steps = StepLedgerService(db)
        self.diagnoses = DiagnosisService(db, parts_consumer)
        self.certifications = CertificationService(db)

    # ==================== Lookup ====================

    def _job_clause(self, job: JobRef):
        if isinstance(job, RefurbJob):
            # Use the identity key; attributes may be expired after a rollback
            identity = inspect(job).identity
            if identity is None:
                raise JobNotFound("Job has not been persisted")
            return RefurbJob.id == identity[0]
        if isinstance(job, uuid.UUID):
            return RefurbJob.id == job
        return RefurbJob.qlid == qlid_codec.parse_scan(job).qlid

    async def get_job(self, job: JobRef, for_update: bool = False) -> RefurbJob:
        """
        Load a job by object, id, QLID or scan payload.

        Raises:
            InvalidIdentifierFormat: If a string identifier is malformed
            JobNotFound: If no job matches
        """
        query = select(RefurbJob).where(self._job_clause(job))
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query.execution_options(populate_existing=True))
        found = result.scalar_one_or_none()
        if found is None:
            raise JobNotFound(f"Job {job} not found", identifier=str(job))
        return found

    async def list_jobs(
        self,
        state: Optional[Union[str, JobState]] = None,
        technician_id: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[Union[str, JobPriority]] = None,
        pallet_id: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[RefurbJob], int]:
        """List jobs with filters and pagination, oldest first (work-queue order)."""
        query = select(RefurbJob)
        if state:
            query = query.where(RefurbJob.current_state == get_enum_value(state))
        if technician_id:
            query = query.where(RefurbJob.assigned_technician_id == technician_id)
        if category:
            query = query.where(RefurbJob.category == get_enum_value(category))
        if priority:
            query = query.where(RefurbJob.priority == get_enum_value(priority))
        if pallet_id:
            query = query.where(RefurbJob.pallet_id == pallet_id)

        count_result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar_one()

        query = query.order_by(RefurbJob.tick).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_transitions(self, job: JobRef) -> List[JobTransition]:
        """Full audit trail of a job, in sequence order."""
        job = await self.get_job(job)
        result = await self.db.execute(
            select(JobTransition)
            .where(JobTransition.job_id == job.id)
            .order_by(JobTransition.sequence)
        )
        return list(result.scalars().all())

    async def allowed_actions(self, job: JobRef) -> List[str]:
        """Actions legal from the job's current stage, with attempt guards applied."""
        job = await self.get_job(job)
        return get_allowed_actions(job.current_state, job.attempt_count, job.max_attempts)

    async def list_steps(self, job: JobRef, state_code: Optional[str] = None) -> List[StepCompletion]:
        job = await self.get_job(job)
        return await self.steps.list_steps(job.id, get_enum_value(state_code))

    # ==================== Creation ====================

    async def create_job(
        self,
        category: str,
        actor: str,
        pallet_id: Optional[str] = None,
        manufacturer: Optional[str] = None,
        model: Optional[str] = None,
        serial_number: Optional[str] = None,
        priority: Union[str, JobPriority] = JobPriority.NORMAL,
        max_attempts: Optional[int] = None,
        notes: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """
        Create a job in QUEUED with a freshly issued QLID.

        The creation itself is logged as the first transition (from_state NULL).
        """
        max_attempts = max_attempts or settings.DEFAULT_MAX_ATTEMPTS
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        async with self.db.begin_nested():
            tick = await self.identifiers.next_tick(CounterNamespace.QLID)
            job = RefurbJob(
                qlid=qlid_codec.tick_to_qlid(tick),
                tick=tick,
                pallet_id=pallet_id,
                category=get_enum_value(category),
                manufacturer=manufacturer,
                model=model,
                serial_number=serial_number,
                current_state=JobState.QUEUED.value,
                current_step_index=0,
                attempt_count=0,
                max_attempts=max_attempts,
                priority=get_enum_value(priority),
                notes=notes,
                transition_seq=0,
            )
            self.db.add(job)
            await self._flush()

            self._append_transition(
                job, None, JobState.QUEUED.value, JobAction.CREATE.value, actor, actor_name=actor_name,
            )
            await self._flush()

        logger.info("Job %s created (%s) by %s", job.qlid, job.category, actor)
        return job

    # ==================== Transitions ====================

    async def advance(
        self,
        job: JobRef,
        action: Union[str, JobAction],
        expected_state: Union[str, JobState],
        actor: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        override: bool = False,
        disposition: Optional[str] = None,
        certification: Optional[CertificationRequest] = None,
        target_state: Optional[Union[str, JobState]] = None,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """
        Apply a table action to a job.

        Args:
            job: Job object, id, QLID or scan payload
            action: JobAction (ADVANCE, FAIL, RETRY, DISPOSE, ...)
            expected_state: The stage the caller observed
            actor: Opaque actor id
            override: Force past the repair guard (requires reason)
            certification: Issue a certification when the job lands in CERTIFIED/COMPLETE;
                required when entering CERTIFIED

        Raises:
            JobNotEligible: If the job would enter CERTIFIED without a certification request
            StaleState: If the stored stage differs from expected_state
            IllegalTransition: If the action is not legal from the stored stage
            AttemptLimitExceeded: If the action would re-enter final test past the limit
            RepairsOutstanding: If open diagnoses block leaving the repair stage
        """
        return await self._transition(
            job, action, expected_state, actor,
            target_state=target_state, reason=reason, notes=notes, override=override,
            disposition=disposition, certification=certification, actor_name=actor_name,
        )

    async def assign(
        self,
        job: JobRef,
        technician_id: str,
        expected_state: Union[str, JobState],
        actor: str,
        technician_name: Optional[str] = None,
        notes: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """Assign (or reassign) a technician. Guarded like any other transition."""
        return await self._transition(
            job, JobAction.ASSIGN, expected_state, actor,
            notes=notes, technician_id=technician_id, technician_name=technician_name, actor_name=actor_name,
        )

    async def escalate(
        self,
        job: JobRef,
        reason: str,
        expected_state: Union[str, JobState],
        actor: str,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """Move a job to ESCALATED. Legal from every non-terminal stage; consumes no attempt."""
        return await self._transition(
            job, JobAction.ESCALATE, expected_state, actor, reason=reason, actor_name=actor_name,
        )

    async def block(
        self,
        job: JobRef,
        reason: str,
        expected_state: Union[str, JobState],
        actor: str,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """Move a job to BLOCKED. Legal from every non-terminal stage; consumes no attempt."""
        return await self._transition(
            job, JobAction.BLOCK, expected_state, actor, reason=reason, actor_name=actor_name,
        )

    async def resolve(
        self,
        job: JobRef,
        target_state: Union[str, JobState],
        expected_state: Union[str, JobState],
        actor: str,
        reason: Optional[str] = None,
        override: bool = False,
        certification: Optional[CertificationRequest] = None,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """
        Return an escaped job to a stage chosen by the resolving actor.

        The target must be a main-path stage no later than the one the job
        escaped from, or that stage itself. Resolving into CERTIFIED needs a
        certification request.
        """
        return await self._transition(
            job, JobAction.RESOLVE, expected_state, actor,
            target_state=target_state, reason=reason, override=override,
            certification=certification, actor_name=actor_name,
        )

    async def override(
        self,
        job: JobRef,
        target_state: Union[str, JobState],
        expected_state: Union[str, JobState],
        actor: str,
        reason: str,
        certification: Optional[CertificationRequest] = None,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """
        Force a job into any non-escape, non-terminal stage except FINAL_TEST_FAILED.

        Privileged variant of resolve: the reason is mandatory and the
        transition is recorded with is_override. The attempt limit still applies.
        """
        return await self._transition(
            job, JobAction.OVERRIDE, expected_state, actor,
            target_state=target_state, reason=reason, certification=certification, actor_name=actor_name,
        )

    async def dispose(
        self,
        job: JobRef,
        expected_state: Union[str, JobState],
        actor: str,
        reason: Optional[str] = None,
        disposition: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        """Route a job to FAILED_DISPOSITION (terminal failure)."""
        return await self._transition(
            job, JobAction.DISPOSE, expected_state, actor,
            reason=reason, disposition=disposition, actor_name=actor_name,
        )

    async def _transition(
        self,
        job_ref: JobRef,
        action: Union[str, JobAction],
        expected_state: Union[str, JobState],
        actor: str,
        target_state: Optional[Union[str, JobState]] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        override: bool = False,
        disposition: Optional[str] = None,
        certification: Optional[CertificationRequest] = None,
        technician_id: Optional[str] = None,
        technician_name: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> RefurbJob:
        action = get_enum_value(action)
        expected_state = get_enum_value(expected_state)
        target_state = get_enum_value(target_state)
        if expected_state is None:
            raise ValueError("expected_state is required")

        async with self.db.begin_nested():
            job = await self.get_job(job_ref, for_update=True)
            self._check_expected(job, expected_state)
            current = job.current_state

            target = validate_transition(current, action, job.attempt_count, job.max_attempts, target_state)
            forced = action == JobAction.OVERRIDE.value

            if action == JobAction.ASSIGN.value and not technician_id:
                raise IllegalTransition(
                    "ASSIGN requires a technician", current_state=current, action=action,
                )
            if action == JobAction.RESOLVE.value and target not in get_resolve_targets(job.resume_state):
                raise IllegalTransition(
                    f"Cannot resolve {job.qlid} into '{target}'. "
                    f"Allowed targets: {', '.join(get_resolve_targets(job.resume_state))}",
                    current_state=current, action=action, target_state=target,
                )
            if action == JobAction.OVERRIDE.value and target not in get_override_targets():
                raise IllegalTransition(
                    f"Cannot override {job.qlid} into '{target}'",
                    current_state=current, action=action, target_state=target,
                )
            if (forced or override) and not (reason and reason.strip()):
                raise OverrideReasonRequired(
                    "A forced transition requires a reason", qlid=job.qlid, action=action,
                )
            if target == JobState.CERTIFIED.value and certification is None:
                raise JobNotEligible(
                    f"Job {job.qlid} cannot enter {target} without a certification level",
                    qlid=job.qlid, current_state=current, action=action,
                )

            if not forced and self._crosses_repair_gate(action, target):
                if not await self.diagnoses.can_leave_repair_stage(job):
                    if not override:
                        open_count = await self.diagnoses.count_open(job.id)
                        raise RepairsOutstanding(
                            f"Job {job.qlid} has {open_count} open diagnosis(es); "
                            f"close them or override with a reason",
                            current_state=current, action=action, target_state=target,
                        )
                    forced = True
                    logger.warning("Repair guard on %s overridden by %s: %s", job.qlid, actor, reason)

            if action == JobAction.ASSIGN.value:
                job.assigned_technician_id = technician_id
                job.assigned_technician_name = technician_name
                job.assigned_at = datetime.now(timezone.utc)
            elif action == JobAction.FAIL.value:
                job.attempt_count = job.attempt_count + 1
            elif action == JobAction.DISPOSE.value:
                job.disposition = disposition or job.disposition

            await self._enter_state(
                job, target, action, actor,
                reason=reason, notes=notes, is_override=forced, actor_name=actor_name,
            )

            if (
                action == JobAction.FAIL.value
                and job.attempt_count >= job.max_attempts
                and settings.AUTO_DISPOSE_ON_ATTEMPT_LIMIT
            ):
                job.disposition = job.disposition or ATTEMPT_LIMIT_DISPOSITION
                await self._enter_state(
                    job, JobState.FAILED_DISPOSITION.value, JobAction.DISPOSE.value, actor,
                    reason=ATTEMPT_LIMIT_REASON, actor_name=actor_name,
                )

            if certification is not None:
                await self.certifications.issue(
                    job, certification.level, certification.warranty, actor,
                    certification.actor_name or actor_name,
                )

        return job

    def _check_expected(self, job: RefurbJob, expected_state: str) -> None:
        if job.current_state != expected_state:
            logger.warning(
                "Stale write on %s: caller saw %s, stored %s", job.qlid, expected_state, job.current_state
            )
            raise StaleState(
                f"Job {job.qlid} is in '{job.current_state}', not '{expected_state}'; re-read and retry",
                expected_state=expected_state,
                actual_state=job.current_state,
            )

    @staticmethod
    def _crosses_repair_gate(action: str, target: str) -> bool:
        if action == JobAction.ADVANCE.value:
            return target in (JobState.REPAIR_COMPLETE.value, JobState.FINAL_TEST_PASSED.value)
        if action == JobAction.RESOLVE.value:
            return is_past_repair(target)
        return False

    async def _enter_state(
        self,
        job: RefurbJob,
        target: str,
        action: str,
        actor: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        is_override: bool = False,
        actor_name: Optional[str] = None,
    ) -> None:
        from_state = job.current_state
        now = datetime.now(timezone.utc)

        if target in ESCAPE_STATES:
            if from_state not in ESCAPE_STATES:
                job.resume_state = from_state
        else:
            job.resume_state = None

        job.current_state = target
        if target != from_state:
            job.current_step_index = 0
        if target == JobState.IN_PROGRESS.value and job.started_at is None:
            job.started_at = now
        if target in TERMINAL_STATES:
            job.completed_at = now

        # A grade only stands while the job sits in CERTIFIED or COMPLETE
        if target not in SUCCESS_STATES:
            if from_state in SUCCESS_STATES:
                active = await self.certifications.get_active_for_job(job)
                if active is not None:
                    await self.certifications.revoke(active, f"job left {from_state} via {action}", actor)
            job.final_grade = None
            job.warranty_eligible = None

        self._append_transition(
            job, from_state, target, action, actor,
            reason=reason, notes=notes, is_override=is_override, actor_name=actor_name,
        )
        await self._flush()

        log = logger.warning if is_override else logger.info
        log(
            "Job %s: %s --%s--> %s by %s%s",
            job.qlid, from_state, action, target, actor, " (override)" if is_override else "",
        )

    def _append_transition(
        self,
        job: RefurbJob,
        from_state: Optional[str],
        to_state: str,
        action: str,
        actor: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        is_override: bool = False,
        actor_name: Optional[str] = None,
    ) -> JobTransition:
        job.transition_seq = job.transition_seq + 1
        transition = JobTransition(
            job_id=job.id,
            qlid=job.qlid,
            sequence=job.transition_seq,
            from_state=from_state,
            to_state=to_state,
            action=action,
            actor=actor,
            actor_name=actor_name,
            reason=reason,
            notes=notes,
            is_override=is_override,
        )
        self.db.add(transition)
        return transition

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except StaleDataError as exc:
            raise StaleState("Job was modified by another writer; re-read and retry") from exc

    # ==================== Step Ledger ====================

    async def record_step(
        self,
        job: JobRef,
        step_code: str,
        payload: Optional[Dict[str, Any]],
        actor: str,
        state_code: Optional[Union[str, JobState]] = None,
        actor_name: Optional[str] = None,
    ) -> StepCompletion:
        """
        Record operator data for a step and refresh current_step_index.

        state_code defaults to the job's current stage.
        """
        async with self.db.begin_nested():
            job = await self.get_job(job, for_update=True)
            state_code = get_enum_value(state_code) or job.current_state
            completion = await self.steps.record_step(job, state_code, step_code, payload, actor, actor_name)

            if state_code == job.current_state:
                job.current_step_index = await self.steps.count_steps(job.id, state_code)
                await self._flush()

        return completion

    # ==================== Reporting ====================

    async def get_stats(self) -> Dict[str, Any]:
        """Work-queue statistics: counts by stage, category and priority."""
        by_state = {
            state: count for state, count in (await self.db.execute(
                select(RefurbJob.current_state, func.count(RefurbJob.id)).group_by(RefurbJob.current_state)
            )).all()
        }
        by_category = {
            category: count for category, count in (await self.db.execute(
                select(RefurbJob.category, func.count(RefurbJob.id)).group_by(RefurbJob.category)
            )).all()
        }
        by_priority = {
            priority: count for priority, count in (await self.db.execute(
                select(RefurbJob.priority, func.count(RefurbJob.id))
                .where(RefurbJob.current_state.not_in(TERMINAL_STATES))
                .group_by(RefurbJob.priority)
            )).all()
        }

        today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
        finished_today = {
            state: count for state, count in (await self.db.execute(
                select(RefurbJob.current_state, func.count(RefurbJob.id))
                .where(RefurbJob.current_state.in_(TERMINAL_STATES), RefurbJob.completed_at >= today_start)
                .group_by(RefurbJob.current_state)
            )).all()
        }

        total = sum(by_state.values())
        terminal = sum(count for state, count in by_state.items() if is_terminal(state))
        return {
            "total": total,
            "active": total - terminal,
            "escaped": sum(count for state, count in by_state.items() if is_escape(state)),
            "completed_today": finished_today.get(JobState.COMPLETE.value, 0),
            "disposed_today": finished_today.get(JobState.FAILED_DISPOSITION.value, 0),
            "by_state": by_state,
            "by_category": by_category,
            "active_by_priority": by_priority,
        }

    async def get_label_fields(self, identifier: str, container_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Human-readable label fields for the label/printer collaborator.

        Accepts a bare QLID or a scan payload; the container id defaults to
        the scanned one, then to the job's pallet.
        """
        scan = qlid_codec.parse_scan(identifier)
        job = await self.get_job(scan.qlid)
        container = container_id or scan.container_id or job.pallet_id
        certification = await self.certifications.get_active_for_job(job)

        return {
            "qlid": job.qlid,
            "tick": job.tick,
            "container_id": container,
            "scan_payload": qlid_codec.format_scan_payload(job.qlid, container),
            "category": job.category,
            "manufacturer": job.manufacturer,
            "model": job.model,
            "serial_number": job.serial_number,
            "current_state": job.current_state,
            "final_grade": job.final_grade,
            "warranty_eligible": job.warranty_eligible,
            "certification_id": certification.certification_id if certification else None,
            "certification_level": certification.certification_level if certification else None,
        }

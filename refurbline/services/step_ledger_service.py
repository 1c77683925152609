"""
Step Completion Ledger

Stores operator-entered data per (job, state, step). A second submission
for the same key replaces the stored payload, actor and time in place and
bumps the revision counter; it never creates a second row.

The ledger does not touch job fields. JobLifecycleService calls it under
the job row lock and maintains current_step_index itself.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from refurbline.models.refurb_job import RefurbJob
from refurbline.models.step_completion import StepCompletion


logger = logging.getLogger(__name__)

# Payload keys stored in their own columns; anything else lands in input_values
STEP_PAYLOAD_FIELDS = (
    "checklist_results",
    "input_values",
    "measurements",
    "notes",
    "photo_urls",
    "photo_types",
    "duration_seconds",
)


def split_payload(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Map a free-form payload onto the completion columns."""
    payload = dict(payload or {})
    values = {field: payload.pop(field, None) for field in STEP_PAYLOAD_FIELDS}
    if payload:
        values["input_values"] = {**(values["input_values"] or {}), **payload}
    return values


class StepLedgerService:
    """Upsert and query step completions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_step(self, job_id: uuid.UUID, state_code: str, step_code: str) -> Optional[StepCompletion]:
        result = await self.db.execute(
            select(StepCompletion)
            .where(
                StepCompletion.job_id == job_id,
                StepCompletion.state_code == state_code,
                StepCompletion.step_code == step_code,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def record_step(
        self,
        job: RefurbJob,
        state_code: str,
        step_code: str,
        payload: Optional[Dict[str, Any]],
        actor: str,
        actor_name: Optional[str] = None,
    ) -> StepCompletion:
        """
        Record (or re-record) a completed step.

        Args:
            job: The job the step belongs to
            state_code: Stage the step belongs to
            step_code: Step identifier within the stage
            payload: Opaque operator data (checklist, measurements, photos ...)
            actor: Who completed the step

        Returns:
            The stored completion
        """
        values = split_payload(payload)
        now = datetime.now(timezone.utc)

        completion = await self.get_step(job.id, state_code, step_code)
        if completion is None:
            try:
                async with self.db.begin_nested():
                    completion = StepCompletion(
                        job_id=job.id,
                        qlid=job.qlid,
                        state_code=state_code,
                        step_code=step_code,
                        completed_by=actor,
                        completed_by_name=actor_name,
                        completed_at=now,
                        revision=1,
                        **values,
                    )
                    self.db.add(completion)
                logger.info("Step %s/%s recorded for %s by %s", state_code, step_code, job.qlid, actor)
                return completion
            except IntegrityError:
                # A concurrent first submission won; fall through and replace it
                completion = await self.get_step(job.id, state_code, step_code)
                if completion is None:
                    raise

        for field, value in values.items():
            setattr(completion, field, value)
        completion.completed_by = actor
        completion.completed_by_name = actor_name
        completion.completed_at = now
        completion.revision = completion.revision + 1
        await self.db.flush()

        logger.info(
            "Step %s/%s re-recorded for %s by %s (revision %d)",
            state_code, step_code, job.qlid, actor, completion.revision,
        )
        return completion

    async def list_steps(self, job_id: uuid.UUID, state_code: Optional[str] = None) -> List[StepCompletion]:
        query = select(StepCompletion).where(StepCompletion.job_id == job_id)
        if state_code:
            query = query.where(StepCompletion.state_code == state_code)
        query = query.order_by(StepCompletion.completed_at, StepCompletion.step_code)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_steps(self, job_id: uuid.UUID, state_code: str) -> int:
        result = await self.db.execute(
            select(func.count(StepCompletion.id)).where(
                StepCompletion.job_id == job_id,
                StepCompletion.state_code == state_code,
            )
        )
        return result.scalar_one()

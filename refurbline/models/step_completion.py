"""
Step Completion Model.

Operator-entered data (checklists, measurements, photos) per stage per
job. At most one row exists per (job, state, step): re-submission replaces
the payload in place and bumps revision.

Payload fields are opaque JSON documents. Their per-category shape is
validated by whoever defines the checklist, not here.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import String, Text, Integer, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from refurbline.database import Base
from refurbline.db_types import JSONType, UUIDType


class StepCompletion(Base):
    """Completed workflow step for a job."""
    __tablename__ = "job_step_completions"
    __table_args__ = (
        UniqueConstraint("job_id", "state_code", "step_code", name="uq_job_step_completion"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("refurb_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    qlid: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    state_code: Mapped[str] = mapped_column(String(50), nullable=False)
    step_code: Mapped[str] = mapped_column(String(100), nullable=False)

    # Payload
    checklist_results: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    input_values: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    measurements: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    photo_urls: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)
    photo_types: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)

    # Who / when
    completed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    completed_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    duration_seconds: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    revision: Mapped[int] = mapped_column(
        Integer, default=1, nullable=False, comment="Number of times this step was submitted"
    )

    def __repr__(self) -> str:
        return f"<StepCompletion({self.qlid} {self.state_code}/{self.step_code} r{self.revision})>"

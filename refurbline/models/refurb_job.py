"""
Refurbishment Job Models.

This module contains models for:
- Refurbishment jobs (one row per physical item, keyed by QLID)
- Job transitions (append-only audit trail of every stage change)
"""
import uuid
import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    String, Text, Integer, BigInteger, Boolean, DateTime,
    ForeignKey, UniqueConstraint, CheckConstraint, event
)
from sqlalchemy.orm import Mapped, mapped_column

from refurbline.database import Base
from refurbline.db_types import UUIDType
from refurbline.core.enum_utils import enum_comment


class JobState(str, enum.Enum):
    """Persisted job stages. Values are stable across storage backends."""
    QUEUED = "QUEUED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    SECURITY_PREP_COMPLETE = "SECURITY_PREP_COMPLETE"
    DIAGNOSED = "DIAGNOSED"
    REPAIR_IN_PROGRESS = "REPAIR_IN_PROGRESS"
    REPAIR_COMPLETE = "REPAIR_COMPLETE"
    FINAL_TEST_IN_PROGRESS = "FINAL_TEST_IN_PROGRESS"
    FINAL_TEST_PASSED = "FINAL_TEST_PASSED"
    CERTIFIED = "CERTIFIED"
    COMPLETE = "COMPLETE"  # Terminal success
    BLOCKED = "BLOCKED"  # Escape state
    ESCALATED = "ESCALATED"  # Escape state
    FINAL_TEST_FAILED = "FINAL_TEST_FAILED"
    FAILED_DISPOSITION = "FAILED_DISPOSITION"  # Terminal failure


class JobAction(str, enum.Enum):
    """Actions that move a job between stages."""
    CREATE = "CREATE"  # Initial transition record only
    ASSIGN = "ASSIGN"
    ADVANCE = "ADVANCE"
    FAIL = "FAIL"
    RETRY = "RETRY"
    BLOCK = "BLOCK"
    ESCALATE = "ESCALATE"
    RESOLVE = "RESOLVE"
    OVERRIDE = "OVERRIDE"
    DISPOSE = "DISPOSE"


class ProductCategory(str, enum.Enum):
    """Item category received for refurbishment."""
    PHONE = "PHONE"
    TABLET = "TABLET"
    LAPTOP = "LAPTOP"
    DESKTOP = "DESKTOP"
    TV = "TV"
    MONITOR = "MONITOR"
    AUDIO = "AUDIO"
    APPLIANCE_SMALL = "APPLIANCE_SMALL"
    APPLIANCE_LARGE = "APPLIANCE_LARGE"
    ICE_MAKER = "ICE_MAKER"
    VACUUM = "VACUUM"
    GAMING = "GAMING"
    OTHER = "OTHER"


class JobPriority(str, enum.Enum):
    """Work queue priority."""
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"


class FinalGrade(str, enum.Enum):
    """Cosmetic/functional grade assigned at certification."""
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class RefurbJob(Base):
    """
    One refurbishment job per physical item.

    current_state, current_step_index, attempt_count, resume_state and
    transition_seq are written only by JobLifecycleService. The version
    column makes every UPDATE conditional on the version that was read,
    so a concurrent writer surfaces as StaleDataError.
    """
    __tablename__ = "refurb_jobs"
    __table_args__ = (
        CheckConstraint("attempt_count >= 0", name="ck_refurb_jobs_attempts_non_negative"),
        CheckConstraint("attempt_count <= max_attempts", name="ck_refurb_jobs_attempt_limit"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identity
    qlid: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    tick: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    pallet_id: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, index=True, comment="Container/pallet the item arrived in"
    )

    # Item
    category: Mapped[str] = mapped_column(
        String(30), nullable=False, index=True, comment=enum_comment(ProductCategory)
    )
    manufacturer: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Stage
    current_state: Mapped[str] = mapped_column(
        String(50),
        default=JobState.QUEUED.value,
        nullable=False,
        index=True,
        comment=enum_comment(JobState)
    )
    current_step_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    resume_state: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, comment="Stage left when the job entered BLOCKED/ESCALATED"
    )

    # Assignment
    assigned_technician_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    assigned_technician_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    assigned_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Retry policy
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=2, nullable=False)

    # Outcome
    final_grade: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    warranty_eligible: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    disposition: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True, comment="e.g. PARTS_HARVEST, RECYCLE, RETURN_TO_VENDOR"
    )

    priority: Mapped[str] = mapped_column(
        String(20), default=JobPriority.NORMAL.value, nullable=False, comment=enum_comment(JobPriority)
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Ordering / concurrency
    transition_seq: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Sequence of the last transition record"
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Timestamps
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<RefurbJob({self.qlid}: {self.current_state})>"


class JobTransition(Base):
    """
    Immutable record of one stage change.

    sequence is monotonic per job and is allocated from
    RefurbJob.transition_seq in the same flush as the job update, so the
    log never runs ahead of the stored state.
    """
    __tablename__ = "job_transitions"
    __table_args__ = (
        UniqueConstraint("job_id", "sequence", name="uq_job_transitions_job_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("refurb_jobs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    qlid: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    from_state: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, comment="NULL for the creation record"
    )
    to_state: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(20), nullable=False, comment=enum_comment(JobAction))

    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_override: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<JobTransition({self.qlid} #{self.sequence}: {self.from_state} -> {self.to_state})>"


@event.listens_for(JobTransition, "before_update")
def _reject_transition_update(mapper, connection, target):
    raise ValueError(f"Transition records are append-only ({target!r})")


@event.listens_for(JobTransition, "before_delete")
def _reject_transition_delete(mapper, connection, target):
    raise ValueError(f"Transition records are append-only ({target!r})")

"""
Diagnosis / Repair Models.

A job may carry zero or many diagnoses. Each diagnosis has its own repair
lifecycle, independent of the job's stage:

    PENDING → IN_PROGRESS → DONE
       └──────────┴──────→ WONT_FIX

The job cannot leave the repair stage while any of its diagnoses is
PENDING or IN_PROGRESS, unless the transition is forced with a reason.
"""
import uuid
import enum
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import String, Text, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from refurbline.database import Base
from refurbline.db_types import JSONType, UUIDType
from refurbline.core.enum_utils import enum_comment


class DiagnosisSeverity(str, enum.Enum):
    """Defect severity."""
    CRITICAL = "CRITICAL"
    MAJOR = "MAJOR"
    MINOR = "MINOR"
    COSMETIC = "COSMETIC"


class RepairStatus(str, enum.Enum):
    """Repair lifecycle of a single defect."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    WONT_FIX = "WONT_FIX"


OPEN_REPAIR_STATUSES = (RepairStatus.PENDING.value, RepairStatus.IN_PROGRESS.value)
CLOSED_REPAIR_STATUSES = (RepairStatus.DONE.value, RepairStatus.WONT_FIX.value)


class JobDiagnosis(Base):
    """Defect found on a job and the repair applied to it."""
    __tablename__ = "job_diagnoses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("refurb_jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    qlid: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    # Defect
    defect_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(
        String(20), nullable=False, comment=enum_comment(DiagnosisSeverity)
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    measurements: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    photo_urls: Mapped[Optional[List[str]]] = mapped_column(JSONType, nullable=True)
    diagnosed_state: Mapped[str] = mapped_column(
        String(50), nullable=False, comment="Job stage when the defect was recorded"
    )
    diagnosed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    diagnosed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Proposed repair
    repair_action: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    parts_required: Mapped[Optional[List[dict]]] = mapped_column(JSONType, nullable=True)

    # Repair lifecycle
    repair_status: Mapped[str] = mapped_column(
        String(20),
        default=RepairStatus.PENDING.value,
        nullable=False,
        index=True,
        comment=enum_comment(RepairStatus)
    )
    repair_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    repaired_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    repaired_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    parts_used: Mapped[Optional[List[dict]]] = mapped_column(JSONType, nullable=True)
    resolution_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def is_open(self) -> bool:
        return self.repair_status in OPEN_REPAIR_STATUSES

    def __repr__(self) -> str:
        return f"<JobDiagnosis({self.qlid} {self.defect_code}: {self.repair_status})>"

"""
Certification Models.

A certification is keyed by its own identifier (CRT-YYYYMMDD-NNNNNN, drawn
from an independent counter) and points back to exactly one job. The job
never stores a certification id; it is found by reverse lookup on job_id.

At most one non-revoked certification exists per job (partial unique
index). Revocation flags the row, it never deletes it.
"""
import uuid
import enum
from datetime import datetime, date, timezone
from typing import Optional

from sqlalchemy import String, Text, Integer, Boolean, DateTime, Date, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column

from refurbline.database import Base
from refurbline.db_types import UUIDType
from refurbline.core.enum_utils import enum_comment


class CertificationLevel(str, enum.Enum):
    """Certification outcome."""
    EXCELLENT = "EXCELLENT"  # All tests pass, like-new condition
    GOOD = "GOOD"  # All functional tests pass, minor cosmetic wear
    FAIR = "FAIR"  # Functional with noted limitations
    NOT_CERTIFIED = "NOT_CERTIFIED"  # Failed critical tests


class WarrantyType(str, enum.Enum):
    """Kind of warranty carried by the device."""
    MANUFACTURER = "MANUFACTURER"
    EXTENDED = "EXTENDED"
    RETAILER = "RETAILER"
    REFURBISHER = "REFURBISHER"
    NONE = "NONE"


class WarrantyStatus(str, enum.Enum):
    """Verified status of the device warranty."""
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    VOIDED = "VOIDED"
    UNKNOWN = "UNKNOWN"
    NOT_APPLICABLE = "NOT_APPLICABLE"


class Certification(Base):
    """Certification issued for a job on the success side of the lifecycle."""
    __tablename__ = "certifications"
    __table_args__ = (
        Index(
            "uq_certifications_active_job",
            "job_id",
            unique=True,
            sqlite_where=text("is_revoked = 0"),
            postgresql_where=text("NOT is_revoked"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    certification_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)

    # Job reference
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType, ForeignKey("refurb_jobs.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    qlid: Mapped[str] = mapped_column(String(30), nullable=False, index=True)

    # Device snapshot at issue time
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    manufacturer: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Outcome
    certification_level: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True, comment=enum_comment(CertificationLevel)
    )
    final_grade: Mapped[str] = mapped_column(String(10), nullable=False)

    # Device warranty (as verified by the certifier)
    warranty_type: Mapped[str] = mapped_column(
        String(20), default=WarrantyType.NONE.value, nullable=False, comment=enum_comment(WarrantyType)
    )
    warranty_status: Mapped[str] = mapped_column(
        String(20), default=WarrantyStatus.UNKNOWN.value, nullable=False, comment=enum_comment(WarrantyStatus)
    )
    warranty_provider: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    warranty_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    warranty_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    warranty_coverage: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    warranty_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Refurbisher guarantee derived from level
    guarantee_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    guarantee_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Issue
    certified_by: Mapped[str] = mapped_column(String(100), nullable=False)
    certified_by_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    certified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Revocation (one-way)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    revoked_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Certification({self.certification_id} {self.qlid}: {self.certification_level})>"

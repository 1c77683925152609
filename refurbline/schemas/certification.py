"""Pydantic schemas for certification issue, revocation and verification."""
from datetime import date, datetime
from typing import Optional, List, Dict
from uuid import UUID
from pydantic import BaseModel, Field

from refurbline.core.enum_utils import create_uppercase_validator, enum_values
from refurbline.models.certification import CertificationLevel, WarrantyType, WarrantyStatus
from refurbline.schemas.base import BaseResponseSchema, BaseCreateSchema, ListResponse
from refurbline.services.certification_service import CertificationRequest, WarrantyInfo


VALID_LEVELS = set(enum_values(CertificationLevel))
VALID_WARRANTY_TYPES = set(enum_values(WarrantyType))
VALID_WARRANTY_STATUSES = set(enum_values(WarrantyStatus))


# ==================== Input Schemas ====================

class WarrantyInput(BaseCreateSchema):
    """Device warranty details verified by the certifier."""
    type: WarrantyType = WarrantyType.NONE
    status: WarrantyStatus = WarrantyStatus.UNKNOWN
    provider: Optional[str] = Field(None, max_length=100)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    coverage: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None

    normalize_type = create_uppercase_validator('type', VALID_WARRANTY_TYPES)
    normalize_status = create_uppercase_validator('status', VALID_WARRANTY_STATUSES)

    def to_info(self) -> WarrantyInfo:
        return WarrantyInfo(
            type=self.type.value,
            status=self.status.value,
            provider=self.provider,
            start_date=self.start_date,
            end_date=self.end_date,
            coverage=self.coverage,
            notes=self.notes,
        )


class CertificationIssue(BaseCreateSchema):
    """Issue a certification for a job on the success side of the lifecycle."""
    level: CertificationLevel
    warranty: Optional[WarrantyInput] = None

    normalize_level = create_uppercase_validator('level', VALID_LEVELS)

    def to_request(self, actor_name: Optional[str] = None) -> CertificationRequest:
        return CertificationRequest(
            level=self.level.value,
            warranty=self.warranty.to_info() if self.warranty else None,
            actor_name=actor_name,
        )


class CertificationRevoke(BaseCreateSchema):
    reason: str = Field(..., min_length=1, max_length=2000)


# ==================== Response Schemas ====================

class CertificationResponse(BaseResponseSchema):
    """Response schema for Certification."""
    id: UUID
    certification_id: str
    job_id: UUID
    qlid: str
    category: str
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    certification_level: str
    final_grade: str
    warranty_type: str
    warranty_status: str
    warranty_provider: Optional[str] = None
    warranty_start_date: Optional[date] = None
    warranty_end_date: Optional[date] = None
    warranty_coverage: Optional[str] = None
    warranty_notes: Optional[str] = None
    guarantee_days: int
    guarantee_expires_at: Optional[datetime] = None
    certified_by: str
    certified_by_name: Optional[str] = None
    certified_at: datetime
    valid_until: Optional[datetime] = None
    is_revoked: bool
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[str] = None
    revoked_reason: Optional[str] = None


class CertificationListResponse(ListResponse):
    items: List[CertificationResponse]


class CertificationVerifyResponse(BaseModel):
    """Public verification result; device details are omitted when NOT_FOUND."""
    certification_id: str
    status: str
    valid: bool
    qlid: Optional[str] = None
    category: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    certification_level: Optional[str] = None
    final_grade: Optional[str] = None
    certified_at: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revoked_reason: Optional[str] = None


class CertificationStats(BaseModel):
    total: int
    active: int
    revoked: int
    issued_today: int
    by_level: Dict[str, int]

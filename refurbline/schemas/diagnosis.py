"""Pydantic schemas for defects and repairs."""
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import UUID
from pydantic import Field

from refurbline.core.enum_utils import create_uppercase_validator, enum_values
from refurbline.models.diagnosis import DiagnosisSeverity
from refurbline.schemas.base import BaseResponseSchema, BaseCreateSchema


VALID_SEVERITIES = set(enum_values(DiagnosisSeverity))


class DiagnosisCreate(BaseCreateSchema):
    defect_code: str = Field(..., min_length=1, max_length=50)
    severity: DiagnosisSeverity
    description: Optional[str] = None
    measurements: Optional[Dict[str, Any]] = None
    photo_urls: Optional[List[str]] = None
    repair_action: Optional[str] = Field(None, max_length=200)
    parts_required: Optional[List[Dict[str, Any]]] = None

    normalize_severity = create_uppercase_validator('severity', VALID_SEVERITIES)


class DiagnosisRepaired(BaseCreateSchema):
    parts_used: Optional[List[Dict[str, Any]]] = None
    notes: Optional[str] = None


class DiagnosisWontFix(BaseCreateSchema):
    reason: Optional[str] = None


class DiagnosisResponse(BaseResponseSchema):
    """Response schema for JobDiagnosis."""
    id: UUID
    job_id: UUID
    qlid: str
    defect_code: str
    severity: str
    description: Optional[str] = None
    measurements: Optional[Dict[str, Any]] = None
    photo_urls: Optional[List[str]] = None
    diagnosed_state: str
    diagnosed_by: str
    diagnosed_at: datetime
    repair_action: Optional[str] = None
    parts_required: Optional[List[Dict[str, Any]]] = None
    repair_status: str
    repair_started_at: Optional[datetime] = None
    repaired_by: Optional[str] = None
    repaired_at: Optional[datetime] = None
    parts_used: Optional[List[Dict[str, Any]]] = None
    resolution_notes: Optional[str] = None

"""Pydantic schemas for refurbishment jobs, transitions and the step ledger."""
from datetime import datetime
from typing import Optional, List, Dict, Any
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict

from refurbline.core.enum_utils import create_uppercase_validator, enum_values
from refurbline.models.refurb_job import JobState, JobAction, ProductCategory, JobPriority
from refurbline.schemas.base import BaseResponseSchema, BaseCreateSchema, ListResponse
from refurbline.schemas.certification import CertificationIssue


VALID_STATES = set(enum_values(JobState))
VALID_ACTIONS = set(enum_values(JobAction))
VALID_CATEGORIES = set(enum_values(ProductCategory))
VALID_PRIORITIES = set(enum_values(JobPriority))


# ==================== Job Schemas ====================

class JobCreate(BaseCreateSchema):
    """Schema for creating a job; the QLID is issued by the server."""
    category: ProductCategory
    pallet_id: Optional[str] = Field(None, max_length=50)
    manufacturer: Optional[str] = Field(None, max_length=100)
    model: Optional[str] = Field(None, max_length=100)
    serial_number: Optional[str] = Field(None, max_length=100)
    priority: JobPriority = JobPriority.NORMAL
    max_attempts: Optional[int] = Field(None, ge=1, le=10)
    notes: Optional[str] = None

    normalize_category = create_uppercase_validator('category', VALID_CATEGORIES)
    normalize_priority = create_uppercase_validator('priority', VALID_PRIORITIES)


class JobResponse(BaseResponseSchema):
    """Response schema for RefurbJob."""
    id: UUID
    qlid: str
    tick: int
    pallet_id: Optional[str] = None
    category: str
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    current_state: str
    current_step_index: int
    resume_state: Optional[str] = None
    assigned_technician_id: Optional[str] = None
    assigned_technician_name: Optional[str] = None
    assigned_at: Optional[datetime] = None
    attempt_count: int
    max_attempts: int
    final_grade: Optional[str] = None
    warranty_eligible: Optional[bool] = None
    disposition: Optional[str] = None
    priority: str
    notes: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    allowed_actions: List[str] = []


class JobListResponse(ListResponse):
    items: List[JobResponse]


class JobStats(BaseModel):
    total: int
    active: int
    escaped: int
    completed_today: int
    disposed_today: int
    by_state: Dict[str, int]
    by_category: Dict[str, int]
    active_by_priority: Dict[str, int]


class LabelFields(BaseModel):
    """Fields handed to the label printer."""
    qlid: str
    tick: int
    container_id: Optional[str] = None
    scan_payload: str
    category: str
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    current_state: str
    final_grade: Optional[str] = None
    warranty_eligible: Optional[bool] = None
    certification_id: Optional[str] = None
    certification_level: Optional[str] = None


# ==================== Transition Schemas ====================

class JobAssign(BaseCreateSchema):
    technician_id: str = Field(..., min_length=1, max_length=100)
    technician_name: Optional[str] = Field(None, max_length=200)
    expected_state: JobState
    notes: Optional[str] = None

    normalize_expected_state = create_uppercase_validator('expected_state', VALID_STATES)


class JobTransitionRequest(BaseCreateSchema):
    """
    Apply a table action (ADVANCE, FAIL, RETRY, DISPOSE).

    expected_state is the stage the caller last observed; a mismatch is
    rejected with STALE_STATE so the caller can re-read.
    """
    action: JobAction = JobAction.ADVANCE
    expected_state: JobState
    reason: Optional[str] = None
    notes: Optional[str] = None
    override: bool = False
    disposition: Optional[str] = Field(None, max_length=50)
    certification: Optional[CertificationIssue] = None

    normalize_action = create_uppercase_validator('action', VALID_ACTIONS)
    normalize_expected_state = create_uppercase_validator('expected_state', VALID_STATES)


class JobEscapeRequest(BaseCreateSchema):
    """
    Escalate or block a job.

    Without expected_state the server reads the current stage and retries
    on conflict.
    """
    reason: str = Field(..., min_length=1, max_length=2000)
    expected_state: Optional[JobState] = None

    normalize_expected_state = create_uppercase_validator('expected_state', VALID_STATES)


class JobResolve(BaseCreateSchema):
    target_state: JobState
    expected_state: JobState
    reason: Optional[str] = None
    override: bool = False
    certification: Optional[CertificationIssue] = None

    normalize_target_state = create_uppercase_validator('target_state', VALID_STATES)
    normalize_expected_state = create_uppercase_validator('expected_state', VALID_STATES)


class JobOverride(BaseCreateSchema):
    target_state: JobState
    expected_state: JobState
    reason: Optional[str] = None
    certification: Optional[CertificationIssue] = None

    normalize_target_state = create_uppercase_validator('target_state', VALID_STATES)
    normalize_expected_state = create_uppercase_validator('expected_state', VALID_STATES)


class TransitionResponse(BaseResponseSchema):
    """Response schema for JobTransition."""
    id: UUID
    job_id: UUID
    qlid: str
    sequence: int
    from_state: Optional[str] = None
    to_state: str
    action: str
    actor: str
    actor_name: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    is_override: bool
    created_at: datetime


# ==================== Step Ledger Schemas ====================

class StepRecord(BaseModel):
    """
    Operator data for one step.

    Unknown keys are kept and stored with input_values.
    """
    model_config = ConfigDict(extra='allow')

    step_code: str = Field(..., min_length=1, max_length=100)
    state_code: Optional[JobState] = None
    checklist_results: Optional[Dict[str, Any]] = None
    input_values: Optional[Dict[str, Any]] = None
    measurements: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    photo_urls: Optional[List[str]] = None
    photo_types: Optional[List[str]] = None
    duration_seconds: Optional[int] = Field(None, ge=0)

    normalize_state_code = create_uppercase_validator('state_code', VALID_STATES)

    def payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"step_code", "state_code"}, exclude_none=True)


class StepCompletionResponse(BaseResponseSchema):
    """Response schema for StepCompletion."""
    id: UUID
    job_id: UUID
    qlid: str
    state_code: str
    step_code: str
    checklist_results: Optional[Dict[str, Any]] = None
    input_values: Optional[Dict[str, Any]] = None
    measurements: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    photo_urls: Optional[List[str]] = None
    photo_types: Optional[List[str]] = None
    completed_by: str
    completed_by_name: Optional[str] = None
    duration_seconds: Optional[int] = None
    completed_at: datetime
    revision: int

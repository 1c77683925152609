"""Pydantic schemas for identifier counters and scan parsing."""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from refurbline.core.enum_utils import create_uppercase_validator, enum_values
from refurbline.models.identifier_counter import CounterNamespace
from refurbline.schemas.base import BaseResponseSchema, BaseCreateSchema


VALID_NAMESPACES = set(enum_values(CounterNamespace))


class CounterResponse(BaseResponseSchema):
    name: str
    current_value: int
    description: Optional[str] = None
    updated_at: datetime


class CounterInitialize(BaseCreateSchema):
    """Seed a counter, e.g. when migrating from a previous identifier source."""
    namespace: CounterNamespace
    starting_value: int = Field(0, ge=0)

    normalize_namespace = create_uppercase_validator('namespace', VALID_NAMESPACES)


class CounterSyncResponse(BaseModel):
    namespace: str
    counter_value: int
    max_issued_tick: int
    status: str
    repaired: bool


class QlidPreview(BaseModel):
    """Next QLID that would be issued. Not reserved."""
    next_qlid: str
    current_tick: int


class ScanParseRequest(BaseCreateSchema):
    payload: str = Field(..., min_length=1, max_length=200)


class ScanParseResponse(BaseModel):
    qlid: str
    tick: int
    series: str
    container_id: Optional[str] = None

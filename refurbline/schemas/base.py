"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class JobResponse(BaseResponseSchema):
            id: UUID
            qlid: str
            pallet_id: Optional[str] = None
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    No from_attributes needed since these don't read from ORM.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )


class ListResponse(BaseModel):
    """Pagination envelope shared by list endpoints."""
    total: int
    skip: int
    limit: int


# Type aliases for common UUID patterns
UUIDField = UUID
OptionalUUID = Optional[UUID]

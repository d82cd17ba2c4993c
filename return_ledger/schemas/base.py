"""
Base Schema Classes for Pydantic Models

RULE: All response schemas that use `from_attributes=True` MUST inherit from BaseResponseSchema.
"""

from typing import Generic, Optional, TypeVar
from pydantic import BaseModel, ConfigDict


T = TypeVar("T")


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class AccountResponse(BaseResponseSchema):
            id: UUID
            code: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    Unknown fields are ignored (forward compatibility).
    """
    model_config = ConfigDict(
        extra='ignore',
        populate_by_name=True,
    )


class BaseUpdateSchema(BaseModel):
    """
    Base class for update/patch schemas.

    All fields are optional by default for partial updates; services read
    them with ``model_dump(exclude_unset=True)``.
    """
    model_config = ConfigDict(
        extra='ignore',
        populate_by_name=True,
    )


class ApiResponse(BaseModel, Generic[T]):
    """Success envelope: {"success": true, "message"?, "data": ...}."""
    success: bool = True
    message: Optional[str] = None
    data: T

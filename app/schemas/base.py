"""
Base Schema Classes for Pydantic Models

RULE: Response schemas that read from ORM rows inherit from BaseResponseSchema;
request bodies inherit from BaseCreateSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas built from ORM models.

    Usage:
        class LocationResponse(BaseResponseSchema):
            id: UUID
            location_name: Optional[str] = None
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for request bodies.

    Unknown fields are ignored so older clients keep working.
    """
    model_config = ConfigDict(
        extra='ignore',
    )

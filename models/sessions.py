from pydantic import BaseModel, Field
from datetime import datetime

class AssignmentResponse(BaseModel):
    """Schema returned by GET /ab-tests/{id}/assignment/{session_id}."""
    ab_test_id: int
    session_id: str
    user_id: str | None = None
    variant_id: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ConversionCreate(BaseModel):
    """Schema for recording a conversion via POST /ab-tests/{id}/conversions."""
    session_id: str = Field(..., min_length=1, max_length=255)
    conversion_event: str | None = Field(default=None, max_length=100, description="e.g. 'signup', 'purchase'.")
    conversion_value: float | None = Field(default=None, ge=0)


class SessionResponse(BaseModel):
    id: int
    ab_test_id: int
    session_id: str
    user_id: str | None = None
    variant_id: str
    converted: bool
    conversion_event: str | None = None
    conversion_value: float | None = None
    created_at: datetime | None = None
    converted_at: datetime | None = None

    class Config:
        from_attributes = True


class SessionListResponse(BaseModel):
    data: list[SessionResponse]
    count: int
    limit: int
    offset: int


class QueuedConversionResponse(BaseModel):
    status: str
    task_id: str

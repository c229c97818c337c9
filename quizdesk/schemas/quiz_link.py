"""
Pydantic schemas for quiz links and link-based registration
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from quizdesk.schemas.quiz import QuizSummary


class LinkGenerateRequest(BaseModel):
    """Optional limits for a new quiz link"""
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = Field(None, ge=1)


class LinkResponse(BaseModel):
    """A quiz link with its shareable URL and usage counters"""
    id: int
    quiz_id: int
    token: str
    url: str
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_uses: Optional[int] = None
    used_count: int = 0
    is_active: bool = True
    last_accessed_at: Optional[datetime] = None


class LinkStatusUpdate(BaseModel):
    is_active: bool


class LinkValidateRequest(BaseModel):
    token: str = Field(..., min_length=1)
    student_id: Optional[int] = None


class LinkUsage(BaseModel):
    id: int
    max_uses: Optional[int] = None
    used_count: int
    expires_at: Optional[datetime] = None


class LinkValidationResponse(BaseModel):
    """Validation outcome; ``reason`` is set when the link is unusable"""
    valid: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    has_attempted: Optional[bool] = None
    quiz: Optional[QuizSummary] = None
    link_usage: Optional[LinkUsage] = None


class RegistrationRequest(BaseModel):
    """Registration through a quiz link; format checks happen in the service"""
    name: str
    email: str
    phone: str
    token: str


class StudentResponse(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None

    class Config:
        from_attributes = True


class RegistrationResponse(BaseModel):
    student: StudentResponse
    quiz_id: int
    link_attempt_id: int


class CheckAttemptRequest(BaseModel):
    student_id: int
    quiz_id: int


class CheckAttemptResponse(BaseModel):
    has_attempted: bool
    attempt_count: int

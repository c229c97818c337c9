"""
Pydantic schemas for attempt lifecycle requests and responses
"""
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from quizdesk.config import settings
from quizdesk.services.reload_guard import DisruptionEvent


class AttemptStartRequest(BaseModel):
    quiz_id: int
    student_id: int


class AttemptResult(BaseModel):
    """Final result of a completed attempt"""
    attempt_id: int
    status: str
    score: Optional[int] = None
    total_questions: Optional[int] = None
    correct_answers: Optional[int] = None
    passed: Optional[bool] = None
    time_spent: Optional[int] = None
    completed_at: Optional[datetime] = None
    already_completed: bool = False


class AttemptStartResponse(BaseModel):
    attempt_id: int
    attempt_number: int
    status: str
    resumed: bool
    time_remaining_seconds: int
    existing_answers: Dict[int, str] = Field(default_factory=dict)
    result: Optional[AttemptResult] = None
    sync_interval_seconds: int = Field(default_factory=lambda: settings.TIME_SYNC_INTERVAL_SECONDS)


class AnswerSaveRequest(BaseModel):
    attempt_id: int
    question_id: int
    selected_answer: str = Field(..., min_length=1, max_length=1)
    is_correct: Optional[bool] = None  # client's own view, only cross-checked
    time_spent: Optional[int] = Field(None, ge=0)


class AnswerSaveResponse(BaseModel):
    attempt_id: int
    question_id: int
    selected_answer: str
    saved: bool


class TimeSyncRequest(BaseModel):
    attempt_id: int
    time_remaining: int = Field(..., ge=0)


class TimeSyncResponse(BaseModel):
    attempt_id: int
    accepted: bool
    status: str
    time_remaining_seconds: Optional[int] = None


class AttemptCompleteRequest(BaseModel):
    """
    Completion request

    Score fields sent by the client are optional and only compared with the
    server's own aggregate over stored answers.
    """
    attempt_id: int
    time_spent: Optional[int] = Field(None, ge=0)
    link_attempt_id: Optional[int] = None
    score: Optional[int] = None
    total_questions: Optional[int] = None
    correct_answers: Optional[int] = None
    passed: Optional[bool] = None


class DisruptionRequest(BaseModel):
    event: DisruptionEvent
    link_attempt_id: Optional[int] = None


class GuardConfirmRequest(BaseModel):
    link_attempt_id: Optional[int] = None


class GuardResponse(BaseModel):
    action: str
    count: int
    threshold: int
    result: Optional[AttemptResult] = None


class ResetRequest(BaseModel):
    student_id: int
    quiz_id: int


class ResetResponse(BaseModel):
    message: str
    deleted_attempt_id: int
    attempts_used: int


class AbandonResponse(BaseModel):
    attempt_id: int
    status: str

"""
Pydantic schemas for quiz management and student quiz views
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from quizdesk.config import settings


class QuestionCreate(BaseModel):
    """A multiple-choice question with four options"""
    text: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=4, max_length=4)
    correct_answer: str = Field(..., pattern="^[A-Da-d]$", description="Correct option letter")
    order: int = 0

    @field_validator("correct_answer")
    @classmethod
    def upper_letter(cls, value: str) -> str:
        return value.upper()


class QuizCreate(BaseModel):
    """Schema for creating a quiz with its questions"""
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    time_limit: int = Field(..., gt=0, description="Minutes to complete the quiz")
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    passing_score: int = Field(settings.DEFAULT_PASSING_SCORE, ge=0, le=100)
    max_attempts: int = Field(settings.DEFAULT_MAX_ATTEMPTS, ge=1)
    is_active: bool = True
    questions: List[QuestionCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_window(self):
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class QuizSummary(BaseModel):
    """Public quiz metadata (no answer keys)"""
    id: int
    title: str
    description: Optional[str] = None
    time_limit: int
    passing_score: Optional[int] = None


class QuizAdminResponse(BaseModel):
    """Quiz as seen by administrators"""
    id: int
    title: str
    description: Optional[str] = None
    time_limit: int
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    passing_score: Optional[int] = None
    max_attempts: Optional[int] = None
    is_active: bool
    question_count: int = 0

    class Config:
        from_attributes = True


class StudentQuizState(BaseModel):
    status: str
    attempts_used: int
    max_attempts: int


class PublicQuestion(BaseModel):
    id: int
    text: str
    options: List[str]
    order: int = 0


class StudentQuizResponse(BaseModel):
    """Quiz page payload for a student"""
    quiz: QuizSummary
    questions: List[PublicQuestion]
    student_status: StudentQuizState


class AvailableQuiz(QuizSummary):
    student_status: StudentQuizState

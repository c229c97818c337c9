"""
Student-facing quiz endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List
import logging

from quizdesk.database import get_db
from quizdesk.schemas.quiz import AvailableQuiz, StudentQuizResponse
from quizdesk.services.attempt_service import attempt_service

router = APIRouter(prefix="/api/quizzes", tags=["quizzes"])
logger = logging.getLogger(__name__)


@router.get("/available", response_model=List[AvailableQuiz])
async def list_available_quizzes(
    student_id: int = Query(...),
    db: Session = Depends(get_db)
):
    """
    Active quizzes inside their validity window

    Each entry carries the student's status (available, in_progress,
    completed or disabled) and attempts used so far.
    """
    return [AvailableQuiz(**quiz) for quiz in attempt_service.list_available_quizzes(db, student_id)]


@router.get("/{quiz_id}", response_model=StudentQuizResponse)
async def get_quiz(
    quiz_id: int,
    student_id: int = Query(...),
    db: Session = Depends(get_db)
):
    """Quiz and its questions for the attempt page; answer keys are never sent"""
    return StudentQuizResponse(**attempt_service.get_quiz_for_student(db, quiz_id, student_id))

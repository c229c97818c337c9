"""
Quiz administration service
"""
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from quizdesk.database import storage_errors
from quizdesk.exceptions import NotFound
from quizdesk.models import Question, Quiz
from quizdesk.schemas.quiz import QuizCreate
from quizdesk.utils.cache import cache_service
from quizdesk.utils.clock import as_naive_utc

logger = logging.getLogger(__name__)


class QuizService:
    """Create quizzes and switch them on or off"""

    def create_quiz(self, db: Session, payload: QuizCreate, created_by: str = None) -> Dict[str, Any]:
        quiz = Quiz(
            title=payload.title,
            description=payload.description,
            time_limit=payload.time_limit,
            valid_from=as_naive_utc(payload.valid_from),
            valid_until=as_naive_utc(payload.valid_until),
            passing_score=payload.passing_score,
            max_attempts=payload.max_attempts,
            is_active=payload.is_active,
            created_by=created_by,
        )
        quiz.questions = [
            Question(
                text=question.text,
                options=[option.strip() for option in question.options],
                correct_answer=question.correct_answer,
                order=question.order if question.order else index,
            )
            for index, question in enumerate(payload.questions)
        ]

        with storage_errors(db, "create quiz"):
            db.add(quiz)
            db.commit()
            db.refresh(quiz)

        logger.info(f"Quiz created: {quiz.id} with {len(quiz.questions)} questions")
        return self.summary(quiz)

    def list_quizzes(self, db: Session) -> List[Dict[str, Any]]:
        quizzes = db.query(Quiz).order_by(Quiz.created_at.desc(), Quiz.id.desc()).all()
        return [self.summary(quiz) for quiz in quizzes]

    def toggle_status(self, db: Session, quiz_id: int) -> Dict[str, Any]:
        quiz = db.get(Quiz, quiz_id)
        if not quiz:
            raise NotFound("Quiz not found")

        quiz.is_active = not quiz.is_active
        with storage_errors(db, "toggle quiz"):
            db.commit()

        cache_service.invalidate_quiz(quiz_id)
        logger.info(f"Quiz {quiz_id} is now {'active' if quiz.is_active else 'inactive'}")
        return self.summary(quiz)

    def summary(self, quiz: Quiz) -> Dict[str, Any]:
        return {
            "id": quiz.id,
            "title": quiz.title,
            "description": quiz.description,
            "time_limit": quiz.time_limit,
            "valid_from": quiz.valid_from,
            "valid_until": quiz.valid_until,
            "passing_score": quiz.passing_score,
            "max_attempts": quiz.max_attempts,
            "is_active": quiz.is_active,
            "question_count": len(quiz.questions),
        }


# Global instance
quiz_service = QuizService()

"""
Attempt and Response models - timed quiz sessions and their recorded answers
"""
from sqlalchemy import (
    Column, String, Integer, Boolean, Text, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from quizdesk.database import Base
from quizdesk.utils.clock import utcnow


class AttemptStatus:
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class Attempt(Base):
    """
    Attempts table - one row per quiz-taking session
    """
    __tablename__ = "attempts"
    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", "attempt_number", name="uq_attempts_quiz_student_number"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)

    attempt_number = Column(Integer, default=1, nullable=False)
    status = Column(String(20), default=AttemptStatus.IN_PROGRESS, nullable=False)

    # Scoring
    score = Column(Integer)  # percentage
    total_questions = Column(Integer)
    correct_answers = Column(Integer)
    passed = Column(Boolean)

    # Timing
    started_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime)
    time_spent = Column(Integer)  # seconds
    time_remaining = Column(Integer)  # last accepted sync checkpoint, seconds
    last_synced_at = Column(DateTime)

    # Security
    ip_address = Column(String(45))
    user_agent = Column(Text)

    student = relationship("Student", back_populates="attempts")
    quiz = relationship("Quiz")
    responses = relationship(
        "Response",
        back_populates="attempt",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_in_progress(self) -> bool:
        return self.status == AttemptStatus.IN_PROGRESS

    def __repr__(self):
        return f"<Attempt(id={self.id}, quiz_id={self.quiz_id}, student_id={self.student_id}, status={self.status})>"


class Response(Base):
    """
    Responses table - at most one answer per (attempt, question), replaced on re-answer
    """
    __tablename__ = "responses"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_responses_attempt_question"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    attempt_id = Column(Integer, ForeignKey("attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False)
    selected_answer = Column(String(1))
    is_correct = Column(Boolean, nullable=False)
    time_spent = Column(Integer)
    answered_at = Column(DateTime, default=utcnow)

    attempt = relationship("Attempt", back_populates="responses")

    def __repr__(self):
        return f"<Response(attempt={self.attempt_id}, question={self.question_id}, answer={self.selected_answer})>"

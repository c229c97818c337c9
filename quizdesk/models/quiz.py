"""
Quiz and Question models
"""
from sqlalchemy import Column, String, Integer, Boolean, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from quizdesk.database import Base
from quizdesk.utils.clock import utcnow


class Quiz(Base):
    """
    Quizzes table - timed tests with an optional validity window
    """
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(100), nullable=False)
    description = Column(Text)

    time_limit = Column(Integer, nullable=False)  # minutes
    valid_from = Column(DateTime)
    valid_until = Column(DateTime)

    passing_score = Column(Integer, default=70)  # percentage
    max_attempts = Column(Integer, default=1)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow)
    created_by = Column(String(100))

    questions = relationship(
        "Question",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by=lambda: [Question.order, Question.id],
    )
    links = relationship("QuizLink", back_populates="quiz", cascade="all, delete-orphan")

    @property
    def duration_seconds(self) -> int:
        return (self.time_limit or 0) * 60

    def __repr__(self):
        return f"<Quiz(id={self.id}, title={self.title}, active={self.is_active})>"


class Question(Base):
    """
    Questions table - four options, correct answer stored as a letter A-D
    """
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False)  # ["...", "...", "...", "..."]
    correct_answer = Column(String(1), nullable=False)
    order = Column(Integer, default=0)

    quiz = relationship("Quiz", back_populates="questions")

    def __repr__(self):
        return f"<Question(id={self.id}, quiz_id={self.quiz_id})>"

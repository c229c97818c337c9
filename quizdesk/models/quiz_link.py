"""
QuizLink and QuizLinkAttempt models - tokenized, single-use quiz entry points
"""
from sqlalchemy import (
    Column, String, Integer, Boolean, Text, DateTime, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from quizdesk.database import Base
from quizdesk.utils.clock import utcnow


class QuizLink(Base):
    """
    Quiz links table - one shareable token per row, soft-deactivated via is_active
    """
    __tablename__ = "quiz_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(64), nullable=False, unique=True, index=True)

    created_at = Column(DateTime, default=utcnow)
    created_by = Column(String(100))
    expires_at = Column(DateTime)

    is_active = Column(Boolean, default=True, nullable=False)
    max_uses = Column(Integer)
    used_count = Column(Integer, default=0, nullable=False)

    last_accessed_at = Column(DateTime)

    quiz = relationship("Quiz", back_populates="links")
    link_attempts = relationship(
        "QuizLinkAttempt",
        back_populates="quiz_link",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<QuizLink(id={self.id}, quiz_id={self.quiz_id}, used={self.used_count}/{self.max_uses})>"


class QuizLinkAttempt(Base):
    """
    Quiz link attempts table - the one binding between a link and a student
    """
    __tablename__ = "quiz_link_attempts"
    __table_args__ = (
        UniqueConstraint("quiz_link_id", "student_id", name="uq_quiz_link_attempts_link_student"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    quiz_link_id = Column(Integer, ForeignKey("quiz_links.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), nullable=False, index=True)

    accessed_at = Column(DateTime, default=utcnow)
    attempt_id = Column(Integer, ForeignKey("attempts.id", ondelete="SET NULL"))

    ip_address = Column(String(45))
    user_agent = Column(Text)

    quiz_link = relationship("QuizLink", back_populates="link_attempts")

    def __repr__(self):
        return f"<QuizLinkAttempt(link={self.quiz_link_id}, student={self.student_id}, attempt={self.attempt_id})>"

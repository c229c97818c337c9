"""
StudentQuizStatus model - cached per (student, quiz) availability
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint
from quizdesk.database import Base


class QuizAvailability:
    AVAILABLE = "available"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DISABLED = "disabled"


class StudentQuizStatus(Base):
    """
    Student quiz status table - gates starting/resuming outside the link flow
    """
    __tablename__ = "student_quiz_status"
    __table_args__ = (
        UniqueConstraint("student_id", "quiz_id", name="uq_student_quiz_status_student_quiz"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False)

    status = Column(String(20), default=QuizAvailability.AVAILABLE, nullable=False)
    attempts_used = Column(Integer, default=0, nullable=False)

    first_accessed_at = Column(DateTime)
    last_accessed_at = Column(DateTime)
    completed_at = Column(DateTime)

    def __repr__(self):
        return f"<StudentQuizStatus(student={self.student_id}, quiz={self.quiz_id}, status={self.status})>"

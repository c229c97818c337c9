"""
Student model - identity resolved by email during link registration
"""
from sqlalchemy import Column, String, Integer, DateTime
from sqlalchemy.orm import relationship
from quizdesk.database import Base
from quizdesk.utils.clock import utcnow


class Student(Base):
    """
    Students table - email is the natural key, phone/name are refreshed in place
    """
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(100), nullable=False, unique=True, index=True)
    phone = Column(String(20))
    created_at = Column(DateTime, default=utcnow)

    attempts = relationship("Attempt", back_populates="student")

    def __repr__(self):
        return f"<Student(id={self.id}, email={self.email})>"

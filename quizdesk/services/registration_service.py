"""
Registration service - binds a student to a quiz link exactly once
"""
import logging
import re
from typing import Any, Dict, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quizdesk.database import storage_errors
from quizdesk.exceptions import AlreadyAttempted, LinkExhausted, RegistrationValidationError
from quizdesk.models import QuizLink, QuizLinkAttempt, Student
from quizdesk.services.link_service import link_service
from quizdesk.utils.clock import utcnow

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\d{10}$")


class RegistrationService:
    """
    Service for link-based student registration

    The single-use guarantee comes from the UNIQUE(quiz_link_id, student_id)
    constraint: the link attempt is inserted first and a constraint violation
    is reported as AlreadyAttempted. Usage is counted with a conditional
    increment so used_count can never pass max_uses.
    """

    def validate_identity(self, name: str, email: str, phone: str) -> Tuple[str, str, str]:
        """Normalise and validate registration input before touching storage"""
        name = (name or "").strip()
        email = (email or "").strip().lower()
        phone = (phone or "").strip()

        if not name or not email or not phone:
            raise RegistrationValidationError("All fields are required")
        if not EMAIL_PATTERN.match(email):
            raise RegistrationValidationError("Invalid email format")
        if not PHONE_PATTERN.match(phone):
            raise RegistrationValidationError("Phone number must be exactly 10 digits")

        return name, email, phone

    def register(
        self,
        db: Session,
        token: str,
        name: str,
        email: str,
        phone: str,
        ip_address: str = None,
        user_agent: str = None,
    ) -> Dict[str, Any]:
        """
        Register a student through a quiz link

        Returns:
            Dictionary with the student, the quiz id and the link attempt id the
            client threads through to completion
        """
        name, email, phone = self.validate_identity(name, email, phone)

        link = link_service.check_link(db, token)
        student = self._resolve_student(db, name, email, phone)

        now = utcnow()
        link_attempt = QuizLinkAttempt(
            quiz_link_id=link.id,
            student_id=student.id,
            quiz_id=link.quiz_id,
            accessed_at=now,
            ip_address=(ip_address or "unknown")[:45],
            user_agent=user_agent or "unknown",
        )

        with storage_errors(db, "register for quiz link"):
            db.add(link_attempt)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                logger.info(f"Duplicate registration rejected: link={link.id}, student={student.id}")
                raise AlreadyAttempted()

            claimed = (
                db.query(QuizLink)
                .filter(
                    QuizLink.id == link.id,
                    or_(QuizLink.max_uses.is_(None), QuizLink.used_count < QuizLink.max_uses),
                )
                .update(
                    {
                        QuizLink.used_count: QuizLink.used_count + 1,
                        QuizLink.last_accessed_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if claimed == 0:
                db.rollback()
                logger.info(f"Registration rejected, link {link.id} exhausted")
                raise LinkExhausted()

            db.commit()

        logger.info(
            f"Student {student.id} registered via link {link.id} "
            f"(quiz={link.quiz_id}, link_attempt={link_attempt.id})"
        )

        return {
            "student": student,
            "quiz_id": link.quiz_id,
            "link_attempt_id": link_attempt.id,
        }

    def _resolve_student(self, db: Session, name: str, email: str, phone: str) -> Student:
        """
        Find the student by email or create one

        An existing student is refreshed in place when the phone differs. A
        concurrent insert of the same email loses on the unique constraint and
        re-reads the winning row.
        """
        with storage_errors(db, "resolve student"):
            student = db.query(Student).filter(Student.email == email).first()
            if student:
                if student.phone != phone:
                    student.phone = phone
                    student.name = name
                    db.commit()
                    logger.info(f"Student {student.id} details refreshed")
                return student

            student = Student(name=name, email=email, phone=phone)
            db.add(student)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                student = db.query(Student).filter(Student.email == email).one()
                return student

            logger.info(f"Student created: {student.id}")
            return student


# Global instance
registration_service = RegistrationService()

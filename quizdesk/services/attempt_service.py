"""
Attempt service - the timed quiz-taking state machine

    in_progress --complete--> completed
    in_progress --abandon---> abandoned

Both end states are terminal. Every route to ``completed`` (student submit,
timer expiry detected on load, reload-abuse auto-submit) goes through
``complete_attempt``.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quizdesk.config import settings
from quizdesk.database import storage_errors
from quizdesk.exceptions import (
    AlreadyCompleted,
    NoAttemptsRemaining,
    NotFound,
    QuizMissing,
    TransientStorageError,
    ValidationFailed,
)
from quizdesk.models import (
    Attempt,
    AttemptStatus,
    Question,
    Quiz,
    QuizAvailability,
    QuizLinkAttempt,
    Response,
    Student,
    StudentQuizStatus,
)
from quizdesk.services.grading_service import grading_service
from quizdesk.services.link_service import ensure_quiz_available, sanitize_quiz
from quizdesk.utils.clock import utcnow

logger = logging.getLogger(__name__)


class AttemptService:
    """Service for starting, answering, syncing and finishing quiz attempts"""

    # Start / resume

    def start_attempt(
        self,
        db: Session,
        quiz_id: int,
        student_id: int,
        ip_address: str = None,
        user_agent: str = None,
    ) -> Dict[str, Any]:
        """
        Resume the student's in-progress attempt or start a new one

        Returns:
            Dictionary with attempt id, status, remaining seconds and, on
            resume, the previously saved answers ``{question_id: letter}``
        """
        now = utcnow()

        quiz = db.get(Quiz, quiz_id)
        if not quiz:
            raise QuizMissing()
        if not db.get(Student, student_id):
            raise NotFound("Student not found")

        existing = self._in_progress_attempt(db, quiz_id, student_id)
        if existing:
            return self._resume(db, existing, quiz, now)

        ensure_quiz_available(quiz, now)

        status_row = self._status_row(db, student_id, quiz_id)
        if status_row.status == QuizAvailability.DISABLED:
            raise NoAttemptsRemaining("This quiz has been disabled for you")

        used = self._attempt_count(db, quiz_id, student_id)
        max_attempts = quiz.max_attempts or settings.DEFAULT_MAX_ATTEMPTS
        if used >= max_attempts:
            logger.info(f"Student {student_id} has no attempts left on quiz {quiz_id} ({used}/{max_attempts})")
            raise NoAttemptsRemaining()

        last_number = (
            db.query(func.max(Attempt.attempt_number))
            .filter(Attempt.quiz_id == quiz_id, Attempt.student_id == student_id)
            .scalar()
        ) or 0

        attempt = Attempt(
            quiz_id=quiz_id,
            student_id=student_id,
            attempt_number=last_number + 1,
            status=AttemptStatus.IN_PROGRESS,
            started_at=now,
            ip_address=(ip_address or "unknown")[:45],
            user_agent=user_agent or "unknown",
        )

        with storage_errors(db, "start attempt"):
            db.add(attempt)
            try:
                db.flush()
            except IntegrityError:
                # A concurrent start for the same pair won the attempt number
                db.rollback()
                existing = self._in_progress_attempt(db, quiz_id, student_id)
                if existing:
                    return self._resume(db, existing, quiz, now)
                raise TransientStorageError("Could not start the attempt. Please try again.")

            status_row.status = QuizAvailability.IN_PROGRESS
            status_row.attempts_used = used + 1
            status_row.first_accessed_at = status_row.first_accessed_at or now
            status_row.last_accessed_at = now
            db.commit()

        logger.info(
            f"Attempt started: id={attempt.id}, quiz={quiz_id}, student={student_id}, "
            f"number={attempt.attempt_number}"
        )

        return {
            "attempt_id": attempt.id,
            "attempt_number": attempt.attempt_number,
            "status": attempt.status,
            "resumed": False,
            "time_remaining_seconds": quiz.duration_seconds,
            "existing_answers": {},
        }

    def _resume(self, db: Session, attempt: Attempt, quiz: Quiz, now: datetime) -> Dict[str, Any]:
        remaining = self.remaining_seconds(attempt, quiz, now)

        if remaining <= 0:
            # Timer ran out while the student was away
            logger.info(f"Attempt {attempt.id} out of time on resume, completing")
            result = self.complete_attempt(db, attempt.id, time_spent=quiz.duration_seconds)
            return {
                "attempt_id": attempt.id,
                "attempt_number": attempt.attempt_number,
                "status": AttemptStatus.COMPLETED,
                "resumed": True,
                "time_remaining_seconds": 0,
                "existing_answers": self._answers(db, attempt.id),
                "result": result,
            }

        with storage_errors(db, "record resume"):
            db.query(StudentQuizStatus).filter(
                StudentQuizStatus.student_id == attempt.student_id,
                StudentQuizStatus.quiz_id == attempt.quiz_id,
            ).update({StudentQuizStatus.last_accessed_at: now}, synchronize_session=False)
            db.commit()

        logger.info(f"Attempt resumed: id={attempt.id}, remaining={remaining}s")

        return {
            "attempt_id": attempt.id,
            "attempt_number": attempt.attempt_number,
            "status": attempt.status,
            "resumed": True,
            "time_remaining_seconds": remaining,
            "existing_answers": self._answers(db, attempt.id),
        }

    def remaining_seconds(self, attempt: Attempt, quiz: Quiz, now: datetime = None) -> int:
        """
        Remaining time for an attempt

        The clock keeps running while the student is away: time since the last
        accepted sync checkpoint is subtracted from it, and the result never
        exceeds the quiz duration minus wall-clock time since the start.
        """
        now = now or utcnow()
        elapsed = int((now - attempt.started_at).total_seconds())
        remaining = quiz.duration_seconds - elapsed

        if attempt.time_remaining is not None:
            synced_at = attempt.last_synced_at or attempt.started_at
            since_sync = int((now - synced_at).total_seconds())
            remaining = min(remaining, attempt.time_remaining - since_sync)

        return max(0, remaining)

    # Answers

    def save_answer(
        self,
        db: Session,
        attempt_id: int,
        question_id: int,
        selected_answer: str,
        time_spent: int = None,
        client_is_correct: bool = None,
    ) -> Dict[str, Any]:
        """
        Create or replace the response for (attempt, question)

        Correctness is computed here from the stored answer key; the client's
        own flag is only compared and logged.
        """
        attempt = db.get(Attempt, attempt_id)
        if not attempt:
            raise NotFound("Attempt not found")
        if not attempt.is_in_progress:
            raise AlreadyCompleted()

        question = db.get(Question, question_id)
        if not question or question.quiz_id != attempt.quiz_id:
            raise NotFound("Question not found")

        letter = grading_service.normalize_choice(question, selected_answer)
        is_correct = grading_service.is_correct_choice(question, letter)

        if client_is_correct is not None and client_is_correct != is_correct:
            logger.warning(
                f"Client correctness flag disagrees for attempt {attempt_id}, question {question_id}"
            )

        values = {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "selected_answer": letter,
            "is_correct": is_correct,
            "time_spent": time_spent,
            "answered_at": utcnow(),
        }

        with storage_errors(db, "save answer"):
            self._upsert_response(db, values)
            db.commit()

        logger.info(f"Answer saved: attempt={attempt_id}, question={question_id}")

        return {
            "attempt_id": attempt_id,
            "question_id": question_id,
            "selected_answer": letter,
            "saved": True,
        }

    def _upsert_response(self, db: Session, values: Dict[str, Any]) -> None:
        dialect = db.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            insert = pg_insert if dialect == "postgresql" else sqlite_insert
            stmt = insert(Response).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["attempt_id", "question_id"],
                set_={
                    "selected_answer": stmt.excluded.selected_answer,
                    "is_correct": stmt.excluded.is_correct,
                    "time_spent": stmt.excluded.time_spent,
                    "answered_at": stmt.excluded.answered_at,
                },
            )
            db.execute(stmt)
            return

        # Other dialects: update, else insert; a lost insert race becomes an update
        updated = self._update_response(db, values)
        if updated:
            return
        try:
            db.add(Response(**values))
            db.flush()
        except IntegrityError:
            db.rollback()
            self._update_response(db, values)

    def _update_response(self, db: Session, values: Dict[str, Any]) -> int:
        return (
            db.query(Response)
            .filter(
                Response.attempt_id == values["attempt_id"],
                Response.question_id == values["question_id"],
            )
            .update(
                {
                    Response.selected_answer: values["selected_answer"],
                    Response.is_correct: values["is_correct"],
                    Response.time_spent: values["time_spent"],
                    Response.answered_at: values["answered_at"],
                },
                synchronize_session=False,
            )
        )

    # Time sync

    def sync_time(self, db: Session, attempt_id: int, remaining_seconds: int) -> Dict[str, Any]:
        """
        Record a remaining-time checkpoint

        Only strictly decreasing values are stored, so a delayed request can
        never hand time back to the student.
        """
        attempt = db.get(Attempt, attempt_id)
        if not attempt:
            raise NotFound("Attempt not found")
        if remaining_seconds < 0:
            raise ValidationFailed("Remaining time cannot be negative")

        previous = attempt.time_remaining
        if not attempt.is_in_progress:
            return self._sync_result(attempt, False, previous)

        duration = attempt.quiz.duration_seconds
        if remaining_seconds > duration:
            logger.warning(
                f"Sync for attempt {attempt_id} exceeds quiz duration ({remaining_seconds}s > {duration}s)"
            )
            return self._sync_result(attempt, False, previous)

        if previous is not None and remaining_seconds >= previous:
            if remaining_seconds - previous > settings.TIME_SYNC_SKEW_SECONDS:
                logger.warning(
                    f"Suspicious time sync for attempt {attempt_id}: {remaining_seconds}s after {previous}s"
                )
            else:
                logger.debug(f"Stale time sync ignored for attempt {attempt_id}")
            return self._sync_result(attempt, False, previous)

        now = utcnow()
        with storage_errors(db, "sync time"):
            accepted = (
                db.query(Attempt)
                .filter(
                    Attempt.id == attempt_id,
                    Attempt.status == AttemptStatus.IN_PROGRESS,
                    (Attempt.time_remaining.is_(None)) | (Attempt.time_remaining > remaining_seconds),
                )
                .update(
                    {
                        Attempt.time_remaining: remaining_seconds,
                        Attempt.last_synced_at: now,
                    },
                    synchronize_session=False,
                )
            )
            db.commit()

        db.refresh(attempt)
        return self._sync_result(attempt, bool(accepted), attempt.time_remaining)

    def _sync_result(self, attempt: Attempt, accepted: bool, remaining: Optional[int]) -> Dict[str, Any]:
        return {
            "attempt_id": attempt.id,
            "accepted": accepted,
            "status": attempt.status,
            "time_remaining_seconds": remaining,
        }

    # Completion

    def complete_attempt(
        self,
        db: Session,
        attempt_id: int,
        time_spent: int = None,
        link_attempt_id: int = None,
        reported: Dict[str, Any] = None,
    ) -> Dict[str, Any]:
        """
        Finish an attempt and score it from its stored responses

        Idempotent: completing an already completed attempt returns the stored
        result without re-scoring.

        Args:
            attempt_id: Attempt to complete
            time_spent: Seconds spent, defaults to wall-clock time since start
            link_attempt_id: Registration correlation id from the link flow
            reported: Score fields computed by the client, only cross-checked

        Returns:
            Dictionary with the final score, counts and pass flag
        """
        attempt = db.get(Attempt, attempt_id)
        if not attempt:
            raise NotFound("Attempt not found")

        if attempt.status == AttemptStatus.COMPLETED:
            self._attach_link_attempt(db, link_attempt_id, attempt)
            return self._completion_result(attempt, already_completed=True)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise AlreadyCompleted("This attempt was abandoned and cannot be submitted")

        quiz = attempt.quiz
        total = db.query(Question).filter(Question.quiz_id == quiz.id).count()
        flags = [
            flag
            for (flag,) in db.query(Response.is_correct)
            .join(Question, Question.id == Response.question_id)
            .filter(Response.attempt_id == attempt.id, Question.quiz_id == quiz.id)
            .all()
        ]
        correct, score = grading_service.grade(flags, total)
        passing_score = quiz.passing_score if quiz.passing_score is not None else settings.DEFAULT_PASSING_SCORE
        passed = grading_service.is_passed(score, passing_score)

        now = utcnow()
        if time_spent is None:
            time_spent = int((now - attempt.started_at).total_seconds())
        time_spent = max(0, time_spent)

        self._cross_check(attempt_id, reported, score, correct, total)

        with storage_errors(db, "complete attempt"):
            updated = (
                db.query(Attempt)
                .filter(Attempt.id == attempt_id, Attempt.status == AttemptStatus.IN_PROGRESS)
                .update(
                    {
                        Attempt.status: AttemptStatus.COMPLETED,
                        Attempt.score: score,
                        Attempt.total_questions: total,
                        Attempt.correct_answers: correct,
                        Attempt.passed: passed,
                        Attempt.time_spent: time_spent,
                        Attempt.completed_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated == 0:
                # Lost a race with another completion request
                db.rollback()
                db.refresh(attempt)
                if attempt.status == AttemptStatus.COMPLETED:
                    return self._completion_result(attempt, already_completed=True)
                raise AlreadyCompleted()

            db.query(StudentQuizStatus).filter(
                StudentQuizStatus.student_id == attempt.student_id,
                StudentQuizStatus.quiz_id == attempt.quiz_id,
            ).update(
                {
                    StudentQuizStatus.status: QuizAvailability.COMPLETED,
                    StudentQuizStatus.completed_at: now,
                    StudentQuizStatus.last_accessed_at: now,
                },
                synchronize_session=False,
            )
            db.commit()

        db.refresh(attempt)
        self._attach_link_attempt(db, link_attempt_id, attempt)

        logger.info(
            f"Attempt completed: id={attempt.id}, score={score}% ({correct}/{total}), passed={passed}"
        )
        return self._completion_result(attempt, already_completed=False)

    def _cross_check(self, attempt_id: int, reported: Optional[Dict[str, Any]], score: int, correct: int, total: int):
        if not reported:
            return
        expected = {"score": score, "correct_answers": correct, "total_questions": total}
        mismatched = {
            key: reported[key]
            for key in expected
            if reported.get(key) is not None and reported[key] != expected[key]
        }
        if mismatched:
            logger.warning(
                f"Client-reported result for attempt {attempt_id} differs from stored answers: "
                f"reported={mismatched}, computed={expected}"
            )

    def _attach_link_attempt(self, db: Session, link_attempt_id: Optional[int], attempt: Attempt) -> None:
        """Best-effort: point the registration record at the finished attempt"""
        if not link_attempt_id:
            return
        try:
            updated = (
                db.query(QuizLinkAttempt)
                .filter(
                    QuizLinkAttempt.id == link_attempt_id,
                    QuizLinkAttempt.student_id == attempt.student_id,
                    QuizLinkAttempt.quiz_id == attempt.quiz_id,
                )
                .update({QuizLinkAttempt.attempt_id: attempt.id}, synchronize_session=False)
            )
            db.commit()
            if not updated:
                logger.warning(f"Link attempt {link_attempt_id} does not match attempt {attempt.id}")
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to attach attempt {attempt.id} to link attempt {link_attempt_id}: {str(e)}")

    def _completion_result(self, attempt: Attempt, already_completed: bool) -> Dict[str, Any]:
        return {
            "attempt_id": attempt.id,
            "status": attempt.status,
            "score": attempt.score,
            "total_questions": attempt.total_questions,
            "correct_answers": attempt.correct_answers,
            "passed": attempt.passed,
            "time_spent": attempt.time_spent,
            "completed_at": attempt.completed_at,
            "already_completed": already_completed,
        }

    # Administrative overrides

    def abandon_attempt(self, db: Session, attempt_id: int) -> Dict[str, Any]:
        """in_progress -> abandoned; the attempt still counts against max_attempts"""
        attempt = db.get(Attempt, attempt_id)
        if not attempt:
            raise NotFound("Attempt not found")

        with storage_errors(db, "abandon attempt"):
            updated = (
                db.query(Attempt)
                .filter(Attempt.id == attempt_id, Attempt.status == AttemptStatus.IN_PROGRESS)
                .update({Attempt.status: AttemptStatus.ABANDONED}, synchronize_session=False)
            )
            if not updated:
                db.rollback()
                raise AlreadyCompleted()

            quiz = attempt.quiz
            used = self._attempt_count(db, attempt.quiz_id, attempt.student_id)
            max_attempts = quiz.max_attempts or settings.DEFAULT_MAX_ATTEMPTS
            db.query(StudentQuizStatus).filter(
                StudentQuizStatus.student_id == attempt.student_id,
                StudentQuizStatus.quiz_id == attempt.quiz_id,
            ).update(
                {
                    StudentQuizStatus.status: (
                        QuizAvailability.AVAILABLE if used < max_attempts else QuizAvailability.COMPLETED
                    ),
                    StudentQuizStatus.last_accessed_at: utcnow(),
                },
                synchronize_session=False,
            )
            db.commit()

        db.refresh(attempt)
        logger.info(f"Attempt abandoned: id={attempt_id}")
        return {"attempt_id": attempt.id, "status": attempt.status}

    def reset_attempt(self, db: Session, student_id: int, quiz_id: int) -> Dict[str, Any]:
        """
        Delete the latest attempt (with its responses) and reopen the quiz

        Destructive override for administrators; link registrations are kept,
        only their reference to the deleted attempt is cleared.
        """
        latest = (
            db.query(Attempt)
            .filter(Attempt.student_id == student_id, Attempt.quiz_id == quiz_id)
            .order_by(Attempt.id.desc())
            .first()
        )
        if not latest:
            raise NotFound("No attempt found for this student and quiz")

        deleted_id = latest.id
        with storage_errors(db, "reset attempt"):
            db.query(QuizLinkAttempt).filter(QuizLinkAttempt.attempt_id == deleted_id).update(
                {QuizLinkAttempt.attempt_id: None}, synchronize_session=False
            )
            db.delete(latest)
            db.flush()

            remaining = self._attempt_count(db, quiz_id, student_id)
            db.query(StudentQuizStatus).filter(
                StudentQuizStatus.student_id == student_id,
                StudentQuizStatus.quiz_id == quiz_id,
            ).update(
                {
                    StudentQuizStatus.status: QuizAvailability.AVAILABLE,
                    StudentQuizStatus.attempts_used: remaining,
                    StudentQuizStatus.completed_at: None,
                    StudentQuizStatus.last_accessed_at: None,
                },
                synchronize_session=False,
            )
            db.commit()

        logger.info(f"Test reset: student={student_id}, quiz={quiz_id}, deleted attempt {deleted_id}")
        return {"deleted_attempt_id": deleted_id, "attempts_used": remaining}

    # Student-facing reads

    def get_quiz_for_student(self, db: Session, quiz_id: int, student_id: int) -> Dict[str, Any]:
        """Quiz and questions without answer keys, plus the student's status"""
        quiz = db.get(Quiz, quiz_id)
        if not quiz:
            raise QuizMissing()
        if not db.get(Student, student_id):
            raise NotFound("Student not found")

        if not self._in_progress_attempt(db, quiz_id, student_id):
            ensure_quiz_available(quiz, utcnow())

        return {
            "quiz": sanitize_quiz(quiz),
            "questions": [
                {
                    "id": question.id,
                    "text": question.text,
                    "options": list(question.options or []),
                    "order": question.order,
                }
                for question in quiz.questions
            ],
            "student_status": self._status_summary(db, student_id, quiz),
        }

    def list_available_quizzes(self, db: Session, student_id: int) -> List[Dict[str, Any]]:
        """Active quizzes inside their window, with the student's availability"""
        if not db.get(Student, student_id):
            raise NotFound("Student not found")

        now = utcnow()
        quizzes = (
            db.query(Quiz)
            .filter(
                Quiz.is_active.is_(True),
                (Quiz.valid_from.is_(None)) | (Quiz.valid_from <= now),
                (Quiz.valid_until.is_(None)) | (Quiz.valid_until >= now),
            )
            .order_by(Quiz.created_at.desc(), Quiz.id.desc())
            .all()
        )
        return [
            {**sanitize_quiz(quiz), "student_status": self._status_summary(db, student_id, quiz)}
            for quiz in quizzes
        ]

    def _status_summary(self, db: Session, student_id: int, quiz: Quiz) -> Dict[str, Any]:
        row = (
            db.query(StudentQuizStatus)
            .filter(StudentQuizStatus.student_id == student_id, StudentQuizStatus.quiz_id == quiz.id)
            .first()
        )
        return {
            "status": row.status if row else QuizAvailability.AVAILABLE,
            "attempts_used": row.attempts_used if row else 0,
            "max_attempts": quiz.max_attempts or settings.DEFAULT_MAX_ATTEMPTS,
        }

    # Helpers

    def _in_progress_attempt(self, db: Session, quiz_id: int, student_id: int) -> Optional[Attempt]:
        return (
            db.query(Attempt)
            .filter(
                Attempt.quiz_id == quiz_id,
                Attempt.student_id == student_id,
                Attempt.status == AttemptStatus.IN_PROGRESS,
            )
            .order_by(Attempt.id.desc())
            .first()
        )

    def _attempt_count(self, db: Session, quiz_id: int, student_id: int) -> int:
        return (
            db.query(Attempt)
            .filter(Attempt.quiz_id == quiz_id, Attempt.student_id == student_id)
            .count()
        )

    def _answers(self, db: Session, attempt_id: int) -> Dict[int, str]:
        rows = db.query(Response.question_id, Response.selected_answer).filter(
            Response.attempt_id == attempt_id
        )
        return {question_id: letter for question_id, letter in rows}

    def _status_row(self, db: Session, student_id: int, quiz_id: int) -> StudentQuizStatus:
        query = db.query(StudentQuizStatus).filter(
            StudentQuizStatus.student_id == student_id,
            StudentQuizStatus.quiz_id == quiz_id,
        )
        row = query.first()
        if row:
            return row

        with storage_errors(db, "create quiz status"):
            row = StudentQuizStatus(
                student_id=student_id,
                quiz_id=quiz_id,
                status=QuizAvailability.AVAILABLE,
                attempts_used=0,
            )
            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                row = query.one()
        return row


# Global instance
attempt_service = AttemptService()

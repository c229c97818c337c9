"""
Quiz link service: token issuance and link validation

Validation order (first failure wins):
1. token exists
2. link is active
3. link not expired
4. usage not exhausted
5. quiz exists
6. quiz is active
7. now inside the quiz validity window
8. (informational) whether the student already used this link
"""
import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quizdesk.config import settings
from quizdesk.database import storage_errors
from quizdesk.exceptions import (
    LinkDeactivated,
    LinkExhausted,
    LinkExpired,
    NotFound,
    QuizDeskError,
    QuizInactive,
    QuizMissing,
    QuizNotYetAvailable,
    QuizWindowExpired,
    TransientStorageError,
)
from quizdesk.models import Quiz, QuizLink, QuizLinkAttempt
from quizdesk.utils.cache import cache_service
from quizdesk.utils.clock import as_naive_utc, utcnow

logger = logging.getLogger(__name__)


def generate_token(num_bytes: int = None) -> str:
    """Opaque, URL-safe access token (hex, 8 bits of entropy per byte requested)"""
    return secrets.token_hex(num_bytes or settings.LINK_TOKEN_BYTES)


def build_link_url(token: str) -> str:
    return f"{settings.PUBLIC_BASE_URL.rstrip('/')}/q/{token}"


def ensure_quiz_available(quiz: Optional[Quiz], now: datetime) -> Quiz:
    """Checks 5-7; shared by link validation and attempt start"""
    if quiz is None:
        raise QuizMissing()
    if not quiz.is_active:
        raise QuizInactive()
    if quiz.valid_from and quiz.valid_from > now:
        raise QuizNotYetAvailable()
    if quiz.valid_until and quiz.valid_until < now:
        raise QuizWindowExpired()
    return quiz


def sanitize_quiz(quiz: Quiz) -> Dict[str, Any]:
    """Public quiz metadata; never includes answer keys"""
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "time_limit": quiz.time_limit,
        "passing_score": quiz.passing_score,
    }


class LinkService:
    """
    Service for issuing and validating shareable quiz links
    """

    def generate_link(
        self,
        db: Session,
        quiz_id: int,
        created_by: str = None,
        expires_at: datetime = None,
        max_uses: int = None,
    ) -> Dict[str, Any]:
        """
        Create a new link for a quiz

        A token collision on insert is retried with a fresh token a bounded
        number of times before giving up with a retryable error.
        """
        quiz = db.get(Quiz, quiz_id)
        if not quiz:
            raise NotFound("Quiz not found")

        for attempt in range(1, settings.LINK_TOKEN_MAX_RETRIES + 1):
            link = QuizLink(
                quiz_id=quiz_id,
                token=generate_token(),
                created_by=created_by,
                expires_at=as_naive_utc(expires_at),
                max_uses=max_uses or None,
                is_active=True,
                used_count=0,
            )
            db.add(link)
            try:
                with storage_errors(db, "create quiz link"):
                    db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning(f"Token collision creating link for quiz {quiz_id} (try {attempt})")
                continue

            db.refresh(link)
            logger.info(f"Quiz link created: id={link.id}, quiz={quiz_id}, max_uses={link.max_uses}")
            return self._link_summary(link)

        logger.error(f"Could not allocate a unique token for quiz {quiz_id}")
        raise TransientStorageError("Could not generate a unique quiz link. Please try again.")

    def list_links(self, db: Session, quiz_id: int) -> List[Dict[str, Any]]:
        """All links of a quiz, oldest first"""
        if not db.get(Quiz, quiz_id):
            raise NotFound("Quiz not found")

        links = (
            db.query(QuizLink)
            .filter(QuizLink.quiz_id == quiz_id)
            .order_by(QuizLink.created_at, QuizLink.id)
            .all()
        )
        return [self._link_summary(link) for link in links]

    def set_link_active(self, db: Session, link_id: int, is_active: bool) -> Dict[str, Any]:
        """Soft (de)activation; links are never deleted in normal operation"""
        link = db.get(QuizLink, link_id)
        if not link:
            raise NotFound("Quiz link not found")

        link.is_active = is_active
        with storage_errors(db, "update quiz link"):
            db.commit()

        logger.info(f"Quiz link {link_id} {'activated' if is_active else 'deactivated'}")
        return self._link_summary(link)

    def check_link(self, db: Session, token: str, now: datetime = None) -> QuizLink:
        """
        Run checks 1-7 and return the usable link

        Raises the first failing check as a domain error.
        """
        now = now or utcnow()

        link = db.query(QuizLink).filter(QuizLink.token == token).first() if token else None
        if not link:
            raise NotFound("Invalid quiz link")
        if not link.is_active:
            raise LinkDeactivated()
        if link.expires_at and link.expires_at < now:
            raise LinkExpired()
        if link.max_uses and (link.used_count or 0) >= link.max_uses:
            raise LinkExhausted()

        ensure_quiz_available(db.get(Quiz, link.quiz_id), now)
        return link

    def validate(self, db: Session, token: str, student_id: int = None) -> Dict[str, Any]:
        """
        Validate a token for display on the landing page

        Returns a result dict rather than raising: ``valid`` plus either a
        ``reason`` code or the quiz metadata and link usage.
        """
        now = utcnow()
        try:
            link = self.check_link(db, token, now)
        except QuizDeskError as e:
            logger.info(f"Link validation failed: reason={e.code}")
            return {
                "valid": False,
                "reason": e.code,
                "message": e.message,
                "status_code": e.status_code,
            }

        has_attempted = False
        if student_id is not None:
            has_attempted = (
                db.query(QuizLinkAttempt.id)
                .filter(
                    QuizLinkAttempt.quiz_link_id == link.id,
                    QuizLinkAttempt.student_id == student_id,
                )
                .first()
                is not None
            )

        usage = {
            "id": link.id,
            "max_uses": link.max_uses,
            "used_count": link.used_count or 0,
            "expires_at": link.expires_at,
        }
        quiz_meta = self._quiz_metadata(db, link.quiz_id)
        self._touch(db, link, now)

        return {
            "valid": True,
            "has_attempted": has_attempted,
            "quiz": quiz_meta,
            "link_usage": usage,
        }

    def has_attempted_quiz(self, db: Session, student_id: int, quiz_id: int) -> Dict[str, Any]:
        """Whether the student consumed any link of this quiz"""
        count = (
            db.query(QuizLinkAttempt)
            .filter(
                QuizLinkAttempt.student_id == student_id,
                QuizLinkAttempt.quiz_id == quiz_id,
            )
            .count()
        )
        return {"has_attempted": count > 0, "attempt_count": count}

    def _quiz_metadata(self, db: Session, quiz_id: int) -> Dict[str, Any]:
        cached = cache_service.get_quiz_meta(quiz_id)
        if cached:
            return cached

        meta = sanitize_quiz(db.get(Quiz, quiz_id))
        cache_service.set_quiz_meta(quiz_id, meta)
        return meta

    def _touch(self, db: Session, link: QuizLink, now: datetime) -> None:
        """Best-effort last_accessed_at update; never affects the validation result"""
        try:
            db.query(QuizLink).filter(QuizLink.id == link.id).update(
                {QuizLink.last_accessed_at: now}, synchronize_session=False
            )
            db.commit()
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to record access for link {link.id}: {str(e)}")

    def _link_summary(self, link: QuizLink) -> Dict[str, Any]:
        return {
            "id": link.id,
            "quiz_id": link.quiz_id,
            "token": link.token,
            "url": build_link_url(link.token),
            "created_at": link.created_at,
            "created_by": link.created_by,
            "expires_at": link.expires_at,
            "max_uses": link.max_uses,
            "used_count": link.used_count or 0,
            "is_active": link.is_active,
            "last_accessed_at": link.last_accessed_at,
        }


# Global instance
link_service = LinkService()

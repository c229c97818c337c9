"""
Administrator endpoints: quizzes, quiz links and attempt overrides

All routes except ``/login`` require an admin bearer token.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from quizdesk.auth import authenticate_admin, create_access_token, get_current_admin
from quizdesk.config import settings
from quizdesk.database import get_db
from quizdesk.schemas.attempt import AbandonResponse, ResetRequest, ResetResponse
from quizdesk.schemas.auth import AdminLoginRequest, Token
from quizdesk.schemas.quiz import QuizAdminResponse, QuizCreate
from quizdesk.schemas.quiz_link import LinkGenerateRequest, LinkResponse, LinkStatusUpdate
from quizdesk.services.attempt_service import attempt_service
from quizdesk.services.link_service import link_service
from quizdesk.services.quiz_service import quiz_service

router = APIRouter(prefix="/api/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/login", response_model=Token)
async def login(payload: AdminLoginRequest):
    """
    Exchange the configured admin credentials for a bearer token

    Args:
        payload: Admin email and password

    Raises:
        HTTPException: 401 when the credentials do not match

    Returns:
        Token: Access token for the ``Authorization: Bearer`` header
    """
    if not authenticate_admin(payload.email, payload.password):
        logger.warning("Admin login rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    logger.info(f"Admin {payload.email} logged in")
    return Token(
        access_token=create_access_token(payload.email.strip().lower()),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/quizzes", response_model=QuizAdminResponse, status_code=201)
async def create_quiz(
    payload: QuizCreate,
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """Create a quiz together with its questions"""
    return QuizAdminResponse(**quiz_service.create_quiz(db, payload, created_by=admin))


@router.get("/quizzes", response_model=List[QuizAdminResponse])
async def list_quizzes(
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    return [QuizAdminResponse(**quiz) for quiz in quiz_service.list_quizzes(db)]


@router.patch("/quizzes/{quiz_id}/toggle-status", response_model=QuizAdminResponse)
async def toggle_quiz_status(
    quiz_id: int,
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """Switch a quiz between active and inactive"""
    return QuizAdminResponse(**quiz_service.toggle_status(db, quiz_id))


@router.post("/quizzes/{quiz_id}/generate-link", response_model=LinkResponse, status_code=201)
async def generate_link(
    quiz_id: int,
    payload: Optional[LinkGenerateRequest] = None,
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """
    Generate a shareable quiz link

    - ``expires_at``: optional link expiry
    - ``max_uses``: optional cap on registrations through this link
    """
    payload = payload or LinkGenerateRequest()
    link = link_service.generate_link(
        db,
        quiz_id,
        created_by=admin,
        expires_at=payload.expires_at,
        max_uses=payload.max_uses,
    )
    return LinkResponse(**link)


@router.get("/quizzes/{quiz_id}/generate-link", response_model=List[LinkResponse])
async def list_links(
    quiz_id: int,
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """All links generated for a quiz with usage counters"""
    return [LinkResponse(**link) for link in link_service.list_links(db, quiz_id)]


@router.patch("/quiz-links/{link_id}", response_model=LinkResponse)
async def update_link_status(
    link_id: int,
    payload: LinkStatusUpdate,
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """Deactivate or reactivate a link"""
    return LinkResponse(**link_service.set_link_active(db, link_id, payload.is_active))


@router.post("/attempts/{attempt_id}/abandon", response_model=AbandonResponse)
async def abandon_attempt(
    attempt_id: int,
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """Mark an in-progress attempt as abandoned"""
    logger.info(f"Admin {admin} abandoning attempt {attempt_id}")
    return AbandonResponse(**attempt_service.abandon_attempt(db, attempt_id))


@router.post("/reset-test", response_model=ResetResponse)
async def reset_test(
    payload: ResetRequest,
    db: Session = Depends(get_db),
    admin: str = Depends(get_current_admin)
):
    """
    Reset a student's latest attempt on a quiz

    Deletes the attempt and its responses and makes the quiz available again.
    """
    logger.info(f"Admin {admin} resetting quiz {payload.quiz_id} for student {payload.student_id}")
    reset = attempt_service.reset_attempt(db, payload.student_id, payload.quiz_id)
    return ResetResponse(message="Test has been reset successfully", **reset)

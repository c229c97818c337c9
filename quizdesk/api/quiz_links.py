"""
Quiz link API endpoints - validation and one-time registration
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
import logging

from quizdesk.database import get_db
from quizdesk.schemas.quiz_link import (
    CheckAttemptRequest,
    CheckAttemptResponse,
    LinkValidateRequest,
    LinkValidationResponse,
    RegistrationRequest,
    RegistrationResponse,
    StudentResponse,
)
from quizdesk.services.link_service import link_service
from quizdesk.services.registration_service import registration_service

router = APIRouter(prefix="/api/quiz-links", tags=["quiz-links"])
logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")


@router.post("/validate", response_model=LinkValidationResponse)
async def validate_link(payload: LinkValidateRequest, db: Session = Depends(get_db)):
    """
    Validate a quiz link token

    - Link must exist, be active, unexpired and not used up
    - Quiz must exist, be active and inside its validity window
    - With a student id, also reports whether that student used this link

    Invalid links answer with the matching status code and a ``reason``.
    """
    result = link_service.validate(db, payload.token, payload.student_id)

    if not result["valid"]:
        return JSONResponse(
            status_code=result["status_code"],
            content=LinkValidationResponse(
                valid=False,
                reason=result["reason"],
                message=result["message"],
            ).model_dump(mode="json", exclude_none=True),
        )

    return LinkValidationResponse(**result)


@router.post("/register", response_model=RegistrationResponse)
async def register_for_link(
    payload: RegistrationRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Register a student through a quiz link

    - Creates the student or refreshes their phone number
    - One registration per student per link (403 ``already_attempted``)
    - Returns the link attempt id to send back on completion
    """
    binding = registration_service.register(
        db,
        token=payload.token,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    return RegistrationResponse(
        student=StudentResponse.model_validate(binding["student"]),
        quiz_id=binding["quiz_id"],
        link_attempt_id=binding["link_attempt_id"],
    )


@router.post("/check-attempt", response_model=CheckAttemptResponse)
async def check_attempt(payload: CheckAttemptRequest, db: Session = Depends(get_db)):
    """Whether a student already used any link of a quiz"""
    return CheckAttemptResponse(
        **link_service.has_attempted_quiz(db, payload.student_id, payload.quiz_id)
    )

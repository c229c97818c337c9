"""
Attempt API endpoints - start/resume, answers, time sync, completion and
the reload-abuse guard
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
import logging
from typing import Optional

from quizdesk.api.quiz_links import client_ip
from quizdesk.database import get_db
from quizdesk.exceptions import AlreadyCompleted, NotFound
from quizdesk.models import Attempt, AttemptStatus
from quizdesk.schemas.attempt import (
    AnswerSaveRequest,
    AnswerSaveResponse,
    AttemptCompleteRequest,
    AttemptResult,
    AttemptStartRequest,
    AttemptStartResponse,
    DisruptionRequest,
    GuardConfirmRequest,
    GuardResponse,
    TimeSyncRequest,
    TimeSyncResponse,
)
from quizdesk.services.attempt_service import attempt_service
from quizdesk.services.reload_guard import (
    GuardDecision,
    KeyValueStore,
    QuizSessionContext,
    ReloadGuard,
    get_guard_store,
)

router = APIRouter(prefix="/api/attempts", tags=["attempts"])
logger = logging.getLogger(__name__)


@router.post("/start", response_model=AttemptStartResponse)
async def start_attempt(
    payload: AttemptStartRequest,
    request: Request,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_guard_store)
):
    """
    Start a new attempt or resume the one in progress

    - Resume returns the same attempt id, remaining time and saved answers
    - An attempt whose time ran out is completed and returned as such
    - A submission interrupted by a reload is finished here
    """
    started = attempt_service.start_attempt(
        db,
        quiz_id=payload.quiz_id,
        student_id=payload.student_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )

    if started["resumed"] and started["status"] == AttemptStatus.IN_PROGRESS:
        guard = _guard(db, store, db.get(Attempt, started["attempt_id"]))
        decision = guard.resume()
        if decision.result:
            started = {
                **started,
                "status": decision.result["status"],
                "time_remaining_seconds": 0,
                "result": decision.result,
            }
    else:
        # Fresh attempt or finished on load: no guard state carries over
        QuizSessionContext(payload.quiz_id, payload.student_id, started["attempt_id"], store).clear()

    return AttemptStartResponse(**started)


@router.api_route("/save-answer", methods=["POST", "PUT"], response_model=AnswerSaveResponse)
async def save_answer(payload: AnswerSaveRequest, db: Session = Depends(get_db)):
    """
    Save (POST) or replace (PUT) the answer to one question

    Both verbs upsert; correctness is decided server-side.
    """
    saved = attempt_service.save_answer(
        db,
        attempt_id=payload.attempt_id,
        question_id=payload.question_id,
        selected_answer=payload.selected_answer,
        time_spent=payload.time_spent,
        client_is_correct=payload.is_correct,
    )
    return AnswerSaveResponse(**saved)


@router.post("/sync-time", response_model=TimeSyncResponse)
async def sync_time(payload: TimeSyncRequest, db: Session = Depends(get_db)):
    """Checkpoint remaining time; out-of-order values are ignored"""
    return TimeSyncResponse(
        **attempt_service.sync_time(db, payload.attempt_id, payload.time_remaining)
    )


@router.post("/complete", response_model=AttemptResult)
async def complete_attempt(
    payload: AttemptCompleteRequest,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_guard_store)
):
    """
    Complete and score an attempt

    Scored from the answers stored so far; unanswered questions count as
    incorrect. Repeating the call returns the same result.
    """
    result = attempt_service.complete_attempt(
        db,
        payload.attempt_id,
        time_spent=payload.time_spent,
        link_attempt_id=payload.link_attempt_id,
        reported=payload.model_dump(include={"score", "total_questions", "correct_answers"}),
    )

    attempt = db.get(Attempt, payload.attempt_id)
    context = QuizSessionContext(attempt.quiz_id, attempt.student_id, attempt.id, store)
    context.save_result(result)
    context.clear()

    return AttemptResult(**result)


@router.post("/{attempt_id}/disruptions", response_model=GuardResponse)
async def report_disruption(
    attempt_id: int,
    payload: DisruptionRequest,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_guard_store)
):
    """
    Report a reload / navigation / tab-hidden / unload event

    - Below the threshold: ``prompt`` (ask the student to confirm)
    - At the threshold: ``auto_submitted`` with the final result
    """
    guard = _guard(db, store, _get_attempt(db, attempt_id), payload.link_attempt_id)
    return _guard_response(guard.on_disruption(payload.event))


@router.post("/{attempt_id}/disruptions/confirm", response_model=GuardResponse)
async def confirm_disruption(
    attempt_id: int,
    payload: Optional[GuardConfirmRequest] = None,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_guard_store)
):
    """Student confirmed leaving: submit with the current answers"""
    link_attempt_id = payload.link_attempt_id if payload else None
    guard = _guard(db, store, _get_attempt(db, attempt_id), link_attempt_id)
    return _guard_response(guard.confirm())


@router.post("/{attempt_id}/disruptions/cancel", response_model=GuardResponse)
async def cancel_disruption(
    attempt_id: int,
    db: Session = Depends(get_db),
    store: KeyValueStore = Depends(get_guard_store)
):
    """Student stayed: close the prompt and keep going"""
    guard = _guard(db, store, _get_attempt(db, attempt_id, in_progress=False))
    return _guard_response(guard.cancel())


def _get_attempt(db: Session, attempt_id: int, in_progress: bool = True) -> Attempt:
    attempt = db.get(Attempt, attempt_id)
    if not attempt:
        raise NotFound("Attempt not found")
    if in_progress and not attempt.is_in_progress:
        raise AlreadyCompleted()
    return attempt


def _guard(db: Session, store: KeyValueStore, attempt: Attempt, link_attempt_id: int = None) -> ReloadGuard:
    context = QuizSessionContext(
        quiz_id=attempt.quiz_id,
        student_id=attempt.student_id,
        attempt_id=attempt.id,
        store=store,
        link_attempt_id=link_attempt_id,
    )
    return ReloadGuard(
        context,
        submit=lambda: attempt_service.complete_attempt(
            db, attempt.id, link_attempt_id=context.link_attempt_id
        ),
    )


def _guard_response(decision: GuardDecision) -> GuardResponse:
    return GuardResponse(
        action=decision.action.value,
        count=decision.count,
        threshold=decision.threshold,
        result=AttemptResult(**decision.result) if decision.result else None,
    )

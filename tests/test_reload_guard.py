import pytest

from quizdesk.models import Attempt
from quizdesk.services.attempt_service import attempt_service
from quizdesk.services.reload_guard import (
    DisruptionEvent,
    GuardAction,
    InMemoryStore,
    QuizSessionContext,
    ReloadGuard,
)

RESULT = {"attempt_id": 7, "status": "completed", "score": 80}


def make_guard(store=None, student_id=2, submit=None):
    calls = []

    def default_submit():
        calls.append(1)
        return dict(RESULT)

    context = QuizSessionContext(quiz_id=1, student_id=student_id, attempt_id=7, store=store or InMemoryStore())
    return ReloadGuard(context, submit or default_submit, threshold=3), calls


def test_first_disruptions_prompt_for_confirmation():
    guard, calls = make_guard()

    decision = guard.on_disruption(DisruptionEvent.RELOAD_SHORTCUT)

    assert decision.action is GuardAction.PROMPT
    assert decision.count == 1
    assert guard.context.prompt_open
    assert calls == []


def test_events_while_prompt_is_open_are_ignored():
    guard, _ = make_guard()
    guard.on_disruption(DisruptionEvent.NAVIGATION)

    decision = guard.on_disruption(DisruptionEvent.VISIBILITY_LOSS)

    assert decision.action is GuardAction.IGNORED
    assert guard.context.reload_attempts == 1


def test_third_disruption_auto_submits_exactly_once():
    guard, calls = make_guard()
    for _ in range(2):
        assert guard.on_disruption(DisruptionEvent.VISIBILITY_LOSS).action is GuardAction.PROMPT
        assert guard.cancel().action is GuardAction.CANCELLED

    decision = guard.on_disruption(DisruptionEvent.UNLOAD)

    assert decision.action is GuardAction.AUTO_SUBMITTED
    assert decision.count == 3
    assert decision.result == RESULT
    assert calls == [1]
    assert guard.context.reload_attempts == 0
    assert not guard.context.auto_submit
    assert guard.context.last_result() == RESULT


def test_confirm_submits_with_current_answers():
    guard, calls = make_guard()
    guard.on_disruption("reload_shortcut")

    decision = guard.confirm()

    assert decision.action is GuardAction.SUBMITTED
    assert decision.result == RESULT
    assert calls == [1]
    assert not guard.context.prompt_open


def test_confirm_without_prompt_does_nothing():
    guard, calls = make_guard()
    assert guard.confirm().action is GuardAction.IGNORED
    assert calls == []


def test_counter_survives_reload():
    store = InMemoryStore()
    before, _ = make_guard(store)
    before.on_disruption(DisruptionEvent.RELOAD_SHORTCUT)
    before.cancel()
    before.on_disruption(DisruptionEvent.RELOAD_SHORTCUT)
    before.cancel()

    after, calls = make_guard(store)
    decision = after.on_disruption(DisruptionEvent.RELOAD_SHORTCUT)

    assert decision.action is GuardAction.AUTO_SUBMITTED
    assert calls == [1]


def test_resume_finishes_interrupted_auto_submit():
    guard, calls = make_guard()
    guard.context.auto_submit = True

    assert guard.resume().action is GuardAction.AUTO_SUBMITTED
    assert guard.resume().action is GuardAction.NONE
    assert calls == [1]


def test_state_is_scoped_per_student():
    store = InMemoryStore()
    first, _ = make_guard(store, student_id=1)
    second, _ = make_guard(store, student_id=2)

    first.on_disruption(DisruptionEvent.NAVIGATION)

    assert first.context.reload_attempts == 1
    assert second.context.reload_attempts == 0


def test_failed_submission_clears_state_and_propagates():
    def failing_submit():
        raise RuntimeError("storage down")

    guard, _ = make_guard(submit=failing_submit)
    guard.on_disruption(DisruptionEvent.NAVIGATION)

    with pytest.raises(RuntimeError):
        guard.confirm()
    assert not guard.context.submitting
    assert guard.context.reload_attempts == 0


def _disrupt(client, attempt_id, event="reload_shortcut"):
    return client.post(f"/api/attempts/{attempt_id}/disruptions", json={"event": event})


def test_api_escalates_to_auto_submit(client, db, make_quiz, make_student, monkeypatch):
    quiz = make_quiz(answers="ABCDA")
    student = make_student()
    attempt_id = client.post(
        "/api/attempts/start", json={"quiz_id": quiz.id, "student_id": student.id}
    ).json()["attempt_id"]
    for question in quiz.questions[:2]:
        client.post(
            "/api/attempts/save-answer",
            json={"attempt_id": attempt_id, "question_id": question.id, "selected_answer": question.correct_answer},
        )

    completed = []
    real_complete = attempt_service.complete_attempt

    def counting_complete(db_session, target_id, *args, **kwargs):
        completed.append(target_id)
        return real_complete(db_session, target_id, *args, **kwargs)

    monkeypatch.setattr(attempt_service, "complete_attempt", counting_complete)

    for count in (1, 2):
        prompt = _disrupt(client, attempt_id).json()
        assert prompt["action"] == "prompt"
        assert prompt["count"] == count
        client.post(f"/api/attempts/{attempt_id}/disruptions/cancel")

    decision = _disrupt(client, attempt_id, "visibility_loss").json()

    assert decision["action"] == "auto_submitted"
    assert decision["result"]["score"] == 40
    assert decision["result"]["correct_answers"] == 2
    assert completed == [attempt_id]
    assert db.get(Attempt, attempt_id).status == "completed"
    assert _disrupt(client, attempt_id).status_code == 409


def test_api_confirm_submits(client, make_quiz, make_student):
    quiz = make_quiz(answers="AB")
    attempt_id = client.post(
        "/api/attempts/start", json={"quiz_id": quiz.id, "student_id": make_student().id}
    ).json()["attempt_id"]
    _disrupt(client, attempt_id, "navigation")

    decision = client.post(f"/api/attempts/{attempt_id}/disruptions/confirm").json()

    assert decision["action"] == "submitted"
    assert decision["result"]["status"] == "completed"
    assert decision["result"]["score"] == 0


def test_api_rejects_unknown_event(client, make_quiz, make_student):
    quiz = make_quiz()
    attempt_id = client.post(
        "/api/attempts/start", json={"quiz_id": quiz.id, "student_id": make_student().id}
    ).json()["attempt_id"]

    assert _disrupt(client, attempt_id, "screenshot").status_code == 422


def test_start_completes_pending_auto_submit(client, guard_store, make_quiz, make_student):
    quiz = make_quiz(answers="AB")
    student = make_student()
    attempt_id = client.post(
        "/api/attempts/start", json={"quiz_id": quiz.id, "student_id": student.id}
    ).json()["attempt_id"]
    QuizSessionContext(quiz.id, student.id, attempt_id, guard_store).auto_submit = True

    body = client.post("/api/attempts/start", json={"quiz_id": quiz.id, "student_id": student.id}).json()

    assert body["attempt_id"] == attempt_id
    assert body["status"] == "completed"
    assert body["result"]["status"] == "completed"

import threading

import pytest

from quizdesk.database import SessionLocal
from quizdesk.exceptions import AlreadyAttempted, LinkExhausted
from quizdesk.models import QuizLinkAttempt, Student
from quizdesk.services.registration_service import registration_service


def register(client, token, email="ada@example.com", phone="9876543210", name="Ada Lovelace"):
    return client.post(
        "/api/quiz-links/register",
        json={"name": name, "email": email, "phone": phone, "token": token},
    )


def test_register_binds_student_to_link(client, db, make_quiz, make_link):
    quiz = make_quiz()
    link = make_link(quiz)

    response = register(client, link.token, email="Ada@Example.com")

    assert response.status_code == 200
    body = response.json()
    assert body["quiz_id"] == quiz.id
    assert body["student"]["email"] == "ada@example.com"
    assert isinstance(body["link_attempt_id"], int)

    db.refresh(link)
    assert link.used_count == 1
    assert link.last_accessed_at is not None


def test_second_registration_is_already_attempted(client, db, make_quiz, make_link):
    link = make_link(make_quiz())

    assert register(client, link.token).status_code == 200
    response = register(client, link.token)

    assert response.status_code == 403
    assert response.json()["error"] == "already_attempted"
    assert response.json()["retryable"] is False

    db.refresh(link)
    assert link.used_count == 1
    assert db.query(QuizLinkAttempt).count() == 1


def test_max_uses_is_never_exceeded(client, db, make_quiz, make_link):
    link = make_link(make_quiz(), max_uses=2)

    assert register(client, link.token, email="one@example.com").status_code == 200
    assert register(client, link.token, email="two@example.com").status_code == 200
    response = register(client, link.token, email="three@example.com")

    assert response.status_code == 403
    assert response.json()["error"] == "exhausted_uses"
    db.refresh(link)
    assert link.used_count == 2


def test_returning_student_gets_phone_refreshed(client, db, make_quiz, make_link):
    quiz = make_quiz()
    first = register(client, make_link(quiz).token, phone="1111111111")
    second = register(client, make_link(quiz).token, phone="2222222222", name="Ada King")

    assert first.json()["student"]["id"] == second.json()["student"]["id"]
    student = db.get(Student, second.json()["student"]["id"])
    assert student.phone == "2222222222"
    assert student.name == "Ada King"
    assert db.query(Student).count() == 1


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"email": "not-an-email"}, "Invalid email format"),
        ({"phone": "12345"}, "Phone number must be exactly 10 digits"),
        ({"phone": "12345abcde"}, "Phone number must be exactly 10 digits"),
        ({"name": "   "}, "All fields are required"),
    ],
)
def test_malformed_input_is_rejected_before_storage(client, db, make_quiz, make_link, overrides, message):
    link = make_link(make_quiz())
    payload = {"name": "Ada", "email": "ada@example.com", "phone": "9876543210", "token": link.token}
    payload.update(overrides)

    response = client.post("/api/quiz-links/register", json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"
    assert response.json()["message"] == message
    assert db.query(Student).count() == 0


def test_validation_runs_before_token_lookup(client):
    response = register(client, "unknown-token", email="nope")
    assert response.status_code == 400


def test_registration_on_dead_link_uses_link_taxonomy(client, make_quiz, make_link):
    link = make_link(make_quiz(), is_active=False)
    response = register(client, link.token)

    assert response.status_code == 403
    assert response.json()["error"] == "deactivated"


def _register_concurrently(token, emails):
    barrier = threading.Barrier(len(emails))
    outcomes = []
    lock = threading.Lock()

    def worker(email):
        session = SessionLocal()
        try:
            barrier.wait()
            registration_service.register(session, token, "Racer", email, "9876543210")
            outcome = "ok"
        except (AlreadyAttempted, LinkExhausted) as e:
            outcome = e.code
        finally:
            session.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(email,)) for email in emails]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return sorted(outcomes)


def test_concurrent_duplicate_registration_succeeds_once(db, make_quiz, make_link, make_student):
    link = make_link(make_quiz())
    make_student(email="racer@example.com", phone="9876543210")

    outcomes = _register_concurrently(link.token, ["racer@example.com", "racer@example.com"])

    assert outcomes == ["already_attempted", "ok"]
    assert db.query(QuizLinkAttempt).filter(QuizLinkAttempt.quiz_link_id == link.id).count() == 1
    db.refresh(link)
    assert link.used_count == 1


def test_concurrent_registrations_respect_max_uses(db, make_quiz, make_link, make_student):
    link = make_link(make_quiz(), max_uses=1)
    make_student(email="first@example.com")
    make_student(email="second@example.com")

    outcomes = _register_concurrently(link.token, ["first@example.com", "second@example.com"])

    assert outcomes == ["exhausted_uses", "ok"]
    db.refresh(link)
    assert link.used_count == 1
    assert db.query(QuizLinkAttempt).filter(QuizLinkAttempt.quiz_link_id == link.id).count() == 1

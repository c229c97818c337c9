from datetime import timedelta

import pytest
from jose import jwt

from quizdesk.auth import create_access_token
from quizdesk.config import settings

QUIZ_PAYLOAD = {
    "title": "Networking 101",
    "description": "TCP/IP fundamentals",
    "time_limit": 15,
    "passing_score": 60,
    "questions": [
        {"text": "Layer of IP?", "options": ["1", "2", "3", "4"], "correct_answer": "c"},
        {"text": "Port of HTTPS?", "options": ["80", "443", "22", "21"], "correct_answer": "B", "order": 1},
    ],
}


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/api/admin/quizzes"),
        ("post", "/api/admin/quizzes"),
        ("patch", "/api/admin/quizzes/1/toggle-status"),
        ("post", "/api/admin/quizzes/1/generate-link"),
        ("get", "/api/admin/quizzes/1/generate-link"),
        ("patch", "/api/admin/quiz-links/1"),
        ("post", "/api/admin/attempts/1/abandon"),
        ("post", "/api/admin/reset-test"),
    ],
)
def test_admin_routes_require_token(client, method, path):
    response = getattr(client, method)(path)
    assert response.status_code == 401


def test_expired_or_foreign_tokens_are_rejected(client):
    expired = create_access_token("admin", expires_delta=timedelta(minutes=-1))
    foreign = jwt.encode({"sub": "admin", "role": "admin"}, "other-secret", algorithm=settings.JWT_ALGORITHM)
    student = jwt.encode({"sub": "ada", "role": "student"}, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

    for token in (expired, foreign, student):
        response = client.get("/api/admin/quizzes", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


def test_create_and_list_quizzes(client, admin_headers):
    created = client.post("/api/admin/quizzes", json=QUIZ_PAYLOAD, headers=admin_headers)

    assert created.status_code == 201
    assert created.json()["question_count"] == 2
    assert created.json()["passing_score"] == 60
    assert created.json()["max_attempts"] == 1

    listed = client.get("/api/admin/quizzes", headers=admin_headers).json()
    assert [quiz["title"] for quiz in listed] == ["Networking 101"]


def test_create_quiz_requires_four_options(client, admin_headers):
    payload = {**QUIZ_PAYLOAD, "questions": [{"text": "?", "options": ["a", "b", "c"], "correct_answer": "A"}]}
    assert client.post("/api/admin/quizzes", json=payload, headers=admin_headers).status_code == 422


def test_create_quiz_rejects_inverted_window(client, admin_headers):
    payload = {**QUIZ_PAYLOAD, "valid_from": "2030-01-02T00:00:00", "valid_until": "2030-01-01T00:00:00"}
    assert client.post("/api/admin/quizzes", json=payload, headers=admin_headers).status_code == 422


def test_toggle_status_closes_links(client, admin_headers, make_quiz, make_link):
    quiz = make_quiz()
    link = make_link(quiz)

    toggled = client.patch(f"/api/admin/quizzes/{quiz.id}/toggle-status", headers=admin_headers)

    assert toggled.json()["is_active"] is False
    validation = client.post("/api/quiz-links/validate", json={"token": link.token})
    assert validation.json()["reason"] == "quiz_inactive"


def test_generate_list_and_deactivate_links(client, admin_headers, make_quiz):
    quiz = make_quiz()

    generated = client.post(
        f"/api/admin/quizzes/{quiz.id}/generate-link",
        json={"max_uses": 10},
        headers=admin_headers,
    )
    assert generated.status_code == 201
    link = generated.json()
    assert link["created_by"] == "admin@example.com"
    assert link["max_uses"] == 10

    without_body = client.post(f"/api/admin/quizzes/{quiz.id}/generate-link", headers=admin_headers)
    assert without_body.status_code == 201
    assert without_body.json()["max_uses"] is None

    listed = client.get(f"/api/admin/quizzes/{quiz.id}/generate-link", headers=admin_headers).json()
    assert [item["id"] for item in listed] == [link["id"], without_body.json()["id"]]

    updated = client.patch(
        f"/api/admin/quiz-links/{link['id']}", json={"is_active": False}, headers=admin_headers
    )
    assert updated.json()["is_active"] is False
    assert client.post("/api/quiz-links/validate", json={"token": link["token"]}).json()["reason"] == "deactivated"


def test_generate_link_for_unknown_quiz(client, admin_headers):
    response = client.post("/api/admin/quizzes/999/generate-link", headers=admin_headers)
    assert response.status_code == 404


def test_abandon_finished_attempt_is_conflict(client, admin_headers, make_quiz, make_student):
    quiz = make_quiz()
    attempt_id = client.post(
        "/api/attempts/start", json={"quiz_id": quiz.id, "student_id": make_student().id}
    ).json()["attempt_id"]
    client.post("/api/attempts/complete", json={"attempt_id": attempt_id})

    response = client.post(f"/api/admin/attempts/{attempt_id}/abandon", headers=admin_headers)

    assert response.status_code == 409


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["cache"] == "disabled"


def test_registration_is_rate_limited(client):
    payload = {"name": "Ada", "email": "bad", "phone": "1", "token": "x"}
    statuses = [
        client.post("/api/quiz-links/register", json=payload).status_code
        for _ in range(settings.REGISTER_RATE_LIMIT_PER_MINUTE + 1)
    ]

    assert statuses[:-1] == [400] * settings.REGISTER_RATE_LIMIT_PER_MINUTE
    assert statuses[-1] == 429


def login(client, email="admin@example.com", password="correct-horse"):
    return client.post("/api/admin/login", json={"email": email, "password": password})


def test_login_issues_token_that_unlocks_admin_routes(client):
    response = login(client, email=" Admin@Example.com ")

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60

    headers = {"Authorization": f"Bearer {body['access_token']}"}
    created = client.post("/api/admin/quizzes", json=QUIZ_PAYLOAD, headers=headers)
    assert created.status_code == 201
    link = client.post(f"/api/admin/quizzes/{created.json()['id']}/generate-link", headers=headers)
    assert link.status_code == 201


@pytest.mark.parametrize(
    "email,password",
    [("admin@example.com", "wrong"), ("someone@example.com", "correct-horse")],
)
def test_login_rejects_bad_credentials(client, email, password):
    response = login(client, email=email, password=password)

    assert response.status_code == 401
    assert "access_token" not in response.json()


def test_login_disabled_without_configured_credentials(client, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", None)

    assert login(client).status_code == 401

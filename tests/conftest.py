"""
Shared fixtures: a throwaway SQLite database, API client and model factories
"""
import os
import tempfile

_tmp_dir = tempfile.mkdtemp(prefix="quizdesk-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'quizdesk.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "correct-horse"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from quizdesk.auth import create_access_token
from quizdesk.database import Base, SessionLocal, engine, init_db
from quizdesk.main import app
from quizdesk.models import Question, Quiz, QuizLink, Student
from quizdesk.services.link_service import generate_token
from quizdesk.services.reload_guard import InMemoryStore, get_guard_store
from quizdesk.utils.rate_limiter import rate_limiter


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.drop_all(bind=engine)
    init_db(engine)
    rate_limiter.reset()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def guard_store():
    return InMemoryStore()


@pytest.fixture
def client(guard_store):
    app.dependency_overrides[get_guard_store] = lambda: guard_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token('admin@example.com')}"}


@pytest.fixture
def make_quiz(db):
    """Quiz with one question per letter in ``answers`` (the answer key)"""

    def _make_quiz(answers="ABCDA", **overrides):
        values = {
            "title": "Python Basics",
            "description": "Warm-up quiz",
            "time_limit": 10,
            "passing_score": 70,
            "max_attempts": 1,
            "is_active": True,
        }
        values.update(overrides)
        quiz = Quiz(**values)
        quiz.questions = [
            Question(
                text=f"Question {index + 1}",
                options=["first", "second", "third", "fourth"],
                correct_answer=letter,
                order=index,
            )
            for index, letter in enumerate(answers)
        ]
        db.add(quiz)
        db.commit()
        db.refresh(quiz)
        return quiz

    return _make_quiz


@pytest.fixture
def make_student(db):
    def _make_student(email="ada@example.com", name="Ada Lovelace", phone="9876543210"):
        student = Student(name=name, email=email, phone=phone)
        db.add(student)
        db.commit()
        db.refresh(student)
        return student

    return _make_student


@pytest.fixture
def make_link(db):
    def _make_link(quiz, **overrides):
        values = {"quiz_id": quiz.id, "token": generate_token(), "is_active": True, "used_count": 0}
        values.update(overrides)
        link = QuizLink(**values)
        db.add(link)
        db.commit()
        db.refresh(link)
        return link

    return _make_link

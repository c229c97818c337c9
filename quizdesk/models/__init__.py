"""
Database models package
"""
from quizdesk.models.student import Student
from quizdesk.models.quiz import Quiz, Question
from quizdesk.models.quiz_link import QuizLink, QuizLinkAttempt
from quizdesk.models.attempt import Attempt, AttemptStatus, Response
from quizdesk.models.student_quiz_status import StudentQuizStatus, QuizAvailability

__all__ = [
    "Student",
    "Quiz",
    "Question",
    "QuizLink",
    "QuizLinkAttempt",
    "Attempt",
    "AttemptStatus",
    "Response",
    "StudentQuizStatus",
    "QuizAvailability",
]

import pytest

from quizdesk.exceptions import ValidationFailed
from quizdesk.models import Question
from quizdesk.services.grading_service import grading_service


@pytest.mark.parametrize(
    "correct,total,expected",
    [
        (7, 10, 70),
        (4, 5, 80),
        (5, 5, 100),
        (0, 5, 0),
        (1, 8, 13),
        (1, 3, 33),
        (2, 3, 67),
        (0, 0, 0),
    ],
)
def test_calculate_score_rounds_half_up(correct, total, expected):
    assert grading_service.calculate_score(correct, total) == expected


def test_pass_mark_is_inclusive():
    assert grading_service.is_passed(70, 70)
    assert not grading_service.is_passed(70, 75)


def test_grade_counts_unanswered_in_denominator():
    correct, score = grading_service.grade([True, True, True, True], 5)
    assert (correct, score) == (4, 80)


def test_grade_ignores_incorrect_flags():
    assert grading_service.grade([True, False, True], 5) == (2, 40)


def test_normalize_choice_uppercases():
    question = Question(options=["a", "b", "c", "d"], correct_answer="C")
    assert grading_service.normalize_choice(question, " c ") == "C"
    assert grading_service.is_correct_choice(question, "C")
    assert not grading_service.is_correct_choice(question, "A")


@pytest.mark.parametrize("selected", ["E", "", None, "1"])
def test_normalize_choice_rejects_letters_outside_options(selected):
    question = Question(options=["a", "b", "c", "d"], correct_answer="A")
    with pytest.raises(ValidationFailed):
        grading_service.normalize_choice(question, selected)

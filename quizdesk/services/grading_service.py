"""
Grading service for multiple-choice attempts

Correctness is decided once, when an answer is saved, against the question's
stored key. Completion only aggregates the stored Response flags.
"""
import logging
from typing import Iterable, Optional, Tuple

from quizdesk.exceptions import ValidationFailed
from quizdesk.models import Question

logger = logging.getLogger(__name__)


class GradingService:
    """
    Service for grading choice-letter answers

    Strategy:
    - Answer letters A, B, C, ... map to option positions
    - Exact match against Question.correct_answer (case-insensitive)
    - Unanswered questions count as incorrect and stay in the denominator
    """

    FIRST_LETTER = "A"

    def normalize_choice(self, question: Question, selected: Optional[str]) -> str:
        """Validate a choice letter against the question's option count"""
        letter = (selected or "").strip().upper()
        option_count = len(question.options or []) or 4
        allowed = [chr(ord(self.FIRST_LETTER) + i) for i in range(option_count)]

        if letter not in allowed:
            raise ValidationFailed(
                f"Selected answer must be one of {', '.join(allowed)}"
            )
        return letter

    def is_correct_choice(self, question: Question, letter: str) -> bool:
        return letter == (question.correct_answer or "").strip().upper()

    def calculate_score(self, correct: int, total: int) -> int:
        """
        Percentage score rounded half-up

        Integer arithmetic keeps 0.5 boundaries exact: 1/8 -> 13, 7/10 -> 70.
        """
        if total <= 0:
            return 0
        correct = max(0, min(correct, total))
        return (200 * correct + total) // (2 * total)

    def is_passed(self, score: int, passing_score: int) -> bool:
        return score >= passing_score

    def grade(self, correct_flags: Iterable[bool], total_questions: int) -> Tuple[int, int]:
        """
        Aggregate stored correctness flags

        Returns:
            Tuple of (correct_answers, score)
        """
        correct = sum(1 for flag in correct_flags if flag)
        score = self.calculate_score(correct, total_questions)
        logger.debug(f"Graded attempt: {correct}/{total_questions} -> {score}%")
        return correct, score


# Global instance
grading_service = GradingService()

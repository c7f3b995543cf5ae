"""
Builds the answer list shown for a question.
"""
import random
from typing import List, Optional

from .models import Question


def present_answers(question: Question, rng: Optional[random.Random] = None) -> List[str]:
    """
    Combine the correct and incorrect answers into one shuffled list.

    The order is re-derived on every call. Callers that need a stable
    order for the lifetime of a question must keep the returned list.

    Args:
        question: Question to build answers for
        rng: Optional random source, mainly for deterministic tests

    Returns:
        New list holding every answer exactly once, in random order
    """
    answers = list(question.incorrect_answers)
    answers.append(question.correct_answer)

    # random.shuffle is an in-place Fisher-Yates shuffle
    (rng or random).shuffle(answers)
    return answers

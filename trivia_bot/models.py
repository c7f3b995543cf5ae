"""
Core data models for the Trivia Session Bot.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Question:
    """A single multiple-choice question as delivered by the question bank."""
    text: str
    correct_answer: str
    incorrect_answers: Tuple[str, ...] = ()
    category: Optional[str] = None
    difficulty: Optional[str] = None


# Ordered, immutable once loaded
QuestionBatch = Tuple[Question, ...]


class Phase(Enum):
    """Discrete states of a trivia session."""
    LOADING = "loading"
    FAILED = "failed"
    ACTIVE = "active"
    FEEDBACK = "feedback"
    FINISHED = "finished"


@dataclass
class TriviaSettings:
    """Configuration for fetching and playing a trivia session."""
    api_base_url: str = "https://opentdb.com"
    amount: int = 10
    category: int = 9
    question_type: str = "multiple"
    max_retries: int = 3
    retry_delay: float = 2.0
    advance_delay: float = 1.5
    request_timeout: float = 10.0


@dataclass
class SessionState:
    """Mutable state of one trivia session, written only by QuizStateMachine."""
    phase: Phase = Phase.LOADING
    questions: QuestionBatch = ()
    current_index: int = 0
    selected_answer: Optional[str] = None
    score: int = 0
    error_message: Optional[str] = None
    presented_answers: List[str] = field(default_factory=list)

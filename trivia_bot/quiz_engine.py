"""
Quiz engine core logic for the Trivia Session Bot.
Owns the session state machine and the deferred auto-advance timer.
"""
import asyncio
import inspect
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from .answer_presenter import present_answers
from .models import Phase, Question, SessionState, TriviaSettings

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer and phase lifecycle events."""

    @staticmethod
    def log_timer_scheduled(session_id: str, delay: float, generation: int) -> None:
        """Log scheduling of a deferred transition."""
        logger.debug(
            f"Timer lifecycle: SCHEDULED - Session {session_id}, Delay {delay:.2f}s, Generation {generation}",
            extra={
                'event_type': 'timer_scheduled',
                'session_id': session_id,
                'delay': delay,
                'generation': generation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_completion(session_id: str, completion_type: str, generation: int) -> None:
        """Log timer completion (natural expiry or cancellation)."""
        logger.debug(
            f"Timer lifecycle: COMPLETED - Session {session_id}, Type {completion_type}, Generation {generation}",
            extra={
                'event_type': 'timer_completed',
                'session_id': session_id,
                'completion_type': completion_type,
                'generation': generation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_phase_transition(session_id: str, from_phase: Phase, to_phase: Phase, reason: str = None) -> None:
        """Log session phase transitions."""
        logger.info(
            f"Session lifecycle: PHASE_TRANSITION - Session {session_id}, {from_phase.value} -> {to_phase.value}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'phase_transition',
                'session_id': session_id,
                'from_phase': from_phase.value,
                'to_phase': to_phase.value,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_stale_timer(session_id: str, details: str) -> None:
        """Log a timer that fired after its state was superseded."""
        logger.warning(
            f"Timer lifecycle: STALE_TIMER - Session {session_id}: {details}",
            extra={
                'event_type': 'timer_stale',
                'session_id': session_id,
                'details': details,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(session_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Session {session_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'session_id': session_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )


class DeferredTransition:
    """One-shot cancellable timer that runs a callback after a delay."""

    def __init__(self, session_id: str = None, generation: int = 0):
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._session_id = session_id
        self._generation = generation

    def start(self, delay: float, callback: Callable[[], Any]) -> asyncio.Task:
        """
        Schedule ``callback`` to run after ``delay`` seconds.

        Must be called from inside a running event loop. ``callback`` may be
        a plain function or return an awaitable.
        """
        TimerLifecycleLogger.log_timer_scheduled(self._session_id, delay, self._generation)
        self._task = asyncio.get_running_loop().create_task(self._run(delay, callback))
        return self._task

    async def _run(self, delay: float, callback: Callable[[], Any]) -> None:
        try:
            await asyncio.sleep(delay)
            if self._is_cancelled:
                TimerLifecycleLogger.log_timer_completion(self._session_id, "cancelled", self._generation)
                return

            TimerLifecycleLogger.log_timer_completion(self._session_id, "natural_expiry", self._generation)
            result = callback()
            if inspect.isawaitable(result):
                await result

        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._session_id, "asyncio_cancelled", self._generation)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._session_id,
                "callback_error",
                str(e),
                "deferred_transition"
            )
            raise

    def cancel(self) -> bool:
        """
        Cancel the timer.

        Returns:
            True if a pending task was cancelled, False if nothing was pending
        """
        self._is_cancelled = True
        if self._task and not self._task.done():
            self._task.cancel()
            return True
        return False

    @property
    def is_pending(self) -> bool:
        """Check if the timer has been started and has not finished yet."""
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def is_cancelled(self) -> bool:
        """Check if timer is cancelled."""
        return self._is_cancelled

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task


class QuizStateMachine:
    """
    State machine for one trivia session.

    All mutations of the SessionState go through the transition methods
    below. Operations that are not valid for the current phase are
    rejected silently by returning False; they represent races between
    user input and scheduled transitions, not faults.

    The auto-advance timer is tagged with a generation number. Selecting
    an answer, restarting and tearing down all bump the generation, so a
    timer that fires late cannot overwrite newer state.
    """

    def __init__(
        self,
        settings: Optional[TriviaSettings] = None,
        session_id: str = None,
        rng: Optional[random.Random] = None
    ):
        """
        Initialize the state machine in the LOADING phase.

        Args:
            settings: Trivia settings, only ``advance_delay`` is used here
            session_id: Identifier used in log records
            rng: Optional random source for answer shuffling
        """
        self.settings = settings or TriviaSettings()
        self.session_id = session_id
        self._rng = rng
        self._state = SessionState()
        self._generation = 0
        self._timer: Optional[DeferredTransition] = None
        self._listeners: List[Callable[['QuizStateMachine'], Any]] = []
        self._torn_down = False

    @property
    def state(self) -> SessionState:
        """Current session state. Treat as read-only outside this class."""
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_torn_down(self) -> bool:
        return self._torn_down

    @property
    def has_pending_transition(self) -> bool:
        return self._timer is not None and self._timer.is_pending

    @property
    def current_question(self) -> Optional[Question]:
        """The question being shown, or None outside ACTIVE and FEEDBACK."""
        if self._state.phase not in (Phase.ACTIVE, Phase.FEEDBACK):
            return None
        return self._state.questions[self._state.current_index]

    def add_listener(self, listener: Callable[['QuizStateMachine'], Any]) -> None:
        """
        Register a callable notified after every timer-driven transition.

        The listener receives the state machine and may be a coroutine function.
        """
        self._listeners.append(listener)

    def on_load_succeeded(self, batch: Sequence[Question]) -> bool:
        """
        Install a loaded question batch.

        An empty batch has nothing to show and goes straight to FINISHED.

        Returns:
            True if the batch was accepted, False if not in LOADING
        """
        if self._torn_down or self._state.phase is not Phase.LOADING:
            logger.debug(f"Ignoring load result for session {self.session_id} in phase {self._state.phase.value}")
            return False

        self._state.questions = tuple(batch)
        self._state.score = 0

        if not self._state.questions:
            self._state.current_index = 0
            self._set_phase(Phase.FINISHED, "empty batch")
            return True

        self._enter_question(0, "load succeeded")
        return True

    def on_load_failed(self, message: str) -> bool:
        """
        Record a terminal load failure.

        Returns:
            True if the failure was recorded, False if not in LOADING
        """
        if self._torn_down or self._state.phase is not Phase.LOADING:
            logger.debug(f"Ignoring load failure for session {self.session_id} in phase {self._state.phase.value}")
            return False

        self._state.error_message = message
        self._set_phase(Phase.FAILED, "load failed")
        return True

    def select_answer(self, answer: str, generation: Optional[int] = None) -> bool:
        """
        Answer the current question and schedule the auto-advance.

        Must be called from inside a running event loop. Every ACTIVE question
        is entered under its own generation, so a press from a button drawn
        for an earlier question carries a stale generation and is rejected.

        Args:
            answer: The chosen answer text
            generation: Generation the answer was offered under, if known

        Returns:
            True if the answer was accepted, False if answers are not accepted right now
        """
        if self._torn_down or self._state.phase is not Phase.ACTIVE:
            logger.debug(
                f"Rejected answer for session {self.session_id} in phase {self._state.phase.value}",
                extra={
                    'event_type': 'answer_rejected',
                    'session_id': self.session_id,
                    'phase': self._state.phase.value,
                    'timestamp': time.time()
                }
            )
            return False

        if generation is not None and generation != self._generation:
            logger.debug(
                f"Rejected answer for session {self.session_id} offered under generation {generation}, "
                f"current is {self._generation}",
                extra={
                    'event_type': 'answer_stale',
                    'session_id': self.session_id,
                    'generation': generation,
                    'timestamp': time.time()
                }
            )
            return False

        question = self._state.questions[self._state.current_index]
        self._state.selected_answer = answer
        if answer == question.correct_answer:
            self._state.score += 1
        self._set_phase(Phase.FEEDBACK, "answer selected")

        self._schedule_advance()
        return True

    def restart(self) -> bool:
        """
        Start the loaded batch over from the first question without re-fetching.

        Valid from ACTIVE, FEEDBACK and FINISHED. A no-op while LOADING,
        after FAILED, or when the batch is empty.

        Returns:
            True if the session was reset
        """
        if self._torn_down or self._state.phase in (Phase.LOADING, Phase.FAILED):
            return False
        if not self._state.questions:
            return False

        self._cancel_pending_transition()
        self._generation += 1
        self._state.score = 0
        self._enter_question(0, "restart")
        return True

    def teardown(self) -> None:
        """Cancel any pending transition and reject all further operations."""
        self._cancel_pending_transition()
        self._generation += 1
        self._torn_down = True
        self._listeners.clear()
        logger.debug(f"Session {self.session_id} torn down in phase {self._state.phase.value}")

    def is_correct(self, answer: str) -> bool:
        """Check an answer against the current question with an exact match."""
        question = self.current_question
        return question is not None and answer == question.correct_answer

    def get_progress(self) -> Dict[str, Any]:
        """
        Summarize the session for display.

        Returns:
            Dictionary with phase, 1-based question number, totals and score
        """
        state = self._state
        total = len(state.questions)
        in_question = state.phase in (Phase.ACTIVE, Phase.FEEDBACK)
        return {
            'phase': state.phase.value,
            'current_question': state.current_index + 1 if in_question else None,
            'total_questions': total,
            'score': state.score,
            'selected_answer': state.selected_answer,
            'answered_correctly': (
                self.is_correct(state.selected_answer)
                if state.phase is Phase.FEEDBACK else None
            ),
            'error_message': state.error_message
        }

    def _enter_question(self, index: int, reason: str) -> None:
        self._state.current_index = index
        self._state.selected_answer = None
        self._state.presented_answers = present_answers(self._state.questions[index], self._rng)
        self._set_phase(Phase.ACTIVE, reason)

    def _set_phase(self, phase: Phase, reason: str = None) -> None:
        previous = self._state.phase
        self._state.phase = phase
        if phase is Phase.FINISHED:
            self._state.selected_answer = None
            self._state.presented_answers = []
        TimerLifecycleLogger.log_phase_transition(self.session_id, previous, phase, reason)

    def _schedule_advance(self) -> None:
        self._cancel_pending_transition()
        self._generation += 1
        generation = self._generation
        self._timer = DeferredTransition(self.session_id, generation)
        self._timer.start(self.settings.advance_delay, lambda: self._advance(generation))

    def _cancel_pending_transition(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _advance(self, generation: int) -> None:
        if self._torn_down or generation != self._generation:
            TimerLifecycleLogger.log_stale_timer(
                self.session_id,
                f"generation {generation} superseded by {self._generation}"
            )
            return
        if self._state.phase is not Phase.FEEDBACK:
            TimerLifecycleLogger.log_stale_timer(
                self.session_id,
                f"fired in phase {self._state.phase.value}"
            )
            return

        self._timer = None
        if self._state.current_index < len(self._state.questions) - 1:
            self._enter_question(self._state.current_index + 1, "auto-advance")
        else:
            self._set_phase(Phase.FINISHED, "last question answered")

        await self._notify_listeners()

    async def _notify_listeners(self) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(self)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"State listener failed for session {self.session_id}: {e}", exc_info=True)

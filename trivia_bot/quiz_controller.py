"""
Trivia session controller for the Trivia Session Bot.
Owns session lifetimes: loading once, handing results to the state machine, and teardown.
"""
import asyncio
import logging
import random
import time
from datetime import datetime
from typing import Any, Dict, Optional

from .config_manager import ConfigManager
from .models import Phase, TriviaSettings
from .quiz_engine import QuizStateMachine
from .session_loader import LoadError, SessionLoader

logger = logging.getLogger(__name__)

# Shown to players for every load failure; details only go to the log
LOAD_FAILURE_MESSAGE = "Failed to fetch questions. Please try again in a few moments."


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionConflictError(QuizControllerError):
    """Raised when attempting to create a session that conflicts with existing session."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class InvalidSessionStateError(QuizControllerError):
    """Raised when session is in an invalid state for the requested operation."""
    pass


class NotSessionOwnerError(QuizControllerError):
    """Raised when someone other than the session owner tries to play."""
    pass


class TriviaSession:
    """
    One trivia session: a loader run exactly once plus the state machine it feeds.

    ``start()`` performs the load. ``teardown()`` cancels an in-flight load
    (including a pending retry delay) and the auto-advance timer; a load
    that completes after teardown never touches the session state.
    """

    def __init__(
        self,
        session_id: Any,
        settings: Optional[TriviaSettings] = None,
        owner_id: Optional[int] = None,
        loader: Optional[SessionLoader] = None,
        rng: Optional[random.Random] = None
    ):
        self.session_id = session_id
        self.owner_id = owner_id
        self.settings = settings or TriviaSettings()
        self.loader = loader or SessionLoader(self.settings)
        self.machine = QuizStateMachine(self.settings, str(session_id), rng)
        self.created_at = datetime.now()
        self._load_task: Optional[asyncio.Task] = None
        self._torn_down = False

    @property
    def phase(self) -> Phase:
        return self.machine.phase

    @property
    def is_torn_down(self) -> bool:
        return self._torn_down

    @property
    def is_running(self) -> bool:
        """True while the session still expects a load result or player input."""
        return not self._torn_down and self.machine.phase in (Phase.LOADING, Phase.ACTIVE, Phase.FEEDBACK)

    async def start(self) -> Phase:
        """
        Load the question batch and hand the outcome to the state machine.

        Returns:
            The phase after loading (ACTIVE, FINISHED, FAILED, or LOADING if torn down)

        Raises:
            InvalidSessionStateError: If the session was already started or torn down
        """
        if self._load_task is not None or self._torn_down:
            raise InvalidSessionStateError(f"Session {self.session_id} has already been started")

        load_start_time = time.time()
        self._load_task = asyncio.create_task(self.loader.load())

        try:
            batch = await self._load_task
        except asyncio.CancelledError:
            if self._torn_down:
                logger.info(f"Load for session {self.session_id} cancelled by teardown")
                return self.machine.phase
            raise
        except LoadError as e:
            if self._torn_down:
                return self.machine.phase
            logger.error(
                f"Load failed for session {self.session_id}: {e}",
                extra={
                    'event_type': 'session_load_failed',
                    'session_id': self.session_id,
                    'error_kind': e.kind.value,
                    'duration': time.time() - load_start_time,
                    'timestamp': time.time()
                }
            )
            self.machine.on_load_failed(LOAD_FAILURE_MESSAGE)
            return self.machine.phase
        except Exception as e:
            if self._torn_down:
                return self.machine.phase
            logger.error(f"Unexpected error loading session {self.session_id}: {e}", exc_info=True)
            self.machine.on_load_failed(LOAD_FAILURE_MESSAGE)
            return self.machine.phase

        if self._torn_down:
            logger.debug(f"Discarding load result for torn down session {self.session_id}")
            return self.machine.phase

        self.machine.on_load_succeeded(batch)
        logger.info(
            f"Session {self.session_id} loaded {len(batch)} questions",
            extra={
                'event_type': 'session_loaded',
                'session_id': self.session_id,
                'question_count': len(batch),
                'duration': time.time() - load_start_time,
                'timestamp': time.time()
            }
        )
        return self.machine.phase

    def select_answer(self, answer: str, generation: Optional[int] = None) -> bool:
        return self.machine.select_answer(answer, generation)

    def restart(self) -> bool:
        return self.machine.restart()

    def teardown(self) -> None:
        """Cancel the in-flight load and timers; the session accepts nothing afterwards."""
        if self._torn_down:
            return
        self._torn_down = True
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
        self.machine.teardown()
        logger.info(
            f"Session {self.session_id} torn down",
            extra={
                'event_type': 'session_torn_down',
                'session_id': self.session_id,
                'phase': self.machine.phase.value,
                'timestamp': time.time()
            }
        )

    def get_progress(self) -> Dict[str, Any]:
        progress = self.machine.get_progress()
        progress['owner_id'] = self.owner_id
        progress['created_at'] = self.created_at
        return progress


class QuizController:
    """
    Orchestrates trivia sessions across Discord channels.

    Each channel has at most one running session. A finished or failed
    session stays readable until it is replaced or stopped.
    """

    def __init__(self, config_manager: ConfigManager):
        """
        Initialize the quiz controller.

        Args:
            config_manager: Instance for managing configuration
        """
        self.logger = logging.getLogger(__name__)
        self.config_manager = config_manager

        # Sessions mapped by channel ID
        self._sessions: Dict[int, TriviaSession] = {}

        self.logger.info("QuizController initialized")

    def create_session(self, channel_id: int, owner_id: Optional[int] = None) -> TriviaSession:
        """
        Create a new trivia session for a channel without loading it yet.

        Args:
            channel_id: Discord channel identifier
            owner_id: Discord user allowed to play the session

        Returns:
            The new session, in LOADING

        Raises:
            SessionConflictError: If a running session already exists for the channel
        """
        existing = self._sessions.get(channel_id)
        if existing is not None and existing.is_running:
            self.logger.warning(f"Attempted to create session for channel {channel_id} "
                                f"but session already exists")
            raise SessionConflictError(f"Channel {channel_id} already has a trivia session in progress")

        if existing is not None:
            existing.teardown()

        session = TriviaSession(
            session_id=channel_id,
            settings=self.config_manager.get_trivia_settings(),
            owner_id=owner_id
        )
        self._sessions[channel_id] = session
        self.logger.info(f"Created trivia session for channel {channel_id} (owner {owner_id})")
        return session

    async def start_session(self, channel_id: int, owner_id: Optional[int] = None) -> TriviaSession:
        """
        Create a session for the channel and load its questions.

        Returns:
            The session after its load has resolved
        """
        session = self.create_session(channel_id, owner_id)
        await session.start()
        return session

    def get_session(self, channel_id: int) -> Optional[TriviaSession]:
        return self._sessions.get(channel_id)

    def has_active_session(self, channel_id: int) -> bool:
        """
        Check if a channel has a session that is loading or being played.

        Args:
            channel_id: Discord channel identifier

        Returns:
            True if channel has a running session, False otherwise
        """
        session = self._sessions.get(channel_id)
        return session is not None and session.is_running

    def get_session_state(self, channel_id: int) -> Optional[Phase]:
        session = self._sessions.get(channel_id)
        return session.phase if session is not None else None

    def _require_session(self, channel_id: int, user_id: Optional[int]) -> TriviaSession:
        session = self._sessions.get(channel_id)
        if session is None:
            raise SessionNotFoundError(f"No trivia session in channel {channel_id}")
        if session.owner_id is not None and user_id != session.owner_id:
            raise NotSessionOwnerError(f"User {user_id} does not own the session in channel {channel_id}")
        return session

    def select_answer(
        self,
        channel_id: int,
        user_id: Optional[int],
        answer: str,
        generation: Optional[int] = None
    ) -> bool:
        """
        Submit an answer on behalf of a player.

        Pass the generation the answer button was drawn under so that presses
        on an outdated message are refused.

        Returns:
            True if the answer was accepted, False if the session is not taking answers

        Raises:
            SessionNotFoundError: If the channel has no session
            NotSessionOwnerError: If the user does not own the session
        """
        return self._require_session(channel_id, user_id).select_answer(answer, generation)

    def restart_session(self, channel_id: int, user_id: Optional[int]) -> bool:
        """
        Restart the channel's session with its already loaded questions.

        Raises:
            SessionNotFoundError: If the channel has no session
            NotSessionOwnerError: If the user does not own the session
        """
        restarted = self._require_session(channel_id, user_id).restart()
        if restarted:
            self.logger.info(f"Restarted trivia session for channel {channel_id}")
        return restarted

    def stop_session(self, channel_id: int) -> bool:
        """
        Tear down and forget the channel's session.

        Returns:
            True if a session was stopped, False if none existed
        """
        session = self._sessions.pop(channel_id, None)
        if session is None:
            self.logger.debug(f"No session to stop for channel {channel_id}")
            return False
        session.teardown()
        self.logger.info(f"Stopped trivia session for channel {channel_id}")
        return True

    def stop_all_sessions(self) -> int:
        """Tear down every session, e.g. on shutdown. Returns how many were stopped."""
        channel_ids = list(self._sessions)
        for channel_id in channel_ids:
            self.stop_session(channel_id)
        return len(channel_ids)

    def get_session_progress(self, channel_id: int) -> Optional[Dict[str, Any]]:
        session = self._sessions.get(channel_id)
        return session.get_progress() if session is not None else None

    def get_all_sessions(self) -> Dict[int, Dict[str, Any]]:
        return {channel_id: session.get_progress() for channel_id, session in self._sessions.items()}

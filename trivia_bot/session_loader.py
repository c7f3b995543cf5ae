"""
Session loader for the Trivia Session Bot.
Acquires a session token and fetches the question batch, retrying on rate limits.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .models import Question, QuestionBatch, TriviaSettings

logger = logging.getLogger(__name__)


class LoadErrorKind(Enum):
    """Terminal outcomes of a failed load."""
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    INVALID_RESPONSE = "invalid_response"


class LoadError(Exception):
    """Base exception for question loading failures."""
    kind: LoadErrorKind = LoadErrorKind.NETWORK

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(LoadError):
    """Raised when the question bank keeps answering with HTTP 429."""
    kind = LoadErrorKind.RATE_LIMITED


class NetworkError(LoadError):
    """Raised on transport failures and unusable token responses."""
    kind = LoadErrorKind.NETWORK


class InvalidResponseError(LoadError):
    """Raised when the question bank reports a nonzero response code."""
    kind = LoadErrorKind.INVALID_RESPONSE

    def __init__(self, message: str, response_code: Any = None):
        super().__init__(message)
        self.response_code = response_code


class LoaderLifecycleLogger:
    """Structured logging for load attempts and retries."""

    @staticmethod
    def log_attempt(attempt: int, max_retries: int) -> None:
        logger.info(
            f"Loader lifecycle: ATTEMPT {attempt + 1}/{max_retries + 1}",
            extra={
                'event_type': 'load_attempt',
                'attempt': attempt,
                'max_retries': max_retries,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_retry(attempt: int, max_retries: int, delay: float) -> None:
        logger.warning(
            f"Loader lifecycle: RATE_LIMITED - Retry {attempt}/{max_retries} in {delay:.1f}s",
            extra={
                'event_type': 'load_retry',
                'attempt': attempt,
                'max_retries': max_retries,
                'delay': delay,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_success(question_count: int, started_at: float) -> None:
        duration = time.time() - started_at
        logger.info(
            f"Loader lifecycle: LOADED - {question_count} questions in {duration:.3f}s",
            extra={
                'event_type': 'load_succeeded',
                'question_count': question_count,
                'duration': duration,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_failure(error: LoadError) -> None:
        logger.error(
            f"Loader lifecycle: FAILED - {error.kind.value}: {error}",
            extra={
                'event_type': 'load_failed',
                'error_kind': error.kind.value,
                'status_code': error.status_code,
                'error_message': str(error),
                'timestamp': time.time()
            }
        )


def parse_question_batch(results: Any) -> QuestionBatch:
    """
    Map the raw ``results`` list of a question response to Question records.

    Args:
        results: Decoded ``results`` value from the question endpoint

    Returns:
        Tuple of Question objects in delivery order

    Raises:
        InvalidResponseError: If the payload does not have the expected shape
    """
    if not isinstance(results, list):
        raise InvalidResponseError("Question results must be a list")

    questions: List[Question] = []
    for index, item in enumerate(results):
        if not isinstance(item, dict):
            raise InvalidResponseError(f"Question {index} must be an object")

        text = item.get('question')
        correct_answer = item.get('correct_answer')
        incorrect_answers = item.get('incorrect_answers')

        if not isinstance(text, str) or not isinstance(correct_answer, str):
            raise InvalidResponseError(f"Question {index} is missing its text or correct answer")
        if not isinstance(incorrect_answers, list) or not all(isinstance(a, str) for a in incorrect_answers):
            raise InvalidResponseError(f"Question {index} has malformed incorrect answers")

        questions.append(Question(
            text=text,
            correct_answer=correct_answer,
            incorrect_answers=tuple(incorrect_answers),
            category=item.get('category'),
            difficulty=item.get('difficulty')
        ))

    return tuple(questions)


class SessionLoader:
    """
    Fetches one batch of questions from the trivia question bank.

    A load requests a session token, then the question batch. HTTP 429 on
    either request restarts the whole sequence after ``retry_delay``
    seconds, at most ``max_retries`` times. Every other failure is terminal.
    """

    TOKEN_PATH = "/api_token.php"
    QUESTIONS_PATH = "/api.php"

    def __init__(
        self,
        settings: Optional[TriviaSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        """
        Initialize the loader.

        Args:
            settings: Trivia settings, defaults are used if None
            client: Optional shared HTTP client; the loader closes only clients it creates
            sleep: Coroutine function used for the retry delay
        """
        self.settings = settings or TriviaSettings()
        self._client = client
        self._sleep = sleep
        self.attempt = 0
        self.requests_made = 0

    def _url(self, path: str) -> str:
        return self.settings.api_base_url.rstrip('/') + path

    async def load(self) -> QuestionBatch:
        """
        Run the token and fetch sequence with the rate-limit retry policy.

        Returns:
            The loaded question batch

        Raises:
            RateLimitedError: If every attempt was rate limited
            NetworkError: On any other transport or token failure
            InvalidResponseError: If the question bank reports a nonzero response code
        """
        started_at = time.time()
        self.attempt = 0
        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(timeout=self.settings.request_timeout)

        try:
            while True:
                LoaderLifecycleLogger.log_attempt(self.attempt, self.settings.max_retries)
                try:
                    batch = await self._fetch_batch(client)
                except RateLimitedError as e:
                    if self.attempt >= self.settings.max_retries:
                        error = RateLimitedError(
                            f"Still rate limited after {self.attempt + 1} attempts",
                            status_code=e.status_code
                        )
                        LoaderLifecycleLogger.log_failure(error)
                        raise error from e

                    self.attempt += 1
                    LoaderLifecycleLogger.log_retry(
                        self.attempt, self.settings.max_retries, self.settings.retry_delay
                    )
                    await self._sleep(self.settings.retry_delay)
                    continue
                except LoadError as e:
                    LoaderLifecycleLogger.log_failure(e)
                    raise

                LoaderLifecycleLogger.log_success(len(batch), started_at)
                return batch
        except asyncio.CancelledError:
            logger.info(
                "Loader lifecycle: CANCELLED",
                extra={
                    'event_type': 'load_cancelled',
                    'attempt': self.attempt,
                    'timestamp': time.time()
                }
            )
            raise
        finally:
            if owns_client:
                await client.aclose()

    async def _fetch_batch(self, client: httpx.AsyncClient) -> QuestionBatch:
        token = await self._request_token(client)

        payload = await self._get_json(client, self.QUESTIONS_PATH, {
            'amount': self.settings.amount,
            'category': self.settings.category,
            'type': self.settings.question_type,
            'token': token
        })

        response_code = payload.get('response_code')
        if response_code != 0:
            raise InvalidResponseError(
                f"Question bank returned response code {response_code}",
                response_code=response_code
            )

        return parse_question_batch(payload.get('results'))

    async def _request_token(self, client: httpx.AsyncClient) -> str:
        payload = await self._get_json(client, self.TOKEN_PATH, {'command': 'request'})

        if payload.get('response_code', 0) != 0:
            raise NetworkError(f"Token request returned response code {payload.get('response_code')}")

        token = payload.get('token')
        if not isinstance(token, str) or not token:
            raise NetworkError("Token response did not contain a token")
        return token

    async def _get_json(self, client: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Issue one GET request and decode its JSON object body.

        Raises:
            RateLimitedError: On HTTP 429
            NetworkError: On transport errors, other non-2xx statuses or undecodable bodies
        """
        self.requests_made += 1
        try:
            response = await client.get(self._url(path), params=params)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {path} timed out") from e
        except httpx.HTTPError as e:
            raise NetworkError(f"Request to {path} failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(f"Rate limited on {path}", status_code=429)
        if not response.is_success:
            raise NetworkError(
                f"Request to {path} returned HTTP {response.status_code}",
                status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise NetworkError(f"Response from {path} was not valid JSON") from e

        if not isinstance(payload, dict):
            raise NetworkError(f"Response from {path} was not a JSON object")
        return payload

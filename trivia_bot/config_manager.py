"""
Configuration manager for Trivia Session Bot settings and parameters.
"""
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional, Union

from .models import TriviaSettings

Number = Union[int, float]


class ConfigManager:
    """Manages question bank and session timing settings."""

    # Default configuration values
    DEFAULT_API_BASE_URL = "https://opentdb.com"
    DEFAULT_AMOUNT = 10
    DEFAULT_CATEGORY = 9  # General Knowledge
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 2.0
    DEFAULT_ADVANCE_DELAY = 1.5
    DEFAULT_REQUEST_TIMEOUT = 10.0

    # Validation limits
    MIN_AMOUNT = 1
    MAX_AMOUNT = 50  # Open Trivia DB per-request maximum
    MIN_CATEGORY = 9
    MAX_CATEGORY = 32
    MAX_RETRIES_LIMIT = 10
    MAX_RETRY_DELAY = 60.0
    MIN_ADVANCE_DELAY = 0.01  # zero would skip the feedback screen
    MAX_ADVANCE_DELAY = 30.0
    MIN_REQUEST_TIMEOUT = 1.0
    MAX_REQUEST_TIMEOUT = 120.0

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = TriviaSettings()

    def get_trivia_settings(self) -> TriviaSettings:
        """
        Get a copy of the current trivia settings.

        Returns:
            TriviaSettings object with current configuration
        """
        return replace(self._settings)

    def _failure(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': user_message
        }

    def _set_number(
        self,
        field_name: str,
        label: str,
        value: Any,
        minimum: Number,
        maximum: Number,
        integer: bool = False
    ) -> Dict[str, Any]:
        """
        Validate and store a numeric setting.

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        allowed = (int,) if integer else (int, float)
        if isinstance(value, bool) or not isinstance(value, allowed):
            expected = "a whole number" if integer else "a number"
            return self._failure(
                f"{label} must be {expected}, got {type(value).__name__}",
                f"❌ Invalid input: Expected {expected}, got {type(value).__name__}"
            )

        if value < minimum:
            return self._failure(
                f"{label} must be at least {minimum}",
                f"❌ {label} too small: Minimum is {minimum}"
            )

        if value > maximum:
            return self._failure(
                f"{label} cannot exceed {maximum}",
                f"❌ {label} too large: Maximum is {maximum}"
            )

        setattr(self._settings, field_name, value)
        self.logger.info(f"{label} set to {value}")
        return {
            'success': True,
            'message': f"{label} set to {value}",
            'user_message': f"✅ {label} set to {value}"
        }

    def set_amount(self, amount: int) -> Dict[str, Any]:
        """
        Set how many questions a session fetches.

        Args:
            amount: Number of questions per batch

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        return self._set_number('amount', "Question amount", amount,
                                self.MIN_AMOUNT, self.MAX_AMOUNT, integer=True)

    def set_category(self, category: int) -> Dict[str, Any]:
        """
        Set the question bank category identifier.

        Args:
            category: Open Trivia DB category id

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        return self._set_number('category', "Category", category,
                                self.MIN_CATEGORY, self.MAX_CATEGORY, integer=True)

    def set_max_retries(self, max_retries: int) -> Dict[str, Any]:
        """Set how many times a rate-limited load is retried."""
        return self._set_number('max_retries', "Max retries", max_retries,
                                0, self.MAX_RETRIES_LIMIT, integer=True)

    def set_retry_delay(self, delay: Number) -> Dict[str, Any]:
        """Set the pause in seconds between rate-limited attempts."""
        return self._set_number('retry_delay', "Retry delay", delay, 0, self.MAX_RETRY_DELAY)

    def set_advance_delay(self, delay: Number) -> Dict[str, Any]:
        """Set how long answer feedback stays up before the session advances."""
        return self._set_number('advance_delay', "Advance delay", delay, self.MIN_ADVANCE_DELAY, self.MAX_ADVANCE_DELAY)

    def set_request_timeout(self, timeout: Number) -> Dict[str, Any]:
        """Set the HTTP timeout in seconds for question bank requests."""
        return self._set_number('request_timeout', "Request timeout", timeout,
                                self.MIN_REQUEST_TIMEOUT, self.MAX_REQUEST_TIMEOUT)

    def set_api_base_url(self, url: str) -> Dict[str, Any]:
        """
        Set the question bank base URL.

        Args:
            url: Absolute http(s) URL without the endpoint path

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str):
            return self._failure(
                f"API base URL must be a string, got {type(url).__name__}",
                f"❌ Invalid input: Expected a URL, got {type(url).__name__}"
            )

        url = url.strip().rstrip('/')
        if not url.startswith(("http://", "https://")):
            return self._failure(
                f"API base URL must start with http:// or https://, got '{url}'",
                f"❌ Invalid URL: {url or '(empty)'}"
            )

        self._settings.api_base_url = url
        self.logger.info(f"API base URL set to {url}")
        return {
            'success': True,
            'message': f"API base URL set to {url}",
            'user_message': f"✅ Question bank set to {url}"
        }

    def apply_config(self, config: Optional[Dict[str, Any]]) -> List[str]:
        """
        Apply the ``trivia`` section of a loaded config.json.

        Invalid values are logged and skipped, keeping the previous value.

        Args:
            config: Parsed configuration dictionary

        Returns:
            List of error messages for rejected values
        """
        trivia_config = (config or {}).get('trivia', {}) or {}
        setters = {
            'api_base_url': self.set_api_base_url,
            'amount': self.set_amount,
            'category': self.set_category,
            'max_retries': self.set_max_retries,
            'retry_delay': self.set_retry_delay,
            'advance_delay': self.set_advance_delay,
            'request_timeout': self.set_request_timeout,
        }

        errors = []
        for key, value in trivia_config.items():
            setter = setters.get(key)
            if setter is None:
                self.logger.warning(f"Ignoring unknown trivia setting '{key}'")
                continue
            result = setter(value)
            if not result['success']:
                errors.append(f"{key}: {result['error']}")

        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} rejected values")
        else:
            self.logger.info("Configuration applied successfully")
        return errors

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._settings = TriviaSettings(
            api_base_url=self.DEFAULT_API_BASE_URL,
            amount=self.DEFAULT_AMOUNT,
            category=self.DEFAULT_CATEGORY,
            max_retries=self.DEFAULT_MAX_RETRIES,
            retry_delay=self.DEFAULT_RETRY_DELAY,
            advance_delay=self.DEFAULT_ADVANCE_DELAY,
            request_timeout=self.DEFAULT_REQUEST_TIMEOUT
        )
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }
        settings = self._settings

        if not self.MIN_AMOUNT <= settings.amount <= self.MAX_AMOUNT:
            validation_result["issues"].append(f"Invalid question amount: {settings.amount}")

        if not self.MIN_CATEGORY <= settings.category <= self.MAX_CATEGORY:
            validation_result["issues"].append(f"Invalid category: {settings.category}")

        if settings.question_type != "multiple":
            validation_result["issues"].append(f"Unsupported question type: {settings.question_type}")

        if not 0 <= settings.max_retries <= self.MAX_RETRIES_LIMIT:
            validation_result["issues"].append(f"Invalid max retries: {settings.max_retries}")

        if settings.retry_delay < 0:
            validation_result["issues"].append("Retry delay cannot be negative")

        if settings.advance_delay < self.MIN_ADVANCE_DELAY:
            validation_result["issues"].append(f"Advance delay too short: {settings.advance_delay}")

        if not settings.api_base_url.startswith(("http://", "https://")):
            validation_result["issues"].append(f"Invalid API base URL: {settings.api_base_url}")

        validation_result["valid"] = not validation_result["issues"]
        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        settings = self._settings
        return (
            f"Trivia Settings:\n"
            f"• Questions per session: {settings.amount}\n"
            f"• Category: {settings.category}\n"
            f"• Rate-limit retries: {settings.max_retries} every {settings.retry_delay:g}s\n"
            f"• Feedback delay: {settings.advance_delay:g}s\n"
            f"• Question bank: {settings.api_base_url}"
        )

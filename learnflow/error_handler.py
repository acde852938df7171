"""
Centralized error taxonomy and classification for LearnFlow.

Provides:
- ErrorCategory enum for classifying failures at the external boundaries
- LearnFlowError hierarchy (typed errors carrying a category and the cause)
- classify_openai_error() / classify_playwright_error() helpers
- http_status_for() mapping used by the HTTP layer

DESIGN NOTES:
- Classification switches on exception TYPE first; message text is only a
  last-resort hint for untyped errors
- The original message is always preserved as context on the typed error
- Callers switch on `error.category`, never on message substrings

DO NOT:
- Raise bare Exception/RuntimeError from boundary code - wrap in a LearnFlowError
- Duplicate descriptions or recoverability checks - use the helpers below
"""

import asyncio
import logging
from enum import Enum, auto
from typing import Any, Dict, Final, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """
    Classification of failure kinds produced by the scraper, transcript
    and language-model boundaries.
    """

    NONE = auto()
    BROWSER_LAUNCH = auto()  # Chromium could not be started
    BROWSER_ERROR = auto()  # Page/context crashed or browser disconnected
    NAVIGATION_TIMEOUT = auto()  # Page did not load in time
    DETECTION_BLOCK = auto()  # Google served its "unusual traffic" page
    EMPTY_RESULT = auto()  # Operation returned no usable data
    RATE_LIMIT = auto()  # 429 from OpenAI
    QUOTA_EXCEEDED = auto()  # OpenAI quota exhausted - FATAL
    API_TIMEOUT = auto()  # OpenAI request timed out
    CONNECTION_ERROR = auto()  # Network failure
    AUTHENTICATION = auto()  # Bad API key - FATAL
    SERVER_ERROR = auto()  # 5xx from OpenAI
    INVALID_RESPONSE = auto()  # Model output missing or not parseable
    NOT_FOUND = auto()  # Video or resource does not exist
    INVALID_INPUT = auto()  # Caller supplied a malformed value
    TRANSCRIPT_UNAVAILABLE = auto()  # Captions disabled or missing
    UNKNOWN = auto()


ERROR_DESCRIPTIONS: Final[Dict[ErrorCategory, str]] = {
    ErrorCategory.NONE: "No error",
    ErrorCategory.BROWSER_LAUNCH: "Headless browser failed to start",
    ErrorCategory.BROWSER_ERROR: "Headless browser session failed",
    ErrorCategory.NAVIGATION_TIMEOUT: "Search page took too long to load",
    ErrorCategory.DETECTION_BLOCK: "Search provider blocked automated access",
    ErrorCategory.EMPTY_RESULT: "No results found",
    ErrorCategory.RATE_LIMIT: "AI service rate limit exceeded (429)",
    ErrorCategory.QUOTA_EXCEEDED: "AI service quota exhausted",
    ErrorCategory.API_TIMEOUT: "AI service (OpenAI) request timed out",
    ErrorCategory.CONNECTION_ERROR: "Network connection failed",
    ErrorCategory.AUTHENTICATION: "AI service API key invalid or expired",
    ErrorCategory.SERVER_ERROR: "AI service error (5xx)",
    ErrorCategory.INVALID_RESPONSE: "Invalid response from AI service",
    ErrorCategory.NOT_FOUND: "Resource not found",
    ErrorCategory.INVALID_INPUT: "Invalid input",
    ErrorCategory.TRANSCRIPT_UNAVAILABLE: "Transcript is not available for this video",
    ErrorCategory.UNKNOWN: "Unknown error occurred",
}

# Transient failures worth another attempt. Quota and authentication are
# fatal; retrying them only burns time.
RECOVERABLE_CATEGORIES: Final[frozenset[ErrorCategory]] = frozenset(
    {
        ErrorCategory.BROWSER_LAUNCH,
        ErrorCategory.BROWSER_ERROR,
        ErrorCategory.NAVIGATION_TIMEOUT,
        ErrorCategory.DETECTION_BLOCK,
        ErrorCategory.EMPTY_RESULT,
        ErrorCategory.API_TIMEOUT,
        ErrorCategory.CONNECTION_ERROR,
        ErrorCategory.SERVER_ERROR,
    }
)

HTTP_STATUS_BY_CATEGORY: Final[Dict[ErrorCategory, int]] = {
    ErrorCategory.BROWSER_LAUNCH: 503,
    ErrorCategory.BROWSER_ERROR: 503,
    ErrorCategory.NAVIGATION_TIMEOUT: 503,
    ErrorCategory.DETECTION_BLOCK: 503,
    ErrorCategory.EMPTY_RESULT: 404,
    ErrorCategory.RATE_LIMIT: 429,
    ErrorCategory.QUOTA_EXCEEDED: 502,
    ErrorCategory.API_TIMEOUT: 504,
    ErrorCategory.CONNECTION_ERROR: 502,
    ErrorCategory.AUTHENTICATION: 502,
    ErrorCategory.SERVER_ERROR: 502,
    ErrorCategory.INVALID_RESPONSE: 500,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.INVALID_INPUT: 400,
    ErrorCategory.TRANSCRIPT_UNAVAILABLE: 404,
    ErrorCategory.UNKNOWN: 500,
}


class LearnFlowError(Exception):
    """Base class for every typed failure raised by LearnFlow."""

    default_category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.cause = cause

    @property
    def recoverable(self) -> bool:
        return is_recoverable_error(self.category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.name,
            "message": self.message,
            "recoverable": self.recoverable,
        }


class AcquisitionError(LearnFlowError):
    """The shared browser session could not be started within its retry budget."""

    default_category = ErrorCategory.BROWSER_LAUNCH

    def __init__(self, attempts: int, last_error: Optional[BaseException]) -> None:
        last_message = str(last_error) if last_error is not None else "unknown error"
        super().__init__(
            f"Browser session failed to initialize after {attempts} attempts: "
            f"{last_message}",
            cause=last_error,
        )
        self.attempts = attempts
        self.last_error = last_error


class OperationExhaustedError(LearnFlowError):
    """A guarded operation kept failing until its retry budget ran out."""

    def __init__(self, label: str, last_error: Optional[BaseException]) -> None:
        category = (
            last_error.category
            if isinstance(last_error, LearnFlowError)
            else ErrorCategory.BROWSER_ERROR
        )
        super().__init__(
            f"{label} failed after all retry attempts",
            category=category,
            cause=last_error,
        )
        self.label = label
        self.last_error = last_error


class EmptyResultError(LearnFlowError):
    """A guarded operation completed but produced no usable data."""

    default_category = ErrorCategory.EMPTY_RESULT


class ScrapeError(LearnFlowError):
    """Failure inside the browser scraping engine."""

    default_category = ErrorCategory.BROWSER_ERROR


class TranscriptError(LearnFlowError):
    """Failure fetching or validating a video transcript."""

    default_category = ErrorCategory.TRANSCRIPT_UNAVAILABLE


class LanguageModelError(LearnFlowError):
    """Failure calling the language model or reading its answer."""

    default_category = ErrorCategory.UNKNOWN


class NoJsonFound(LearnFlowError):
    """Model output did not contain a well-formed JSON value."""

    default_category = ErrorCategory.INVALID_RESPONSE

    def __init__(self, message: str, raw: Optional[str] = None) -> None:
        super().__init__(message)
        self.raw = raw


def classify_openai_error(exception: BaseException) -> ErrorCategory:
    """
    Classify an OpenAI exception into an error category.

    Args:
        exception: The exception to classify

    Returns:
        The appropriate ErrorCategory for the exception
    """
    from openai import (
        APIConnectionError,
        APIStatusError,
        APITimeoutError,
        AuthenticationError,
        RateLimitError,
    )

    # RateLimitError covers both 429 and insufficient_quota
    if isinstance(exception, RateLimitError):
        code = getattr(exception, "code", None)
        if code == "insufficient_quota" or "quota" in str(exception).lower():
            return ErrorCategory.QUOTA_EXCEEDED
        return ErrorCategory.RATE_LIMIT

    # APITimeoutError subclasses APIConnectionError: check it first
    if isinstance(exception, APITimeoutError):
        return ErrorCategory.API_TIMEOUT

    if isinstance(exception, APIConnectionError):
        return ErrorCategory.CONNECTION_ERROR

    if isinstance(exception, AuthenticationError):
        return ErrorCategory.AUTHENTICATION

    if isinstance(exception, APIStatusError):
        if exception.status_code >= 500:
            return ErrorCategory.SERVER_ERROR
        if exception.status_code == 401:
            return ErrorCategory.AUTHENTICATION
        if exception.status_code == 404:
            return ErrorCategory.NOT_FOUND
        return ErrorCategory.UNKNOWN

    if isinstance(exception, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.API_TIMEOUT
    if isinstance(exception, ConnectionError):
        return ErrorCategory.CONNECTION_ERROR

    return ErrorCategory.UNKNOWN


def classify_playwright_error(exception: BaseException) -> ErrorCategory:
    """
    Classify a Playwright exception into an error category.

    Playwright raises a single Error type for most browser failures, so only
    the timeout subclass can be told apart by type.
    """
    from playwright.async_api import Error as PlaywrightError
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError

    if isinstance(exception, LearnFlowError):
        return exception.category
    if isinstance(exception, (PlaywrightTimeoutError, asyncio.TimeoutError)):
        return ErrorCategory.NAVIGATION_TIMEOUT
    if isinstance(exception, PlaywrightError):
        return ErrorCategory.BROWSER_ERROR
    return ErrorCategory.UNKNOWN


def get_error_description(category: ErrorCategory) -> str:
    """Get a human-readable description for an error category."""
    return ERROR_DESCRIPTIONS.get(category, "Unknown error")


def is_recoverable_error(category: ErrorCategory) -> bool:
    """Check if an error category represents a transient, retryable failure."""
    return category in RECOVERABLE_CATEGORIES


def http_status_for(error: BaseException) -> int:
    """
    Map an exception to the HTTP status the API layer should return.

    Exhaustion of the browser retry budget is a 503 so clients know the whole
    request may be retried later.
    """
    if isinstance(error, (AcquisitionError, OperationExhaustedError)):
        return 503
    if isinstance(error, LearnFlowError):
        return HTTP_STATUS_BY_CATEGORY.get(error.category, 500)
    return 500

"""Error classification for the self-healing layer.

This module provides:
- classify_error: Map any exception to a ClassifiedError
- is_auto_healable: Whether a category can be recovered automatically
- get_recovery_strategy: Strategy for a category
- create_http_error: Build an APIError carrying a status code

Classification order: HTTP status code (from an ``status_code`` attribute or
an httpx.HTTPStatusError), then timeout signals, then network signals.
Anything else is fatal.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

import httpx

from designagent.core.errors import APIError
from designagent.healing.types import ClassifiedError, ErrorCategory, RecoveryStrategy

STATUS_CATEGORY_MAP: dict[int, ErrorCategory] = {
    # Temporary failures
    429: ErrorCategory.RETRYABLE,
    502: ErrorCategory.RETRYABLE,
    503: ErrorCategory.RETRYABLE,
    504: ErrorCategory.RETRYABLE,
    # Optimistic locking
    409: ErrorCategory.CONFLICT,
    # Validation
    400: ErrorCategory.USER_FIXABLE,
    422: ErrorCategory.USER_FIXABLE,
    # Auth and server errors
    401: ErrorCategory.FATAL,
    403: ErrorCategory.FATAL,
    404: ErrorCategory.FATAL,
    500: ErrorCategory.FATAL,
}

CATEGORY_STRATEGY_MAP: dict[ErrorCategory, RecoveryStrategy] = {
    ErrorCategory.RETRYABLE: RecoveryStrategy.EXPONENTIAL_BACKOFF,
    ErrorCategory.CONFLICT: RecoveryStrategy.REFRESH_AND_RETRY,
    ErrorCategory.USER_FIXABLE: RecoveryStrategy.PROMPT_USER,
    ErrorCategory.FATAL: RecoveryStrategy.ABORT,
}

USER_MESSAGES: dict[int, str] = {
    400: "The request was invalid. Please check your input and try again.",
    401: "You are not authenticated. Please sign in again.",
    403: "You do not have permission to perform this action.",
    404: "The requested resource was not found.",
    409: "A conflict occurred. The data may have been modified by someone else.",
    422: "The data provided could not be processed. Please fix the validation errors.",
    429: "Too many requests. Please wait a moment before trying again.",
    500: "An unexpected server error occurred. Please try again later.",
    502: "The service is temporarily unavailable. Please try again.",
    503: "The service is temporarily unavailable. Please try again.",
    504: "The request timed out. Please try again.",
}

SUGGESTED_ACTIONS: dict[int, str] = {
    400: "Review the input values and correct any errors.",
    409: "Refresh the page to get the latest data, then try again.",
    422: "Check the highlighted fields and fix validation errors.",
}

NETWORK_MESSAGE = "Network connection error. Please check your connection and try again."
TIMEOUT_MESSAGE = "The request timed out. Please try again."

NETWORK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"network", re.IGNORECASE),
    re.compile(r"fetch failed", re.IGNORECASE),
    re.compile(r"connection refused", re.IGNORECASE),
    re.compile(r"ECONNREFUSED", re.IGNORECASE),
    re.compile(r"ENOTFOUND", re.IGNORECASE),
)

TIMEOUT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    TimeoutError,
    asyncio.TimeoutError,
    httpx.TimeoutException,
)

NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionError,
    httpx.TransportError,
)


def classify_error(error: BaseException) -> ClassifiedError:
    """Classify an error and determine its recovery strategy.

    Args:
        error: Any exception raised by a tool operation.

    Returns:
        The classification. Never raises.
    """
    status_code = _status_code_of(error)
    if status_code:
        return _classify_http_error(error, status_code)

    if _is_timeout_error(error):
        return _retryable(error, TIMEOUT_MESSAGE)

    if _is_network_error(error):
        return _retryable(error, NETWORK_MESSAGE)

    return ClassifiedError(
        original=error,
        category=ErrorCategory.FATAL,
        strategy=RecoveryStrategy.ABORT,
        user_message=f"An unexpected error occurred: {error}",
        can_auto_heal=False,
    )


def _classify_http_error(error: BaseException, status_code: int) -> ClassifiedError:
    category = STATUS_CATEGORY_MAP.get(status_code, ErrorCategory.FATAL)
    return ClassifiedError(
        original=error,
        category=category,
        strategy=CATEGORY_STRATEGY_MAP[category],
        user_message=USER_MESSAGES.get(status_code, f"HTTP error {status_code}"),
        can_auto_heal=is_auto_healable(category),
        status_code=status_code,
        suggested_action=SUGGESTED_ACTIONS.get(status_code),
        technical_details=getattr(error, "details", None),
    )


def _retryable(error: BaseException, message: str) -> ClassifiedError:
    return ClassifiedError(
        original=error,
        category=ErrorCategory.RETRYABLE,
        strategy=RecoveryStrategy.EXPONENTIAL_BACKOFF,
        user_message=message,
        can_auto_heal=True,
    )


def _status_code_of(error: BaseException) -> int | None:
    """HTTP status carried by the error, or None (0 counts as none)."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int) and not isinstance(status_code, bool):
        return status_code
    return None


def _is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, TIMEOUT_EXCEPTIONS):
        return True
    if isinstance(error, APIError) and error.code == "TIMEOUT":
        return True
    message = str(error)
    return "timeout" in message.lower() or "ETIMEDOUT" in message


def _is_network_error(error: BaseException) -> bool:
    if isinstance(error, NETWORK_EXCEPTIONS):
        return True
    if isinstance(error, APIError) and error.code == "NETWORK_ERROR":
        return True
    message = str(error)
    return any(pattern.search(message) for pattern in NETWORK_PATTERNS)


def is_auto_healable(category: ErrorCategory) -> bool:
    """Check if an error category can be healed without the user."""
    return category in (ErrorCategory.RETRYABLE, ErrorCategory.CONFLICT)


def get_recovery_strategy(category: ErrorCategory) -> RecoveryStrategy:
    """Get the recovery strategy for a category."""
    return CATEGORY_STRATEGY_MAP[category]


def create_http_error(
    message: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> APIError:
    """Create an error carrying an HTTP status code."""
    return APIError(message, status_code=status_code, details=details)

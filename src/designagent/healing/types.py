"""Types for the self-healing layer.

This module provides:
- ErrorCategory: Classification of a failure
- RecoveryStrategy: What to do about it
- ClassifiedError: A failure with its recovery information
- HealingAttempt: One recorded recovery step
- HealingResult: Outcome of RecoveryHandler.heal
- HealingConfig: Retry/backoff settings
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCategory(str, Enum):
    """Error categories for classification."""

    RETRYABLE = "retryable"  # Rate limits, temporary failures
    CONFLICT = "conflict"  # Optimistic lock failures
    USER_FIXABLE = "user_fixable"  # Validation errors
    FATAL = "fatal"  # Auth failures, server errors, unknown


class RecoveryStrategy(str, Enum):
    """Recovery strategy for each category."""

    EXPONENTIAL_BACKOFF = "exponential_backoff"
    REFRESH_AND_RETRY = "refresh_and_retry"
    PROMPT_USER = "prompt_user"
    ABORT = "abort"


@dataclass
class ClassifiedError:
    """A failure with recovery information.

    Attributes:
        original: The exception that was classified.
        category: Error category.
        strategy: Recommended recovery strategy.
        user_message: Message suitable for the end user.
        can_auto_heal: Whether the handler may recover without the user.
        status_code: HTTP status code, if the failure carried one.
        suggested_action: What the user can do (user_fixable, conflict).
        technical_details: Structured details for logging.
    """

    original: BaseException
    category: ErrorCategory
    strategy: RecoveryStrategy
    user_message: str
    can_auto_heal: bool
    status_code: int | None = None
    suggested_action: str | None = None
    technical_details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "strategy": self.strategy.value,
            "userMessage": self.user_message,
            "canAutoHeal": self.can_auto_heal,
            "statusCode": self.status_code,
            "suggestedAction": self.suggested_action,
            "technicalDetails": self.technical_details,
            "error": str(self.original),
        }


@dataclass
class HealingAttempt:
    """One recorded recovery step.

    attempt_number is 1-based. delay_ms is None when no delay was taken.
    """

    strategy: RecoveryStrategy
    success: bool
    attempt_number: int
    delay_ms: int | None = None
    result: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class HealingResult(Generic[T]):
    """Outcome of RecoveryHandler.heal.

    Attributes:
        success: Whether the operation eventually succeeded.
        data: Operation result (on success).
        error: Final classified error (on failure).
        attempts: Recovery steps, in order.
        total_time_ms: Wall time spent inside heal.
    """

    success: bool
    data: T | None = None
    error: ClassifiedError | None = None
    attempts: list[HealingAttempt] = field(default_factory=list)
    total_time_ms: int = 0


@dataclass
class HealingConfig:
    """Retry/backoff settings.

    Attributes:
        max_retries: Maximum retries after the first call.
        initial_delay_ms: Delay before the first backoff retry.
        max_delay_ms: Upper bound for any backoff delay.
        backoff_multiplier: Growth factor per attempt.
        use_jitter: Add up to 25% random jitter to backoff delays.
        auto_heal_enabled: When False every failure is terminal.
    """

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    backoff_multiplier: float = 2.0
    use_jitter: bool = True
    auto_heal_enabled: bool = True

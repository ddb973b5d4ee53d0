"""Self-healing execution of fallible operations.

This module provides:
- RecoveryHandler: Runs an async operation, classifies failures and
  recovers with backoff or context refresh
- with_healing: One-shot helper using a fresh handler
- should_retry: Stand-alone retry decision for callers with their own loop

The handler calls the operation at most ``max_retries + 1`` times.
user_fixable and fatal failures are never retried. The result is always
returned, never raised; only cancellation propagates.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import TypeVar

from designagent.healing.classifier import classify_error, is_auto_healable
from designagent.healing.types import (
    ClassifiedError,
    HealingAttempt,
    HealingConfig,
    HealingResult,
    RecoveryStrategy,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
ContextRefresh = Callable[[], Awaitable[None]]
AttemptCallback = Callable[[HealingAttempt], None]
SleepFn = Callable[[float], Awaitable[None]]

# Random jitter added on top of a backoff delay, as a fraction of it;
# the jittered delay is still capped at max_delay_ms
JITTER_FRACTION = 0.25


class RecoveryHandler:
    """Executes operations with automatic error recovery.

    Usage:
        handler = RecoveryHandler(HealingConfig(max_retries=2))
        result = await handler.heal(lambda: client.update_form(...), refresh)
        if not result.success:
            show(result.error.user_message)
    """

    def __init__(
        self,
        config: HealingConfig | None = None,
        on_attempt: AttemptCallback | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        """Initialize the handler.

        Args:
            config: Retry/backoff settings (defaults if None).
            on_attempt: Called synchronously for every recorded attempt.
            sleep: Coroutine function used for delays, in seconds.
        """
        self._config = config or HealingConfig()
        self._on_attempt = on_attempt
        self._sleep = sleep

    def get_config(self) -> HealingConfig:
        """Get a copy of the current configuration."""
        return replace(self._config)

    async def heal(
        self,
        operation: Operation[T],
        context_refresh: ContextRefresh | None = None,
    ) -> HealingResult[T]:
        """Execute an operation with automatic healing.

        Args:
            operation: Zero-argument coroutine function to run.
            context_refresh: Called before retrying a conflict.

        Returns:
            HealingResult with data on success or the final classified
            error on failure.
        """
        start = time.monotonic()
        attempts: list[HealingAttempt] = []
        last_error: ClassifiedError | None = None

        for attempt in range(1, self._config.max_retries + 2):
            try:
                data = await operation()
            except Exception as e:
                classified = classify_error(e)
                last_error = classified

                if not self._config.auto_heal_enabled or not classified.can_auto_heal:
                    logger.info(
                        "Operation failed (%s), not healable: %s",
                        classified.category.value,
                        e,
                    )
                    self._record(
                        attempts, attempt, classified.strategy, False, 0, classified.user_message
                    )
                    return self._failure(classified, attempts, start)

                if attempt > self._config.max_retries:
                    logger.warning(
                        "Operation failed after %d retries: %s", self._config.max_retries, e
                    )
                    self._record(
                        attempts, attempt, classified.strategy, False, 0, "Max retries exhausted"
                    )
                    return self._failure(classified, attempts, start)

                try:
                    delay_ms = await self._execute_strategy(classified, attempt, context_refresh)
                except Exception as recovery_error:
                    logger.warning(
                        "Recovery %s failed, giving up: %s",
                        classified.strategy.value,
                        recovery_error,
                    )
                    self._record(
                        attempts,
                        attempt,
                        classified.strategy,
                        False,
                        0,
                        f"Recovery failed: {recovery_error}",
                    )
                    return self._failure(classified, attempts, start)

                logger.warning(
                    "Attempt %d failed (%s), retrying after %dms: %s",
                    attempt,
                    classified.strategy.value,
                    delay_ms,
                    e,
                )
                self._record(
                    attempts,
                    attempt,
                    classified.strategy,
                    True,
                    delay_ms,
                    f"Retrying after {delay_ms}ms delay",
                )
            else:
                return HealingResult(
                    success=True,
                    data=data,
                    attempts=attempts,
                    total_time_ms=_elapsed_ms(start),
                )

        # Unreachable: the last iteration always returns
        return self._failure(last_error, attempts, start)

    async def _execute_strategy(
        self,
        error: ClassifiedError,
        attempt: int,
        context_refresh: ContextRefresh | None,
    ) -> int:
        """Run the recovery strategy and return the delay taken (ms)."""
        if error.strategy is RecoveryStrategy.EXPONENTIAL_BACKOFF:
            delay_ms = self.calculate_delay(attempt)
            await self._sleep(delay_ms / 1000)
            return delay_ms

        if error.strategy is RecoveryStrategy.REFRESH_AND_RETRY:
            if context_refresh is not None:
                await context_refresh()
            delay_ms = self._config.initial_delay_ms
            await self._sleep(delay_ms / 1000)
            return delay_ms

        # prompt_user / abort are never auto-healed
        return 0

    def calculate_delay(self, attempt: int) -> int:
        """Backoff delay in ms for a 1-based attempt number."""
        base = min(
            self._config.initial_delay_ms * self._config.backoff_multiplier ** (attempt - 1),
            self._config.max_delay_ms,
        )
        if self._config.use_jitter:
            base = min(base + base * JITTER_FRACTION * random.random(), self._config.max_delay_ms)
        return int(base)

    def _record(
        self,
        attempts: list[HealingAttempt],
        attempt_number: int,
        strategy: RecoveryStrategy,
        success: bool,
        delay_ms: int,
        result: str,
    ) -> None:
        entry = HealingAttempt(
            strategy=strategy,
            success=success,
            attempt_number=attempt_number,
            delay_ms=delay_ms if delay_ms > 0 else None,
            result=result,
        )
        attempts.append(entry)
        if self._on_attempt is not None:
            try:
                self._on_attempt(entry)
            except Exception as e:
                logger.warning("Healing attempt callback error: %s", e)
                logger.debug("Full traceback:", exc_info=True)

    @staticmethod
    def _failure(
        error: ClassifiedError | None,
        attempts: list[HealingAttempt],
        start: float,
    ) -> HealingResult[T]:
        return HealingResult(
            success=False,
            error=error,
            attempts=attempts,
            total_time_ms=_elapsed_ms(start),
        )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def with_healing(
    operation: Operation[T],
    config: HealingConfig | None = None,
) -> HealingResult[T]:
    """Run an operation with a default-configured handler."""
    return await RecoveryHandler(config).heal(operation)


def should_retry(error: BaseException, attempt_number: int, max_retries: int) -> bool:
    """Check if an operation should be retried after this error."""
    if attempt_number >= max_retries:
        return False
    return is_auto_healable(classify_error(error).category)

"""Tests for RecoveryHandler."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from designagent.healing.classifier import create_http_error
from designagent.healing.handler import RecoveryHandler, should_retry, with_healing
from designagent.healing.types import (
    ErrorCategory,
    HealingAttempt,
    HealingConfig,
    RecoveryStrategy,
)


def failing_then(results: list[object]) -> AsyncMock:
    """An operation that raises or returns each item of results in turn."""
    return AsyncMock(side_effect=results)


class TestHeal:
    """Tests for RecoveryHandler.heal."""

    @pytest.fixture
    def sleep(self) -> AsyncMock:
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_success_first_try(self, sleep: AsyncMock) -> None:
        """A successful operation is returned with no attempts."""
        handler = RecoveryHandler(sleep=sleep)
        result = await handler.heal(failing_then(["ok"]))
        assert result.success is True
        assert result.data == "ok"
        assert result.attempts == []
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_rate_limit_retried_until_success(self, sleep: AsyncMock) -> None:
        """Two 429s then success: three calls, two backoff attempts."""
        config = HealingConfig(max_retries=2, use_jitter=False)
        operation = failing_then(
            [create_http_error("slow", 429), create_http_error("slow", 429), "done"]
        )
        result = await RecoveryHandler(config, sleep=sleep).heal(operation)

        assert result.success is True
        assert result.data == "done"
        assert operation.await_count == 3
        assert [a.strategy for a in result.attempts] == [
            RecoveryStrategy.EXPONENTIAL_BACKOFF,
            RecoveryStrategy.EXPONENTIAL_BACKOFF,
        ]
        assert [a.attempt_number for a in result.attempts] == [1, 2]
        assert all(a.success for a in result.attempts)
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_fatal_not_retried(self, sleep: AsyncMock) -> None:
        """401 is called once and reported with a single failed attempt."""
        operation = failing_then([create_http_error("auth", 401)])
        result = await RecoveryHandler(sleep=sleep).heal(operation)

        assert result.success is False
        assert operation.await_count == 1
        assert result.error is not None
        assert result.error.category is ErrorCategory.FATAL
        assert len(result.attempts) == 1
        assert result.attempts[0].success is False
        assert result.attempts[0].strategy is RecoveryStrategy.ABORT
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_user_fixable_not_retried(self, sleep: AsyncMock) -> None:
        """422 goes back to the user."""
        operation = failing_then([create_http_error("invalid", 422)])
        result = await RecoveryHandler(sleep=sleep).heal(operation)
        assert operation.await_count == 1
        assert result.error is not None
        assert result.error.strategy is RecoveryStrategy.PROMPT_USER

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, sleep: AsyncMock) -> None:
        """A persistent 503 is tried max_retries + 1 times."""
        config = HealingConfig(max_retries=2, use_jitter=False)
        operation = AsyncMock(side_effect=create_http_error("down", 503))
        result = await RecoveryHandler(config, sleep=sleep).heal(operation)

        assert result.success is False
        assert operation.await_count == 3
        assert len(result.attempts) == 3
        assert result.attempts[-1].success is False
        assert result.attempts[-1].result == "Max retries exhausted"
        assert result.error is not None and result.error.status_code == 503

    @pytest.mark.asyncio
    async def test_conflict_refreshes_then_retries(self, sleep: AsyncMock) -> None:
        """409 calls the refresh callback and waits initial_delay_ms."""
        refresh = AsyncMock()
        config = HealingConfig(initial_delay_ms=250)
        operation = failing_then([create_http_error("stale", 409), {"id": "f1"}])
        result = await RecoveryHandler(config, sleep=sleep).heal(operation, refresh)

        assert result.success is True
        refresh.assert_awaited_once()
        sleep.assert_awaited_once_with(0.25)
        assert result.attempts[0].strategy is RecoveryStrategy.REFRESH_AND_RETRY
        assert result.attempts[0].delay_ms == 250

    @pytest.mark.asyncio
    async def test_conflict_without_refresh(self, sleep: AsyncMock) -> None:
        """A conflict still retries when no refresh callback is given."""
        operation = failing_then([create_http_error("stale", 409), "ok"])
        result = await RecoveryHandler(sleep=sleep).heal(operation)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_auto_heal_disabled(self, sleep: AsyncMock) -> None:
        """With auto-heal off every failure is terminal."""
        config = HealingConfig(auto_heal_enabled=False)
        operation = failing_then([create_http_error("slow", 429), "never"])
        result = await RecoveryHandler(config, sleep=sleep).heal(operation)
        assert result.success is False
        assert operation.await_count == 1

    @pytest.mark.asyncio
    async def test_on_attempt_callback(self, sleep: AsyncMock) -> None:
        """Every recorded attempt is reported."""
        seen: list[HealingAttempt] = []
        handler = RecoveryHandler(on_attempt=seen.append, sleep=sleep)
        await handler.heal(failing_then([ConnectionError("reset"), "ok"]))
        assert len(seen) == 1
        assert seen[0].result is not None and seen[0].result.startswith("Retrying after")

    @pytest.mark.asyncio
    async def test_on_attempt_error_isolated(self, sleep: AsyncMock) -> None:
        """A failing attempt callback does not break healing."""
        callback = MagicMock(side_effect=RuntimeError("boom"))
        handler = RecoveryHandler(on_attempt=callback, sleep=sleep)
        result = await handler.heal(failing_then([ConnectionError("reset"), "ok"]))
        assert result.success is True
        assert result.data == "ok"
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_refresh_failure_is_terminal(self, sleep: AsyncMock) -> None:
        """A refresh that raises ends healing with the original conflict."""
        refresh = AsyncMock(side_effect=RuntimeError("refresh failed"))
        operation = failing_then([create_http_error("stale", 409), "never"])
        result = await RecoveryHandler(sleep=sleep).heal(operation, refresh)

        assert result.success is False
        assert operation.await_count == 1
        assert result.error is not None
        assert result.error.category is ErrorCategory.CONFLICT
        assert len(result.attempts) == 1
        assert result.attempts[0].success is False
        assert result.attempts[0].result == "Recovery failed: refresh failed"
        sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, sleep: AsyncMock) -> None:
        """Cancellation is not swallowed."""
        operation = AsyncMock(side_effect=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await RecoveryHandler(sleep=sleep).heal(operation)


class TestCalculateDelay:
    """Tests for backoff delays."""

    def test_exponential_without_jitter(self) -> None:
        """100, 200, 400 capped by max_delay_ms."""
        handler = RecoveryHandler(
            HealingConfig(initial_delay_ms=100, max_delay_ms=300, use_jitter=False)
        )
        assert handler.calculate_delay(1) == 100
        assert handler.calculate_delay(2) == 200
        assert handler.calculate_delay(3) == 300

    def test_jitter_bounded(self) -> None:
        """Jitter adds at most 25%."""
        handler = RecoveryHandler(HealingConfig(initial_delay_ms=1000))
        for _ in range(50):
            assert 1000 <= handler.calculate_delay(1) <= 1250

    def test_jitter_never_exceeds_max_delay(self) -> None:
        """The jittered delay is capped at max_delay_ms."""
        handler = RecoveryHandler(HealingConfig(initial_delay_ms=1000, max_delay_ms=1000))
        with patch("designagent.healing.handler.random.random", return_value=0.99):
            assert handler.calculate_delay(1) == 1000
            assert handler.calculate_delay(5) == 1000

    def test_get_config_is_copy(self) -> None:
        """Mutating the returned config does not affect the handler."""
        handler = RecoveryHandler(HealingConfig(max_retries=5))
        config = handler.get_config()
        config.max_retries = 0
        assert handler.get_config().max_retries == 5


class TestHelpers:
    """Tests for with_healing and should_retry."""

    @pytest.mark.asyncio
    async def test_with_healing(self) -> None:
        """One-shot helper runs the operation."""
        result = await with_healing(AsyncMock(return_value=42))
        assert result.success is True
        assert result.data == 42

    def test_should_retry(self) -> None:
        """Retry only healable errors below the limit."""
        assert should_retry(create_http_error("x", 429), 1, 3) is True
        assert should_retry(create_http_error("x", 429), 3, 3) is False
        assert should_retry(create_http_error("x", 404), 1, 3) is False
        assert should_retry(ValueError("bad"), 0, 3) is False

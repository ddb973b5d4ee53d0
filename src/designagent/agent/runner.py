"""Policy-gated, self-healing tool execution.

This module provides:
- RunStatus: Final status of a tool run
- ToolRunOutcome: Decision, healing result and final args of a run
- GuardedToolRunner: Evaluate policy, then execute with recovery

Flow:
    PolicyEngine.evaluate ─► blocked / needs_confirmation (stop)
                          └► transform / warn / allow
                                  └► RecoveryHandler.heal(execute_tool)

Every step is written to the optional AuditLog and counted by the optional
MetricsCollector under the audit log's session id.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from designagent.agent.audit import AuditActionType, AuditLog
from designagent.healing.handler import RecoveryHandler
from designagent.healing.types import HealingAttempt, HealingConfig, HealingResult
from designagent.policy.types import EvaluationContext, PolicyDecision, RuleAction
from designagent.tools.executor import execute_tool, raise_for_result

if TYPE_CHECKING:
    import httpx

    from designagent.agent.metrics import MetricsCollector
    from designagent.policy.engine import PolicyEngine
    from designagent.tools.types import ToolExecutionContext, ToolMetadata

logger = logging.getLogger(__name__)


class RunStatus(str, Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    BLOCKED = "blocked"
    NEEDS_CONFIRMATION = "needs_confirmation"


@dataclass
class ToolRunOutcome:
    """Result of GuardedToolRunner.run.

    Attributes:
        status: Final status.
        decision: Policy decision taken before execution.
        args: Args the tool was (or would have been) executed with.
        healing: Execution result, None when the tool did not run.
        warning: Message of a matching warn rule.
    """

    status: RunStatus
    decision: PolicyDecision
    args: dict[str, Any]
    healing: HealingResult[Any] | None = None
    warning: str | None = None

    @property
    def executed(self) -> bool:
        return self.healing is not None

    @property
    def data(self) -> Any:
        return self.healing.data if self.healing else None

    @property
    def message(self) -> str | None:
        """User-facing message for anything but a clean success."""
        if self.status in (RunStatus.BLOCKED, RunStatus.NEEDS_CONFIRMATION):
            return self.decision.message
        if self.healing is not None and self.healing.error is not None:
            return self.healing.error.user_message
        return self.warning


class GuardedToolRunner:
    """Runs agent tools behind the policy engine and recovery handler.

    Usage:
        runner = GuardedToolRunner(engine, HealingConfig(max_retries=2), audit)
        outcome = await runner.run(metadata, {"formId": "f1"}, exec_ctx,
                                   session={"sessionCost": 0.12})
        if outcome.status is RunStatus.NEEDS_CONFIRMATION:
            ask_user(outcome.message)
    """

    def __init__(
        self,
        engine: PolicyEngine,
        healing_config: HealingConfig | None = None,
        audit: AuditLog | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._engine = engine
        self._healing_config = healing_config or HealingConfig()
        self._audit = audit
        self._client = client
        self._sleep = sleep
        self._metrics = metrics

    @property
    def session_id(self) -> str | None:
        """Session the audit log belongs to, if any."""
        if self._audit is None or not self._audit.session_id:
            return None
        return self._audit.session_id

    async def run(
        self,
        metadata: ToolMetadata,
        args: dict[str, Any],
        exec_context: ToolExecutionContext,
        session: dict[str, Any] | None = None,
        confirmed: bool = False,
        context_refresh: Callable[[], Awaitable[None]] | None = None,
    ) -> ToolRunOutcome:
        """Evaluate policy for a tool call and execute it if allowed.

        Args:
            metadata: Tool to run.
            args: Invocation args.
            exec_context: Endpoint/auth settings.
            session: Session context bindings (sessionCost, ...).
            confirmed: The user already confirmed this call.
            context_refresh: Called before retrying a conflict.
        """
        context = dict(session or {})
        if exec_context.service_id:
            context.setdefault("serviceId", exec_context.service_id)
        if exec_context.user_id:
            context.setdefault("userId", exec_context.user_id)

        decision = self._engine.evaluate(
            EvaluationContext(tool=metadata.to_descriptor(), context=context, args=args)
        )
        self._record_decision(metadata, args, decision)

        if decision.action is RuleAction.BLOCK:
            return ToolRunOutcome(RunStatus.BLOCKED, decision, args)

        if (
            decision.action is RuleAction.REQUIRE_CONFIRMATION
            and self._engine.are_confirmations_enabled()
            and not confirmed
        ):
            return ToolRunOutcome(RunStatus.NEEDS_CONFIRMATION, decision, args)

        final_args = args
        if decision.action is RuleAction.TRANSFORM and decision.transformed_args is not None:
            final_args = decision.transformed_args
        warning = decision.message if decision.action is RuleAction.WARN else None
        if warning:
            logger.warning("Tool %s: %s", metadata.name, warning)

        async def operation() -> Any:
            result = await execute_tool(metadata, final_args, exec_context, self._client)
            return raise_for_result(metadata, result)

        handler = RecoveryHandler(
            self._healing_config,
            on_attempt=lambda attempt: self._record_attempt(metadata, final_args, attempt),
            sleep=self._sleep,
        )
        healing = await handler.heal(operation, context_refresh)
        self._record_tool_call(metadata, final_args, healing)

        status = RunStatus.EXECUTED if healing.success else RunStatus.FAILED
        return ToolRunOutcome(status, decision, final_args, healing, warning)

    def _record_decision(
        self, metadata: ToolMetadata, args: dict[str, Any], decision: PolicyDecision
    ) -> None:
        if self._metrics is not None:
            self._metrics.record_policy_check(
                decision.rule.name if decision.rule else None, decision.allowed, self.session_id
            )
        if self._audit is None:
            return
        self._audit.record(
            AuditActionType.POLICY_CHECK,
            metadata.name,
            decision.allowed,
            args=args,
            result=decision.to_dict(),
            error_message=None if decision.allowed else decision.message,
        )

    def _record_attempt(
        self, metadata: ToolMetadata, args: dict[str, Any], attempt: HealingAttempt
    ) -> None:
        if self._metrics is not None:
            self._metrics.record_healing_attempt(
                attempt.strategy.value, attempt.success, self.session_id
            )
        if self._audit is None:
            return
        self._audit.record(
            AuditActionType.HEALING_ATTEMPT,
            attempt.strategy.value,
            attempt.success,
            args={"tool": metadata.name, **args},
            result=attempt.result,
            duration_ms=attempt.delay_ms or 0,
        )

    def _record_tool_call(
        self, metadata: ToolMetadata, args: dict[str, Any], healing: HealingResult[Any]
    ) -> None:
        if self._metrics is not None:
            self._metrics.record_tool_call(
                metadata.name, healing.success, healing.total_time_ms, self.session_id
            )
        if self._audit is None:
            return
        self._audit.record(
            AuditActionType.TOOL_CALL,
            metadata.name,
            healing.success,
            args=args,
            result=healing.data,
            error_message=healing.error.user_message if healing.error else None,
            duration_ms=healing.total_time_ms,
        )

"""Prometheus metrics for agent sessions.

This module provides:
- MetricsCollector: Counts tool calls, healing attempts and policy checks,
  times tool calls, tracks sessions and renders the Prometheus text format
- SessionMetrics: Running totals for one session
- AgentMetrics: Aggregate view over everything recorded
- get_metrics_collector: Process-wide collector

Every collector owns its own CollectorRegistry, so collectors created in
tests never collide with the process-wide one.

Exported metrics:
    agent_tool_calls_total{tool, status}            counter
    agent_healing_attempts_total{strategy, status}  counter
    agent_policy_checks_total{rule, status}         counter
    agent_tool_duration_ms{tool}                    histogram
    agent_active_sessions                           gauge
    agent_session_cost_usd{session_id}              gauge
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest
from prometheus_client.samples import Sample

logger = logging.getLogger(__name__)

TOOL_DURATION_BUCKETS = (1, 5, 10, 25, 50, 100, 250, 500, 1000)
TOP_TOOLS_LIMIT = 10

# Label used for policy checks that matched no rule
NO_RULE = "none"


@dataclass
class SessionMetrics:
    """Running totals for one agent session."""

    session_id: str
    user_id: str = ""
    service_id: str = ""
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None
    tool_call_count: int = 0
    successful_tool_calls: int = 0
    failed_tool_calls: int = 0
    healing_attempts: int = 0
    policy_checks: int = 0
    blocked_tool_calls: int = 0
    total_cost_usd: float = 0.0


@dataclass
class AgentMetrics:
    """Aggregate metrics across all sessions.

    Attributes:
        total_sessions: Sessions started since creation or reset.
        active_sessions: Sessions started and not yet ended.
        total_cost_usd: Cost reported for all sessions.
        avg_cost_per_session: total_cost_usd / total_sessions.
        total_tool_calls: Tool calls recorded.
        tool_call_success_rate: Successful share of tool calls (1.0 if none).
        avg_response_time_ms: Mean tool call duration.
        top_tools: (tool, calls) pairs, most called first.
    """

    total_sessions: int
    active_sessions: int
    total_cost_usd: float
    avg_cost_per_session: float
    total_tool_calls: int
    tool_call_success_rate: float
    avg_response_time_ms: float
    top_tools: list[tuple[str, int]]


class MetricsCollector:
    """Collects agent metrics.

    Usage:
        metrics = MetricsCollector()
        metrics.session_start("sess-1", "user-1", "svc-1")
        metrics.record_tool_call("getForm", True, 42, session_id="sess-1")
        text = metrics.to_prometheus()
        summary = metrics.session_end("sess-1")
    """

    def __init__(self) -> None:
        self.registry = CollectorRegistry()
        self._tool_calls = Counter(
            "agent_tool_calls",
            "Total number of tool calls",
            ["tool", "status"],
            registry=self.registry,
        )
        self._healing_attempts = Counter(
            "agent_healing_attempts",
            "Total healing attempts",
            ["strategy", "status"],
            registry=self.registry,
        )
        self._policy_checks = Counter(
            "agent_policy_checks",
            "Total policy checks",
            ["rule", "status"],
            registry=self.registry,
        )
        self._tool_duration = Histogram(
            "agent_tool_duration_ms",
            "Tool execution duration in milliseconds",
            ["tool"],
            buckets=TOOL_DURATION_BUCKETS,
            registry=self.registry,
        )
        self._active_sessions = Gauge(
            "agent_active_sessions",
            "Number of active agent sessions",
            registry=self.registry,
        )
        self._session_cost = Gauge(
            "agent_session_cost_usd",
            "Current session cost in USD",
            ["session_id"],
            registry=self.registry,
        )

        self._sessions: dict[str, SessionMetrics] = {}
        self._sessions_started = 0
        self._ended_cost_usd = 0.0

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    def record_tool_call(
        self, tool: str, success: bool, duration_ms: float, session_id: str | None = None
    ) -> None:
        """Count a finished tool call and observe its duration."""
        status = "success" if success else "error"
        self._tool_calls.labels(tool=tool, status=status).inc()
        self._tool_duration.labels(tool=tool).observe(duration_ms)

        session = self._session(session_id)
        if session is not None:
            session.tool_call_count += 1
            if success:
                session.successful_tool_calls += 1
            else:
                session.failed_tool_calls += 1

    def record_healing_attempt(
        self, strategy: str, success: bool, session_id: str | None = None
    ) -> None:
        status = "success" if success else "error"
        self._healing_attempts.labels(strategy=strategy, status=status).inc()

        session = self._session(session_id)
        if session is not None:
            session.healing_attempts += 1

    def record_policy_check(
        self, rule: str | None, allowed: bool, session_id: str | None = None
    ) -> None:
        """Count a policy decision under the rule that decided it."""
        status = "passed" if allowed else "blocked"
        self._policy_checks.labels(rule=rule or NO_RULE, status=status).inc()

        session = self._session(session_id)
        if session is not None:
            session.policy_checks += 1
            if not allowed:
                session.blocked_tool_calls += 1

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def session_start(self, session_id: str, user_id: str = "", service_id: str = "") -> None:
        if session_id in self._sessions:
            logger.debug("Session %s already started", session_id)
            return
        self._sessions[session_id] = SessionMetrics(
            session_id=session_id, user_id=user_id, service_id=service_id
        )
        self._sessions_started += 1
        self._active_sessions.inc()

    def set_session_cost(self, session_id: str, cost_usd: float) -> None:
        """Record the current cost of an active session."""
        session = self._session(session_id)
        if session is None:
            return
        session.total_cost_usd = cost_usd
        self._session_cost.labels(session_id=session_id).set(cost_usd)

    def session_end(self, session_id: str) -> SessionMetrics | None:
        """End a session.

        Returns:
            The session's totals, or None if it was not active.
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session.end_time = datetime.now(timezone.utc)
        self._ended_cost_usd += session.total_cost_usd
        self._active_sessions.dec()
        with contextlib.suppress(KeyError):
            self._session_cost.remove(session_id)
        return session

    def get_session(self, session_id: str) -> SessionMetrics | None:
        return self._sessions.get(session_id)

    def _session(self, session_id: str | None) -> SessionMetrics | None:
        if session_id is None:
            return None
        return self._sessions.get(session_id)

    # -------------------------------------------------------------------------
    # Export
    # -------------------------------------------------------------------------

    def get_agent_metrics(self) -> AgentMetrics:
        """Aggregate everything recorded so far."""
        calls_by_tool: dict[str, int] = {}
        successful = 0
        for sample in self._samples(self._tool_calls, "agent_tool_calls_total"):
            count = int(sample.value)
            tool = sample.labels["tool"]
            calls_by_tool[tool] = calls_by_tool.get(tool, 0) + count
            if sample.labels["status"] == "success":
                successful += count
        total_calls = sum(calls_by_tool.values())

        duration_sum = sum(
            s.value for s in self._samples(self._tool_duration, "agent_tool_duration_ms_sum")
        )
        duration_count = sum(
            s.value for s in self._samples(self._tool_duration, "agent_tool_duration_ms_count")
        )

        total_cost = self._ended_cost_usd + sum(s.total_cost_usd for s in self._sessions.values())
        top_tools = sorted(calls_by_tool.items(), key=lambda item: item[1], reverse=True)

        return AgentMetrics(
            total_sessions=self._sessions_started,
            active_sessions=len(self._sessions),
            total_cost_usd=total_cost,
            avg_cost_per_session=(
                total_cost / self._sessions_started if self._sessions_started else 0.0
            ),
            total_tool_calls=total_calls,
            tool_call_success_rate=successful / total_calls if total_calls else 1.0,
            avg_response_time_ms=duration_sum / duration_count if duration_count else 0.0,
            top_tools=top_tools[:TOP_TOOLS_LIMIT],
        )

    @staticmethod
    def _samples(metric: Counter | Histogram, sample_name: str) -> list[Sample]:
        return [
            sample
            for family in metric.collect()
            for sample in family.samples
            if sample.name == sample_name
        ]

    def to_prometheus(self) -> str:
        """Render all metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry).decode("utf-8")

    def reset(self) -> None:
        """Drop all recorded values and sessions."""
        for metric in (
            self._tool_calls,
            self._healing_attempts,
            self._policy_checks,
            self._tool_duration,
            self._session_cost,
        ):
            metric.clear()
        self._active_sessions.set(0)
        self._sessions.clear()
        self._sessions_started = 0
        self._ended_cost_usd = 0.0


_global_metrics: MetricsCollector | None = None


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide collector, creating it on first use."""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics

"""Agent composition - policy gate, recovery, audit and metrics around tool calls."""

from designagent.agent.audit import AuditActionType, AuditEntry, AuditLog, AuditSummary
from designagent.agent.metrics import (
    AgentMetrics,
    MetricsCollector,
    SessionMetrics,
    get_metrics_collector,
)
from designagent.agent.runner import GuardedToolRunner, RunStatus, ToolRunOutcome

__all__ = [
    # Runner
    "GuardedToolRunner",
    "RunStatus",
    "ToolRunOutcome",
    # Audit
    "AuditActionType",
    "AuditEntry",
    "AuditLog",
    "AuditSummary",
    # Metrics
    "AgentMetrics",
    "MetricsCollector",
    "SessionMetrics",
    "get_metrics_collector",
]

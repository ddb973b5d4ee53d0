"""In-memory audit log of agent actions.

This module provides:
- AuditActionType: Kind of recorded action
- AuditEntry: One recorded action
- AuditSummary: Aggregate counts for a session
- AuditLog: Bounded FIFO log with query and summary

Entries are kept in memory only; the oldest entry is dropped once
``max_entries`` is reached.
"""

from __future__ import annotations

import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_MAX_ENTRIES = 10000


class AuditActionType(str, Enum):
    TOOL_CALL = "tool_call"
    POLICY_CHECK = "policy_check"
    HEALING_ATTEMPT = "healing_attempt"


@dataclass
class AuditEntry:
    """One recorded agent action.

    Attributes:
        action_type: Kind of action.
        name: Tool name, rule name or healing strategy.
        success: Whether the action succeeded (for policy checks: allowed).
        args: Arguments involved.
        result: Result payload, if any.
        error_message: Failure description.
        duration_ms: Time taken.
    """

    action_type: AuditActionType
    name: str
    success: bool
    session_id: str = ""
    user_id: str = ""
    service_id: str = ""
    args: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error_message: str | None = None
    duration_ms: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class AuditSummary:
    """Aggregate counts over the entries currently held."""

    session_id: str
    user_id: str
    service_id: str
    start_time: datetime
    end_time: datetime | None
    tool_call_count: int
    successful_tool_calls: int
    failed_tool_calls: int
    policy_checks: int
    blocked_tool_calls: int
    healing_attempts: int


class AuditLog:
    """Bounded in-memory audit log for one agent session."""

    def __init__(
        self,
        session_id: str = "",
        user_id: str = "",
        service_id: str = "",
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self.session_id = session_id
        self.user_id = user_id
        self.service_id = service_id
        self.start_time = datetime.now(timezone.utc)
        self._entries: deque[AuditEntry] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def record(
        self,
        action_type: AuditActionType,
        name: str,
        success: bool,
        args: dict[str, Any] | None = None,
        result: Any = None,
        error_message: str | None = None,
        duration_ms: int = 0,
    ) -> AuditEntry:
        """Append an entry, evicting the oldest when full."""
        entry = AuditEntry(
            action_type=action_type,
            name=name,
            success=success,
            session_id=self.session_id,
            user_id=self.user_id,
            service_id=self.service_id,
            args=dict(args or {}),
            result=result,
            error_message=error_message,
            duration_ms=duration_ms,
        )
        self._entries.append(entry)
        return entry

    def entries(self) -> list[AuditEntry]:
        """All entries, oldest first."""
        return list(self._entries)

    def query(
        self,
        action_type: AuditActionType | None = None,
        name: str | None = None,
        success: bool | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[AuditEntry]:
        """Filter entries, most recent first.

        Args:
            action_type: Only entries of this type.
            name: Only entries with this name.
            success: Only successful (True) or failed (False) entries.
            since: Only entries at or after this time.
            until: Only entries at or before this time.
            limit: Maximum number of entries returned.
            offset: Entries to skip (after sorting).
        """
        results = [
            e
            for e in reversed(self._entries)
            if (action_type is None or e.action_type is action_type)
            and (name is None or e.name == name)
            and (success is None or e.success is success)
            and (since is None or e.timestamp >= since)
            and (until is None or e.timestamp <= until)
        ]
        results = results[offset:]
        if limit is not None:
            results = results[:limit]
        return results

    def summary(self) -> AuditSummary:
        tool_calls = [e for e in self._entries if e.action_type is AuditActionType.TOOL_CALL]
        checks = [e for e in self._entries if e.action_type is AuditActionType.POLICY_CHECK]
        healing = [e for e in self._entries if e.action_type is AuditActionType.HEALING_ATTEMPT]
        return AuditSummary(
            session_id=self.session_id,
            user_id=self.user_id,
            service_id=self.service_id,
            start_time=self.start_time,
            end_time=self._entries[-1].timestamp if self._entries else None,
            tool_call_count=len(tool_calls),
            successful_tool_calls=sum(1 for e in tool_calls if e.success),
            failed_tool_calls=sum(1 for e in tool_calls if not e.success),
            policy_checks=len(checks),
            blocked_tool_calls=sum(1 for e in checks if not e.success),
            healing_attempts=len(healing),
        )

    def clear(self) -> None:
        self._entries.clear()

"""Types for tool execution.

This module provides:
- ToolMetadata: Description of one backend operation the agent can call
- ToolExecutionContext: Per-call auth/endpoint settings
- ToolError, ToolExecutionResult: Outcome of a call
- ToolExecutionError: Raised by raise_for_result so failures can be
  classified by the healing layer
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from designagent.core.errors import APIError
from designagent.policy.types import ToolDescriptor

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class ToolMetadata:
    """A named backend operation mapped to one REST endpoint.

    Attributes:
        name: Tool name as seen by the agent (e.g. "updateForm").
        method: HTTP method.
        path: Path template, e.g. "/services/{serviceId}/forms/{formId}".
        description: Human-readable description.
        mutates: Whether the call changes server state. Defaults from method.
        scope: Entity scope (e.g. "form", "role").
        requires_confirmation: Tool-level confirmation flag.
        tags: Free-form tags.
    """

    name: str
    method: str = "GET"
    path: str = "/"
    description: str = ""
    mutates: bool | None = None
    scope: str | None = None
    requires_confirmation: bool = False
    tags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if self.mutates is None:
            self.mutates = self.method in MUTATING_METHODS

    def to_descriptor(self) -> ToolDescriptor:
        """Policy-engine view of this tool."""
        return ToolDescriptor(
            name=self.name,
            method=self.method,
            path=self.path,
            mutates=bool(self.mutates),
            requires_confirmation=self.requires_confirmation,
        )


@dataclass
class ToolExecutionContext:
    """Per-call settings for executing a tool.

    Attributes:
        api_base_url: Base URL of the REST backend.
        service_id: Current service, substituted into "{serviceId}".
        user_id: Acting user.
        auth_token: Bearer token, sent when set.
        timeout: Request timeout in seconds.
    """

    api_base_url: str
    service_id: str | None = None
    user_id: str | None = None
    auth_token: str | None = None
    timeout: float = 30.0


@dataclass
class ToolError:
    """Error part of a failed tool call."""

    code: str
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class ToolExecutionResult:
    """Outcome of execute_tool.

    status_code is 0 when no response was received (timeout, network).
    """

    success: bool
    status_code: int
    duration_ms: int
    data: Any = None
    error: ToolError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error.to_dict() if self.error else None,
            "statusCode": self.status_code,
            "durationMs": self.duration_ms,
        }


class ToolExecutionError(APIError):
    """A failed tool call, raised so it can be classified and healed."""

    def __init__(self, tool_name: str, error: ToolError, status_code: int) -> None:
        super().__init__(
            f"{tool_name}: {error.message}",
            status_code=status_code,
            code=error.code,
            details=error.details,
        )
        self.tool_name = tool_name

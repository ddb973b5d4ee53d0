"""Base exception types shared by all designagent subsystems."""

from __future__ import annotations

from typing import Any


class DesignAgentError(Exception):
    """Base exception for designagent errors."""


class APIError(DesignAgentError):
    """Error returned by (or while talking to) the REST backend.

    Attributes:
        status_code: HTTP status code, or 0 when no response was received.
        code: Machine-readable error code (e.g. "CONFLICT", "TIMEOUT").
        details: Optional structured details from the response body.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details

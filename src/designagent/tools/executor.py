"""HTTP execution of agent tools.

This module provides:
- build_request: Turn tool metadata + args into an httpx.Request
- execute_tool: Send the request and return a ToolExecutionResult
- extract_error: Pull code/message/details out of an error response body
- raise_for_result: Convert a failed result into ToolExecutionError

Argument mapping: ``args["data"]`` is the JSON body (POST/PUT/PATCH only),
args named in the path template are substituted into it, everything else
becomes a query parameter.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any
from urllib.parse import quote

import httpx

from designagent.tools.types import (
    ToolError,
    ToolExecutionContext,
    ToolExecutionError,
    ToolExecutionResult,
    ToolMetadata,
)

logger = logging.getLogger(__name__)

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

STATUS_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def code_from_status(status_code: int) -> str:
    """Map an HTTP status code to an error code."""
    return STATUS_CODES.get(status_code, "UNKNOWN_ERROR")


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return json.dumps(value)


def build_request(
    metadata: ToolMetadata,
    args: dict[str, Any],
    context: ToolExecutionContext,
) -> httpx.Request:
    """Build the HTTP request for a tool call.

    Args:
        metadata: Tool being called.
        args: Invocation arguments.
        context: Endpoint, auth and service settings.

    Returns:
        Request ready to be sent with an httpx.AsyncClient.
    """
    path = metadata.path
    params: dict[str, str] = {}
    body: Any = None

    for key, value in args.items():
        placeholder = "{" + key + "}"
        if key == "data":
            body = value
        elif placeholder in path:
            path = path.replace(placeholder, quote(_stringify(value), safe=""))
        elif value is not None:
            params[key] = _stringify(value)

    if context.service_id and "{serviceId}" in path:
        path = path.replace("{serviceId}", quote(context.service_id, safe=""))

    headers = {"Content-Type": "application/json"}
    if context.auth_token:
        headers["Authorization"] = f"Bearer {context.auth_token}"

    request = httpx.Request(
        metadata.method,
        context.api_base_url.rstrip("/") + path,
        params=params,
        headers=headers,
        json=body if body and metadata.method in BODY_METHODS else None,
    )
    request.extensions["timeout"] = httpx.Timeout(context.timeout).as_dict()
    return request


async def execute_tool(
    metadata: ToolMetadata,
    args: dict[str, Any],
    context: ToolExecutionContext,
    client: httpx.AsyncClient | None = None,
) -> ToolExecutionResult:
    """Execute a tool against the REST backend.

    Never raises for HTTP or transport failures; those come back as a
    failed result (status 0 when no response was received).

    Args:
        metadata: Tool being called.
        args: Invocation arguments.
        context: Endpoint, auth and service settings.
        client: Shared client. A short-lived one is created if None.
    """
    start = time.monotonic()
    request = build_request(metadata, args, context)
    logger.debug("Executing tool %s: %s %s", metadata.name, request.method, request.url)

    try:
        if client is None:
            async with httpx.AsyncClient() as own_client:
                response = await own_client.send(request)
        else:
            response = await client.send(request)
    except httpx.TimeoutException:
        return ToolExecutionResult(
            success=False,
            status_code=0,
            duration_ms=_elapsed_ms(start),
            error=ToolError(code="TIMEOUT", message="Request timed out"),
        )
    except httpx.HTTPError as e:
        return ToolExecutionResult(
            success=False,
            status_code=0,
            duration_ms=_elapsed_ms(start),
            error=ToolError(code="NETWORK_ERROR", message=str(e) or type(e).__name__),
        )

    body = _parse_body(response)
    if response.is_error:
        error = extract_error(body, response.status_code)
        logger.info(
            "Tool %s failed with HTTP %d (%s)", metadata.name, response.status_code, error.code
        )
        return ToolExecutionResult(
            success=False,
            status_code=response.status_code,
            duration_ms=_elapsed_ms(start),
            error=error,
        )

    return ToolExecutionResult(
        success=True,
        status_code=response.status_code,
        duration_ms=_elapsed_ms(start),
        data=body,
    )


def _parse_body(response: httpx.Response) -> Any:
    """Parse a response body as JSON, falling back to {"text": ...}."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return {"text": response.text}


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def extract_error(body: Any, status_code: int) -> ToolError:
    """Extract error details from a response body.

    Understands ``{"error": {"code", "message", "details"}}`` and
    ``{"message": ...}``; anything else gets a generic message.
    """
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = body["error"]
        code = error.get("code")
        message = error.get("message")
        details = error.get("details")
        return ToolError(
            code=code if isinstance(code, str) else code_from_status(status_code),
            message=message if isinstance(message, str) else "An error occurred",
            details=details if isinstance(details, dict) else None,
        )

    if isinstance(body, dict) and "message" in body:
        message = body["message"]
        return ToolError(
            code=code_from_status(status_code),
            message=message if isinstance(message, str) else "An error occurred",
        )

    return ToolError(code=code_from_status(status_code), message=f"HTTP {status_code} error")


def raise_for_result(metadata: ToolMetadata, result: ToolExecutionResult) -> Any:
    """Return the data of a successful result.

    Raises:
        ToolExecutionError: If the call failed.
    """
    if result.success:
        return result.data
    error = result.error or ToolError(code="UNKNOWN_ERROR", message="An unknown error occurred")
    raise ToolExecutionError(metadata.name, error, result.status_code)

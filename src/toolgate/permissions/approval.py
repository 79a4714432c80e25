"""Approval callbacks for interactive permission prompts."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from toolgate.permissions.session import OperatorResponse
from toolgate.types.permissions import PermissionRequest

logger = logging.getLogger(__name__)

PROMPT_CHOICES = "[y]es once / [a]lways / [n]o / [d]eny always"


@runtime_checkable
class ApprovalCallback(Protocol):
    """Protocol for asking the operator about a tool call."""

    async def request_permission(
        self,
        request: PermissionRequest,
        description: str,
        suggestions: Sequence[str] = (),
    ) -> OperatorResponse:
        """Ask the operator whether to allow a tool call.

        *suggestions* are the patterns an "always" answer would cover.
        """
        ...


def describe_request(request: PermissionRequest) -> str:
    """Build a human-readable one-line description of a tool call."""
    tool_name = request.tool_name
    args = request.arguments
    if tool_name == "bash" and "command" in args:
        return f"Run command: {args['command']}"
    if tool_name in ("write", "edit", "multiedit", "patch") and "path" in args:
        return f"Modify {args['path']}"
    if tool_name in ("read", "list") and "path" in args:
        return f"Read {args['path']}"
    if tool_name == "external_directory" and "path" in args:
        return f"Access outside the project: {args['path']}"
    if tool_name in ("glob", "grep") and "pattern" in args:
        return f"Search: {args['pattern']}"
    if tool_name == "webfetch" and "url" in args:
        return f"Fetch URL: {args['url']}"
    if tool_name == "task":
        return f"Launch sub-agent: {args.get('agent', 'unknown')}"
    # MCP tools
    if tool_name.startswith("mcp__"):
        parts = tool_name.split("__", 2)
        short = parts[-1] if len(parts) > 1 else tool_name
        return f"MCP tool: {short}"
    # Fallback: tool name + truncated args
    args_str = json.dumps(dict(args), default=str)
    if len(args_str) > 80:
        args_str = args_str[:77] + "..."
    return f"{tool_name}({args_str})"


async def read_line(prompt: str = "") -> str:
    """Read one line from stdin without blocking the event loop.

    The read runs on a daemon thread that resolves a future; cancelling the
    caller abandons the read and never delays loop shutdown.  Raises
    EOFError at end of input.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[str] = loop.create_future()

    def deliver(line: str | None, exc: BaseException | None) -> None:
        if future.done():
            return
        if exc is not None:
            future.set_exception(exc)
        else:
            future.set_result(line or "")

    def read() -> None:
        line: str | None = None
        error: BaseException | None = None
        try:
            line = input(prompt)
        except (EOFError, KeyboardInterrupt, OSError, ValueError) as exc:
            error = exc
        try:
            loop.call_soon_threadsafe(deliver, line, error)
        except RuntimeError:
            logger.debug("Event loop closed before stdin answered")

    threading.Thread(target=read, name="toolgate-stdin", daemon=True).start()
    return await future


class StdinApprovalCallback:
    """Plain-text approval prompt using stdin/stdout."""

    async def request_permission(
        self,
        request: PermissionRequest,
        description: str,
        suggestions: Sequence[str] = (),
    ) -> OperatorResponse:
        """Prompt the operator for one of the four answers."""
        prompt = f"\nAllow {request.tool_name}? {description}\n"
        if suggestions:
            prompt += f"(always covers: {', '.join(suggestions)})\n"
        prompt += f"{PROMPT_CHOICES} > "
        try:
            answer = await read_line(prompt)
        except (EOFError, KeyboardInterrupt):
            return OperatorResponse.DENY_ONCE
        return OperatorResponse.parse(answer)

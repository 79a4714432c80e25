"""What a hook gets to see about the event that fired it."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from toolgate.types.hooks import HookEvent
from toolgate.types.permissions import PermissionRequest


@dataclass(frozen=True, slots=True)
class HookContext:
    """Event data for one firing.

    Exposed to the hook command three ways: as ``{name}`` template
    variables, as ``TOOLGATE_*`` environment variables and as a JSON
    document on stdin.
    """

    event: HookEvent
    session_id: str = ""
    cwd: str = ""
    tool_name: str | None = None
    tool_args: dict[str, Any] = field(default_factory=dict)
    permission_id: str | None = None
    rule: str | None = None  # Label of the rule that asked

    def variables(self) -> dict[str, str]:
        """Template variables, unquoted."""
        values = {
            "event": self.event.value,
            "session_id": self.session_id,
            "cwd": self.cwd,
            "tool_name": self.tool_name or "",
            "permission_id": self.permission_id or "",
            "rule": self.rule or "",
        }
        for name in ("command", "path", "url", "pattern"):
            value = self.tool_args.get(name)
            values[name] = "" if value is None else str(value)
        return values

    def environment(self) -> dict[str, str]:
        return {f"TOOLGATE_{key.upper()}": value for key, value in self.variables().items()}

    def payload(self) -> dict[str, Any]:
        """JSON document written to the hook's stdin."""
        data: dict[str, Any] = {
            "event": self.event.value,
            "session_id": self.session_id,
            "cwd": self.cwd,
        }
        if self.tool_name is not None:
            data["tool"] = self.tool_name
            data["args"] = self.tool_args
        if self.permission_id is not None:
            data["permission_id"] = self.permission_id
            data["rule"] = self.rule
        return data


def build_hook_context(
    event: HookEvent,
    *,
    request: PermissionRequest | None = None,
    permission_id: str | None = None,
    rule: str | None = None,
    session_id: str = "",
    cwd: str | Path = "",
) -> HookContext:
    """Build a HookContext for a given event."""
    if request is not None and not session_id:
        session_id = request.session_id or ""
    return HookContext(
        event=event,
        session_id=session_id,
        cwd=str(cwd),
        tool_name=request.tool_name if request is not None else None,
        tool_args=dict(request.arguments) if request is not None else {},
        permission_id=permission_id,
        rule=rule,
    )

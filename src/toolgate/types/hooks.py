"""Hook types: shell commands run on permission events."""

from __future__ import annotations

import fnmatch
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from toolgate.types.permissions import Decision


class HookEvent(Enum):
    """Events that can trigger hooks."""

    PERMISSION_ASK = "permission_ask"  # A call needs approval; the hook may decide
    SESSION_START = "session_start"
    SESSION_END = "session_end"


@dataclass(frozen=True, slots=True)
class Hook:
    """A shell command bound to an event, optionally limited to some tools."""

    event: HookEvent
    command: str
    matcher: str | None = None  # Tool name glob, only meaningful for permission_ask
    timeout: float = 30.0

    def applies_to(self, event: HookEvent, tool_name: str | None) -> bool:
        if event is not self.event:
            return False
        if self.matcher is None:
            return True
        return tool_name is not None and fnmatch.fnmatchcase(tool_name, self.matcher)


@dataclass(frozen=True, slots=True)
class HookResult:
    """Outcome of one hook run. ``data`` holds its parsed JSON output, if any."""

    success: bool
    output: str = ""
    error: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> Decision | None:
        """Verdict from ``{"status": ...}``.

        Only one object is consulted: ``output`` when it is an object,
        otherwise the top level.
        """
        section = self.data.get("output")
        if not isinstance(section, dict):
            section = self.data
        try:
            return Decision(section.get("status"))
        except ValueError:
            return None

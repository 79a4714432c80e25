"""Rich-formatted approval prompt for tool calls."""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console, Group
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from toolgate.permissions.approval import PROMPT_CHOICES, read_line
from toolgate.permissions.session import OperatorResponse
from toolgate.types.permissions import PermissionRequest

_ACCENT = "#fbbf24"
_MUTED = "#7c7c8a"
_MAX_VALUE = 120


def _arguments_grid(request: PermissionRequest) -> Table:
    grid = Table.grid(padding=(0, 2))
    grid.add_column(style=_MUTED)
    grid.add_column()
    for name, value in request.arguments.items():
        text = str(value)
        if len(text) > _MAX_VALUE:
            text = text[:_MAX_VALUE - 3] + "..."
        grid.add_row(name, Text(text))
    return grid


class RichApprovalCallback:
    """Approval panel showing the call, its arguments and what "always" covers."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)

    async def request_permission(
        self,
        request: PermissionRequest,
        description: str,
        suggestions: Sequence[str] = (),
    ) -> OperatorResponse:
        parts: list[Text | Table] = [Text(description, style="#94a3b8")]
        if request.arguments:
            parts.append(_arguments_grid(request))
        if suggestions:
            covers = Text("always covers: ", style=_MUTED)
            covers.append(", ".join(suggestions), style="#e2e8f0")
            parts.append(covers)

        self._console.print()
        self._console.print(Panel(
            Group(*parts),
            title=Text(f" ◆ {request.tool_name} ", style=f"bold {_ACCENT}"),
            border_style=_ACCENT,
            expand=False,
            padding=(0, 1),
        ))
        self._console.print(
            f"[bold {_ACCENT}]Allow?[/bold {_ACCENT}] [{_MUTED}]{escape(PROMPT_CHOICES)}[/{_MUTED}] › ",
            end="",
        )

        try:
            answer = await read_line()
        except (EOFError, KeyboardInterrupt):
            self._console.print()
            return OperatorResponse.DENY_ONCE
        return OperatorResponse.parse(answer)

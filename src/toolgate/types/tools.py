"""Tool argument schemas used for request validation and grant narrowing."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ToolSchema:
    """What the permission core needs to know about a tool's arguments."""

    name: str
    required: tuple[str, ...] = ()
    subject: str | None = None  # Argument that config patterns and grants target


def _file_tool(name: str, *, required: bool = True) -> ToolSchema:
    return ToolSchema(name=name, required=("path",) if required else (), subject="path")


DEFAULT_SCHEMAS: dict[str, ToolSchema] = {
    schema.name: schema
    for schema in (
        ToolSchema(name="bash", required=("command",), subject="command"),
        _file_tool("read"),
        _file_tool("write"),
        _file_tool("edit"),
        _file_tool("multiedit"),
        _file_tool("patch"),
        _file_tool("list", required=False),
        _file_tool("external_directory"),
        ToolSchema(name="glob", required=("pattern",), subject="pattern"),
        ToolSchema(name="grep", required=("pattern",), subject="pattern"),
        ToolSchema(name="webfetch", required=("url",), subject="url"),
        ToolSchema(name="websearch", required=("query",), subject="query"),
        ToolSchema(name="codesearch", required=("query",), subject="query"),
        ToolSchema(name="task", subject="agent"),
    )
}

# Tools whose subject is a shell command line
SHELL_TOOLS = frozenset({"bash"})

# Tools that modify files
EDIT_TOOLS = frozenset({"edit", "write", "patch", "multiedit"})

# Permission that governs every tool in EDIT_TOOLS
EDIT_PERMISSION = "edit"


def permission_name(tool_name: str) -> str:
    """Name rules are written against: file-modifying tools share ``edit``."""
    return EDIT_PERMISSION if tool_name in EDIT_TOOLS else tool_name

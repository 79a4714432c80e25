"""Type definitions for toolgate."""

from toolgate.types.config import PermissionSettings
from toolgate.types.hooks import Hook, HookEvent, HookResult
from toolgate.types.permissions import (
    ANY,
    ArgPattern,
    Decision,
    Layer,
    PatternKind,
    PermissionDecision,
    PermissionRequest,
    Rule,
)
from toolgate.types.tools import ToolSchema

__all__ = [
    "ANY",
    "ArgPattern",
    "Decision",
    "Hook",
    "HookEvent",
    "HookResult",
    "Layer",
    "PatternKind",
    "PermissionDecision",
    "PermissionRequest",
    "PermissionSettings",
    "Rule",
    "ToolSchema",
]

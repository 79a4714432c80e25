"""Toolgate — permission engine for coding-agent tool calls.

Usage:
    import toolgate

    registry = toolgate.build_registry()
    async with toolgate.PermissionGate(registry.open("session-1")) as gate:
        auth = await gate.authorize(
            toolgate.PermissionRequest("bash", {"command": "git status"}),
        )
        if auth.allowed:
            ...
"""

from toolgate.core.config import build_registry, build_ruleset, load_settings
from toolgate.permissions.engine import PermissionEngine
from toolgate.permissions.errors import (
    MalformedRequestError,
    PendingRequestNotFoundError,
    PermissionDeniedError,
    RuleConfigError,
    ToolgateError,
)
from toolgate.permissions.gate import Authorization, PermissionGate
from toolgate.permissions.ruleset import Ruleset
from toolgate.permissions.session import OperatorResponse, PermissionSession, SessionRegistry
from toolgate.types.config import PermissionSettings
from toolgate.types.permissions import (
    ArgPattern,
    Decision,
    Layer,
    PermissionDecision,
    PermissionRequest,
    Rule,
)

__version__ = "0.1.0"

__all__ = [
    # Core API
    "Authorization",
    "PermissionEngine",
    "PermissionGate",
    "PermissionSession",
    "Ruleset",
    "SessionRegistry",
    # Configuration
    "PermissionSettings",
    "build_registry",
    "build_ruleset",
    "load_settings",
    # Types
    "ArgPattern",
    "Decision",
    "Layer",
    "OperatorResponse",
    "PermissionDecision",
    "PermissionRequest",
    "Rule",
    # Errors
    "MalformedRequestError",
    "PendingRequestNotFoundError",
    "PermissionDeniedError",
    "RuleConfigError",
    "ToolgateError",
]

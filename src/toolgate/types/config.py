"""Configuration types for toolgate."""

from __future__ import annotations

from dataclasses import dataclass

from toolgate.types.hooks import Hook
from toolgate.types.permissions import Decision


@dataclass(frozen=True, slots=True)
class PermissionSettings:
    """Resolved settings for the permission core."""

    default: Decision = Decision.DENY  # Applied when no rule matches
    agent: str | None = None  # Built-in preset: build, plan or explore
    policy_paths: tuple[str, ...] = ()
    broaden_grants: bool = False  # "always" on a shell command covers its family
    ask_timeout: float | None = None
    audit: bool = False
    audit_dir: str | None = None
    hooks: tuple[Hook, ...] = ()

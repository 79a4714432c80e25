"""Configuration loading (TOML files, env vars) and ruleset assembly."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from toolgate.permissions.engine import PermissionEngine
from toolgate.permissions.errors import RuleConfigError
from toolgate.permissions.policy import load_policy_rules
from toolgate.permissions.ruleset import Ruleset, agent_rules, rules_from_config
from toolgate.permissions.session import SessionRegistry
from toolgate.types.config import PermissionSettings
from toolgate.types.hooks import Hook, HookEvent
from toolgate.types.permissions import Decision, Layer
from toolgate.types.tools import permission_name

logger = logging.getLogger(__name__)

# Load .env from current directory (and parents), won't override existing env vars
load_dotenv()

CONFIG_DIR = ".toolgate"
CONFIG_FILE = "config.toml"

_TRUE = {"1", "true", "yes", "on"}


def global_config_path() -> Path:
    return Path.home() / CONFIG_DIR / CONFIG_FILE


def project_config_path(cwd: str | Path | None = None) -> Path:
    return Path(cwd or Path.cwd()) / CONFIG_DIR / CONFIG_FILE


def load_toml(path: Path) -> dict[str, Any]:
    """Parse a TOML file; a missing or broken file yields ``{}``."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("Ignoring config file %s: %s", path, exc)
        return {}


def load_env_config() -> dict[str, Any]:
    """Load settings overrides from environment variables."""
    config: dict[str, Any] = {}

    if default := os.environ.get("TOOLGATE_DEFAULT_POLICY"):
        config["default"] = default
    if agent := os.environ.get("TOOLGATE_AGENT"):
        config["agent"] = agent
    if paths := os.environ.get("TOOLGATE_POLICY_PATHS"):
        config["policy_paths"] = [p for p in paths.split(os.pathsep) if p]
    if audit := os.environ.get("TOOLGATE_AUDIT"):
        config["audit"] = audit.strip().lower() in _TRUE

    return config


def _parse_hooks(raw: Any, source: Path) -> list[Hook]:
    hooks: list[Hook] = []
    for entry in raw or []:
        if not isinstance(entry, dict) or "event" not in entry or "command" not in entry:
            logger.warning("Skipping invalid hook in %s: %r", source, entry)
            continue
        try:
            event = HookEvent(entry["event"])
        except ValueError:
            logger.warning("Unknown hook event '%s' in %s", entry["event"], source)
            continue
        hooks.append(Hook(
            event=event,
            command=str(entry["command"]),
            matcher=entry.get("matcher"),
            timeout=float(entry.get("timeout", 30.0)),
        ))
    return hooks


def _path_list(value: Any, source: Path) -> list[str]:
    """``policy_paths`` as a list; a single string is one path."""
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(p, str) for p in value):
        return list(value)
    raise RuleConfigError(f"{source}: policy_paths must be a path or a list of paths")


def _relative_to(paths: list[str], root: Path) -> list[str]:
    """Resolve relative project policy paths against the project root."""
    resolved: list[str] = []
    for p in paths:
        candidate = Path(p).expanduser()
        resolved.append(str(candidate if candidate.is_absolute() else (root / candidate).resolve()))
    return resolved


def load_settings(cwd: str | Path | None = None) -> PermissionSettings:
    """Resolve settings: global file < project file < environment."""
    merged: dict[str, Any] = {}
    hooks: list[Hook] = []
    project_path = project_config_path(cwd)
    for path in (global_config_path(), project_path):
        data = load_toml(path)
        section = data.get("settings", {})
        if isinstance(section, dict):
            if "policy_paths" in section:
                section = dict(section)
                paths = _path_list(section["policy_paths"], path)
                if path == project_path:
                    paths = _relative_to(paths, path.parent.parent)
                section["policy_paths"] = paths
            merged.update(section)
        hooks.extend(_parse_hooks(data.get("hooks"), path))
    merged.update(load_env_config())

    try:
        default = Decision.parse(merged.get("default", Decision.DENY))
    except ValueError:
        raise RuleConfigError(
            f"invalid default policy {merged['default']!r} (expected allow, deny or ask)"
        ) from None

    timeout = merged.get("ask_timeout")
    return PermissionSettings(
        default=default,
        agent=merged.get("agent") or None,
        policy_paths=tuple(str(p) for p in merged.get("policy_paths", ())),
        broaden_grants=bool(merged.get("broaden_grants", False)),
        ask_timeout=float(timeout) if timeout is not None else None,
        audit=bool(merged.get("audit", False)),
        audit_dir=merged.get("audit_dir"),
        hooks=tuple(hooks),
    )


def _legacy_tools(raw: Any, source: Path) -> dict[str, str]:
    """Translate the old ``[tools]`` on/off table into permission actions.

    File-modifying tools all map to ``edit``.  Explicit ``[permission]``
    entries override these.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise RuleConfigError(f"{source}: [tools] must be a table")
    actions: dict[str, str] = {}
    for tool, enabled in raw.items():
        if not isinstance(enabled, bool):
            raise RuleConfigError(f"{source}: tools.{tool} must be true or false")
        actions[permission_name(tool)] = "allow" if enabled else "deny"
    return actions


def build_ruleset(settings: PermissionSettings, cwd: str | Path | None = None) -> Ruleset:
    """Assemble the base ruleset.

    Agent preset -> default layer, global ``[permission]`` -> global layer,
    project ``[permission]`` and policy files -> project layer.
    """
    ruleset = Ruleset()
    if settings.agent:
        ruleset.extend(agent_rules(settings.agent))

    for path, layer in ((global_config_path(), Layer.GLOBAL), (project_config_path(cwd), Layer.PROJECT)):
        data = load_toml(path)
        permission = data.get("permission", {})
        if not isinstance(permission, dict):
            raise RuleConfigError(f"{path}: [permission] must be a table")
        permission = {**_legacy_tools(data.get("tools"), path), **permission}
        ruleset.extend(rules_from_config(permission, layer, source=str(path)))

    if settings.policy_paths:
        ruleset.extend(load_policy_rules(list(settings.policy_paths), Layer.PROJECT))

    logger.debug("Loaded %r", ruleset)
    return ruleset


def build_engine(settings: PermissionSettings) -> PermissionEngine:
    return PermissionEngine(default=settings.default)


def build_registry(cwd: str | Path | None = None) -> SessionRegistry:
    """Load settings and rules for *cwd* and return a session registry."""
    settings = load_settings(cwd)
    return SessionRegistry(
        build_ruleset(settings, cwd),
        build_engine(settings),
        broaden_grants=settings.broaden_grants,
    )

"""Policy file loading (YAML/TOML) into layered rules.

Format::

    version: 1
    inherit_from: ~/.toolgate/base-policy.yml
    rules:
      - tool: bash
        args: {command: "git push*"}
        decision: ask
        description: "Confirm pushes"
      - tool: write
        when: {path_matches: "*.env"}
        decision: deny

``when`` keys of the form ``<argument>_matches`` are shorthand for ``args``.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from toolgate.permissions.errors import RuleConfigError
from toolgate.types.permissions import Decision, Layer, Rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Policy:
    """A parsed policy file."""

    path: str
    version: int = 1
    rules: tuple[Rule, ...] = ()
    inherit_from: str | None = None


class PolicyLoader:
    """Loads policy files and their inheritance chains.

    Parents load before children, so a chain yields rules root-first.
    Unreadable files and invalid rules are logged and skipped.
    """

    def __init__(self, layer: Layer = Layer.PROJECT) -> None:
        self._layer = layer
        self._policies: list[Policy] = []
        self._loaded_paths: set[str] = set()

    @property
    def policies(self) -> list[Policy]:
        return list(self._policies)

    @property
    def rules(self) -> list[Rule]:
        return [rule for policy in self._policies for rule in policy.rules]

    def load_file(self, path: str | Path) -> None:
        """Load a policy file (YAML or TOML). Resolves inheritance."""
        path = Path(path).expanduser().resolve()
        path_str = str(path)

        if path_str in self._loaded_paths:
            return  # Circular detection
        self._loaded_paths.add(path_str)

        if not path.exists():
            logger.warning("Policy file not found: %s", path)
            return

        raw = self._parse_file(path)
        if raw is None:
            return
        if not isinstance(raw, dict):
            logger.warning("Policy file %s must contain a mapping", path)
            return

        inherit_from = raw.get("inherit_from")
        if inherit_from:
            parent = Path(str(inherit_from)).expanduser()
            if not parent.is_absolute():
                parent = path.parent / parent
            self.load_file(parent)

        self._policies.append(self._build_policy(raw, path_str))

    def load_files(self, paths: list[str | Path]) -> None:
        """Load multiple policy files."""
        for p in paths:
            self.load_file(p)

    @staticmethod
    def _parse_file(path: Path) -> Any:
        """Parse a YAML or TOML file."""
        suffix = path.suffix.lower()
        try:
            text = path.read_text()
        except OSError as exc:
            logger.warning("Cannot read policy file %s: %s", path, exc)
            return None

        if suffix in (".yml", ".yaml"):
            try:
                return yaml.safe_load(text)
            except yaml.YAMLError as exc:
                logger.warning("Failed to parse YAML policy %s: %s", path, exc)
                return None
        elif suffix == ".toml":
            try:
                return tomllib.loads(text)
            except tomllib.TOMLDecodeError as exc:
                logger.warning("Failed to parse TOML policy %s: %s", path, exc)
                return None

        logger.warning("Unsupported policy file extension: %s", path)
        return None

    def _build_policy(self, raw: dict[str, Any], path: str) -> Policy:
        """Build a Policy from parsed file data."""
        rules: list[Rule] = []
        for index, rule_data in enumerate(raw.get("rules") or []):
            try:
                rules.append(self._build_rule(rule_data, path))
            except RuleConfigError as exc:
                logger.warning("Skipping rule #%d in %s: %s", index + 1, path, exc)

        return Policy(
            path=path,
            version=raw.get("version", 1),
            rules=tuple(rules),
            inherit_from=raw.get("inherit_from"),
        )

    def _build_rule(self, data: Any, path: str) -> Rule:
        if not isinstance(data, dict):
            raise RuleConfigError("rule must be a mapping")

        decision_str = data.get("decision", "ask")
        try:
            decision = Decision.parse(decision_str)
        except ValueError:
            raise RuleConfigError(f"unknown decision {decision_str!r}") from None

        arguments: dict[str, str] = {}
        args = data.get("args") or {}
        when = data.get("when") or {}
        if not isinstance(args, dict) or not isinstance(when, dict):
            raise RuleConfigError("'args' and 'when' must be mappings")
        for name, pattern in args.items():
            arguments[str(name)] = str(pattern)
        for cond, pattern in when.items():
            name = str(cond)
            if not name.endswith("_matches"):
                raise RuleConfigError(f"unsupported condition {name!r}")
            arguments[name.removesuffix("_matches")] = str(pattern)

        return Rule.create(
            str(data.get("tool", "*")),
            decision,
            layer=self._layer,
            arguments=arguments,
            source=path,
            description=str(data.get("description", "")),
            expand=True,
        )


def load_policy_rules(paths: list[str | Path], layer: Layer = Layer.PROJECT) -> list[Rule]:
    """Rules from a list of policy files, in load order."""
    loader = PolicyLoader(layer)
    loader.load_files(paths)
    return loader.rules

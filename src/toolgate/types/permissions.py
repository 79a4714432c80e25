"""Permission types: decisions, layers, rules and requests."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from types import MappingProxyType
from typing import Any

# Characters that make a pattern a wildcard pattern (fnmatch syntax)
WILDCARD_CHARS = frozenset("*?[")


class Decision(Enum):
    """Verdict for a tool call."""

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"

    @property
    def severity(self) -> int:
        """Tie-break rank: the safer outcome is higher."""
        return _SEVERITY[self]

    @classmethod
    def parse(cls, value: str | Decision) -> Decision:
        if isinstance(value, Decision):
            return value
        return cls(str(value).strip().lower())


_SEVERITY = {Decision.ALLOW: 0, Decision.ASK: 1, Decision.DENY: 2}


class Layer(IntEnum):
    """Origin tier of a rule. Higher value = higher precedence."""

    DEFAULT = 0  # Built-in agent presets
    GLOBAL = 1  # User-wide configuration
    PROJECT = 2  # Project configuration and policy files
    SESSION = 3  # Interactive grants

    @property
    def label(self) -> str:
        return self.name.lower()


class PatternKind(Enum):
    """How an argument pattern matches a value."""

    LITERAL = "literal"
    PREFIX = "prefix"
    GLOB = "glob"
    ANY = "any"


def expand_home(pattern: str) -> str:
    """Expand a leading ``~``, ``~/`` or ``$HOME/`` to the home directory."""
    if pattern == "~":
        return str(Path.home())
    if pattern.startswith("~/"):
        return f"{Path.home()}{pattern[1:]}"
    if pattern.startswith("$HOME/"):
        home = os.environ.get("HOME") or str(Path.home())
        return f"{home}{pattern[5:]}"
    return pattern


@dataclass(frozen=True, slots=True)
class ArgPattern:
    """Pattern over a single argument value.

    For ``PREFIX`` the stored text is the prefix itself (without the
    trailing ``*``); for ``GLOB`` it is the full fnmatch pattern.
    """

    kind: PatternKind
    text: str = ""

    @classmethod
    def literal(cls, text: str) -> ArgPattern:
        return cls(PatternKind.LITERAL, text)

    @classmethod
    def prefix(cls, text: str) -> ArgPattern:
        return cls(PatternKind.PREFIX, text)

    @classmethod
    def glob(cls, text: str) -> ArgPattern:
        return cls(PatternKind.GLOB, text)

    @classmethod
    def wildcard(cls) -> ArgPattern:
        return ANY

    @classmethod
    def parse(cls, text: str, *, expand: bool = False) -> ArgPattern:
        """Classify a pattern string.

        ``"*"`` is ANY, a single trailing ``*`` is PREFIX, any other
        wildcard makes a GLOB and everything else is a LITERAL.
        """
        if expand:
            text = expand_home(text)
        if text == "*":
            return ANY
        if not any(c in WILDCARD_CHARS for c in text):
            return cls(PatternKind.LITERAL, text)
        head = text[:-1]
        if text.endswith("*") and not any(c in WILDCARD_CHARS for c in head):
            return cls(PatternKind.PREFIX, head)
        return cls(PatternKind.GLOB, text)

    @property
    def literal_chars(self) -> int:
        """Number of non-wildcard characters in the pattern."""
        if self.kind is PatternKind.ANY:
            return 0
        return sum(1 for c in self.text if c not in WILDCARD_CHARS)

    def __str__(self) -> str:
        match self.kind:
            case PatternKind.ANY:
                return "*"
            case PatternKind.PREFIX:
                return f"{self.text}*"
            case _:
                return self.text


ANY = ArgPattern(PatternKind.ANY)


@dataclass(frozen=True, slots=True)
class Rule:
    """A single permission rule. Immutable once constructed."""

    tool: str  # Tool name, glob ("mcp__*") or "*" for every tool
    decision: Decision
    layer: Layer = Layer.PROJECT
    arguments: tuple[tuple[str, ArgPattern], ...] = ()
    source: str = ""
    description: str = ""

    @classmethod
    def create(
        cls,
        tool: str,
        decision: Decision | str,
        *,
        layer: Layer = Layer.PROJECT,
        arguments: Mapping[str, str | ArgPattern] | None = None,
        source: str = "",
        description: str = "",
        expand: bool = False,
    ) -> Rule:
        """Build a rule, parsing plain-string argument patterns."""
        parsed: list[tuple[str, ArgPattern]] = []
        for name, pattern in (arguments or {}).items():
            if not isinstance(pattern, ArgPattern):
                pattern = ArgPattern.parse(str(pattern), expand=expand)
            parsed.append((str(name), pattern))
        parsed.sort(key=lambda item: item[0])
        return cls(
            tool=tool,
            decision=Decision.parse(decision),
            layer=layer,
            arguments=tuple(parsed),
            source=source,
            description=description,
        )

    @property
    def argument_patterns(self) -> dict[str, ArgPattern]:
        return dict(self.arguments)

    @property
    def is_blanket(self) -> bool:
        """True when no argument constrains the rule."""
        return all(p.kind is PatternKind.ANY for _, p in self.arguments)

    @property
    def tool_is_wildcard(self) -> bool:
        return any(c in WILDCARD_CHARS for c in self.tool)

    @property
    def label(self) -> str:
        """Stable human-readable identity for audit and explanation."""
        args = " ".join(
            f"{name}={pattern}" for name, pattern in self.arguments
            if pattern.kind is not PatternKind.ANY
        )
        target = f"{self.tool}({args})" if args else self.tool
        return f"{self.layer.label}:{target} -> {self.decision.value}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "tool": self.tool,
            "decision": self.decision.value,
            "layer": self.layer.label,
        }
        if self.arguments:
            data["args"] = {name: str(p) for name, p in self.arguments}
        if self.source:
            data["source"] = self.source
        if self.description:
            data["description"] = self.description
        return data


@dataclass(frozen=True, slots=True)
class PermissionRequest:
    """A tool call attempt, described for authorization."""

    tool_name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)
    call_id: str | None = None
    session_id: str | None = None

    def __post_init__(self) -> None:
        # Snapshot the caller's dict so later mutation cannot change the request
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))

    def get(self, name: str) -> Any:
        return self.arguments.get(name)

    def __hash__(self) -> int:
        return hash((self.tool_name, tuple(sorted(self.arguments.items(), key=str))))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PermissionRequest):
            return NotImplemented
        return (
            self.tool_name == other.tool_name
            and dict(self.arguments) == dict(other.arguments)
            and self.call_id == other.call_id
            and self.session_id == other.session_id
        )


DEFAULT_REASON = "no matching rule, default policy"


@dataclass(frozen=True, slots=True)
class PermissionDecision:
    """Result of evaluating a request: verdict plus the rule that produced it."""

    decision: Decision
    rule: Rule | None = None
    arity: float | None = None
    reason: str = DEFAULT_REASON

    @property
    def is_default(self) -> bool:
        return self.rule is None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW

    @property
    def denied(self) -> bool:
        return self.decision is Decision.DENY

    @property
    def needs_approval(self) -> bool:
        return self.decision is Decision.ASK

    @property
    def rule_label(self) -> str:
        return self.rule.label if self.rule is not None else "default"

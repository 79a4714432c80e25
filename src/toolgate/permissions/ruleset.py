"""Layered rule container, config parsing and built-in presets."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from toolgate.permissions.errors import RuleConfigError
from toolgate.types.permissions import ArgPattern, Decision, Layer, Rule
from toolgate.types.tools import DEFAULT_SCHEMAS, EDIT_TOOLS, ToolSchema, permission_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Snapshot:
    """Immutable view of one layer: rules in insertion order plus an index."""

    rules: tuple[Rule, ...] = ()
    by_tool: dict[str, tuple[Rule, ...]] = field(default_factory=dict)
    wildcard: tuple[Rule, ...] = ()

    @classmethod
    def build(cls, rules: Iterable[Rule]) -> _Snapshot:
        ordered = tuple(rules)
        by_tool: dict[str, list[Rule]] = {}
        wildcard: list[Rule] = []
        for rule in ordered:
            if rule.tool_is_wildcard:
                wildcard.append(rule)
            else:
                by_tool.setdefault(rule.tool, []).append(rule)
        return cls(
            rules=ordered,
            by_tool={k: tuple(v) for k, v in by_tool.items()},
            wildcard=tuple(wildcard),
        )

    def candidates(self, tool_name: str) -> list[Rule]:
        exact = self.by_tool.get(tool_name, ())
        shared = permission_name(tool_name)
        if shared != tool_name:
            exact = (*exact, *self.by_tool.get(shared, ()))
        elif not self.wildcard:
            return list(exact)
        # Restore insertion order across both indexes
        picked = set(map(id, exact)) | set(map(id, self.wildcard))
        return [r for r in self.rules if id(r) in picked]


class Ruleset:
    """Ordered rules partitioned by layer.

    Within a layer rules keep insertion order; precedence is decided by the
    engine, not here.  Writers swap in a fresh immutable snapshot under a
    lock, so readers never observe a partially inserted rule.

    Usage::

        base = Ruleset(rules_from_config({"bash": "ask"}, Layer.GLOBAL))
        session_rules = base.fork()
        session_rules.insert(Rule.create("bash", "allow", layer=Layer.SESSION))
    """

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._lock = threading.Lock()
        grouped: dict[Layer, list[Rule]] = {layer: [] for layer in Layer}
        for rule in rules:
            grouped[rule.layer].append(rule)
        self._layers: dict[Layer, _Snapshot] = {
            layer: _Snapshot.build(grouped[layer]) for layer in Layer
        }

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @staticmethod
    def precedence(layer: Layer) -> int:
        """Ordinal of a layer; higher wins."""
        return int(layer)

    def rules_for(self, tool_name: str) -> list[Rule]:
        """Every rule whose tool pattern could apply, highest layer first."""
        layers = self._layers  # single read: a consistent view
        result: list[Rule] = []
        for layer in sorted(layers, reverse=True):
            result.extend(layers[layer].candidates(tool_name))
        return result

    def rules(self, layer: Layer | None = None) -> list[Rule]:
        """All rules (or those of one layer), lowest layer first."""
        layers = self._layers
        if layer is not None:
            return list(layers[layer].rules)
        return [rule for key in sorted(layers) for rule in layers[key].rules]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def insert(self, rule: Rule) -> None:
        """Append a rule to its layer."""
        with self._lock:
            current = self._layers[rule.layer]
            self._replace(rule.layer, (*current.rules, rule))

    def extend(self, rules: Iterable[Rule]) -> None:
        for rule in rules:
            self.insert(rule)

    def remove(self, rule: Rule) -> bool:
        """Remove the first rule equal to *rule*. Returns False if absent."""
        with self._lock:
            current = self._layers[rule.layer].rules
            for i, existing in enumerate(current):
                if existing == rule:
                    self._replace(rule.layer, current[:i] + current[i + 1:])
                    return True
        return False

    def remove_session_rules(self) -> int:
        """Drop every session grant. Returns the number removed."""
        with self._lock:
            removed = len(self._layers[Layer.SESSION].rules)
            self._replace(Layer.SESSION, ())
        if removed:
            logger.debug("Removed %d session rule(s)", removed)
        return removed

    def _replace(self, layer: Layer, rules: tuple[Rule, ...]) -> None:
        layers = dict(self._layers)
        layers[layer] = _Snapshot.build(rules)
        self._layers = layers

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def fork(self) -> Ruleset:
        """New ruleset sharing the lower layers, with an empty session layer."""
        forked = Ruleset()
        with self._lock:
            layers = dict(self._layers)
        layers[Layer.SESSION] = _Snapshot()
        forked._layers = layers
        return forked

    # ------------------------------------------------------------------
    # Dunder helpers
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return sum(len(s.rules) for s in self._layers.values())

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules())

    def __repr__(self) -> str:
        counts = ", ".join(
            f"{layer.label}={len(snap.rules)}" for layer, snap in sorted(self._layers.items())
        )
        return f"Ruleset({counts})"


# ---------------------------------------------------------------------------
# Config parsing
# ---------------------------------------------------------------------------


def _parse_decision(value: Any, where: str) -> Decision:
    try:
        return Decision.parse(value)
    except ValueError:
        raise RuleConfigError(
            f"{where}: invalid action {value!r} (expected allow, deny or ask)"
        ) from None


def rules_from_config(
    permission: Mapping[str, Any],
    layer: Layer,
    schemas: Mapping[str, ToolSchema] | None = None,
    *,
    source: str = "",
) -> list[Rule]:
    """Convert a ``[permission]`` table to rules.

    Each key is a tool pattern; the value is either an action
    (``bash = "ask"``) or a table of patterns to actions
    (``bash = {"git *" = "allow"}``).  Patterns apply to the tool's subject
    argument (``command`` for bash, ``path`` for file tools, ...).
    """
    schemas = DEFAULT_SCHEMAS if schemas is None else schemas
    rules: list[Rule] = []
    for tool, value in permission.items():
        where = f"{source or 'permission'}.{tool}"
        if isinstance(value, Mapping):
            subject = schemas[tool].subject if tool in schemas else None
            for pattern, action in value.items():
                decision = _parse_decision(action, where)
                arguments: dict[str, str] = {}
                if str(pattern) != "*":
                    if subject is None:
                        raise RuleConfigError(
                            f"{where}: tool has no subject argument for pattern {pattern!r}"
                        )
                    arguments[subject] = str(pattern)
                rules.append(Rule.create(
                    tool, decision, layer=layer, arguments=arguments,
                    source=source, expand=True,
                ))
        else:
            rules.append(Rule.create(
                tool, _parse_decision(value, where), layer=layer, source=source,
            ))
    return rules


# ---------------------------------------------------------------------------
# Built-in presets
# ---------------------------------------------------------------------------


def _preset(
    tool: str, decision: Decision, **arguments: str,
) -> Rule:
    return Rule.create(
        tool, decision, layer=Layer.DEFAULT,
        arguments={k: ArgPattern.parse(v) for k, v in arguments.items()},
        source="builtin",
    )


def default_rules() -> list[Rule]:
    """Shipped defaults shared by the build and plan agents."""
    return [
        _preset("*", Decision.ALLOW),
        _preset("doom_loop", Decision.ASK),
        _preset("external_directory", Decision.ASK),
        _preset("question", Decision.DENY),
        _preset("plan_enter", Decision.DENY),
        _preset("plan_exit", Decision.DENY),
        _preset("read", Decision.ASK, path="*.env"),
        _preset("read", Decision.ASK, path="*.env.*"),
        _preset("read", Decision.ALLOW, path="*.env.example"),
    ]


AGENTS = ("build", "plan", "explore")


def agent_rules(agent: str) -> list[Rule]:
    """Preset rules for a built-in agent.

    Unknown agents get the shared defaults.  Raises ``RuleConfigError``
    only for an empty name.
    """
    if not agent:
        raise RuleConfigError("agent name must not be empty")

    match agent:
        case "build":
            # Equal-rank ties resolve to deny, so replace the defaults outright
            rules = [r for r in default_rules() if r.tool not in ("question", "plan_enter")]
            rules += [
                _preset("question", Decision.ALLOW),
                _preset("plan_enter", Decision.ALLOW),
            ]
        case "plan":
            rules = [r for r in default_rules() if r.tool not in ("question", "plan_exit")]
            rules += [
                _preset("question", Decision.ALLOW),
                _preset("plan_exit", Decision.ALLOW),
            ]
            rules += [_preset(tool, Decision.DENY) for tool in sorted(EDIT_TOOLS)]
        case "explore":
            rules = [_preset("*", Decision.DENY)]
            rules += [
                _preset(tool, Decision.ALLOW)
                for tool in (
                    "grep", "glob", "list", "bash", "webfetch",
                    "websearch", "codesearch", "read",
                )
            ]
        case _:
            logger.info("No preset for agent '%s'; using defaults", agent)
            rules = default_rules()
    return rules

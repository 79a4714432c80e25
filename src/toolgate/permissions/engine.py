"""Permission evaluation engine.

Resolution order among matching rules:

1. Highest layer (session > project > global > default)
2. Highest arity within the layer (most specific pattern)
3. Safest decision on a remaining tie (deny > ask > allow)

No matching rule falls back to the configured default policy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from fractions import Fraction

from toolgate.permissions import arity
from toolgate.permissions.errors import MalformedRequestError
from toolgate.permissions.ruleset import Ruleset
from toolgate.types.permissions import (
    DEFAULT_REASON,
    Decision,
    PermissionDecision,
    PermissionRequest,
    Rule,
)
from toolgate.types.tools import DEFAULT_SCHEMAS, ToolSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RuleMatch:
    """A rule that matched a request, with its score."""

    rule: Rule
    arity: Fraction

    @property
    def rank(self) -> tuple[int, Fraction, int]:
        return (Ruleset.precedence(self.rule.layer), self.arity, self.rule.decision.severity)


class PermissionEngine:
    """Resolves permission requests against a ruleset.

    The engine keeps only its configuration; the ruleset is passed to each
    call and never stored.

    Usage::

        engine = PermissionEngine(default=Decision.DENY)
        result = engine.evaluate(PermissionRequest("bash", {"command": "ls"}), ruleset)
        if result.allowed:
            ...
    """

    def __init__(
        self,
        default: Decision = Decision.DENY,
        schemas: Mapping[str, ToolSchema] | None = None,
    ) -> None:
        self._default = default
        self._schemas = dict(DEFAULT_SCHEMAS if schemas is None else schemas)
        if default is Decision.ALLOW:
            logger.warning(
                "Default permission policy is ALLOW: tool calls with no matching rule will run"
            )

    @property
    def default(self) -> Decision:
        return self._default

    @property
    def schemas(self) -> dict[str, ToolSchema]:
        return dict(self._schemas)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, request: PermissionRequest) -> None:
        """Raise MalformedRequestError if the request cannot be evaluated."""
        for name, value in request.arguments.items():
            if value is not None and not isinstance(value, arity.SCALAR_TYPES):
                raise MalformedRequestError(
                    request.tool_name, name,
                    f"must be a scalar, got {type(value).__name__}",
                )
        schema = self._schemas.get(request.tool_name)
        if schema is None:
            return
        for name in schema.required:
            value = request.arguments.get(name)
            if value is None or value == "":
                raise MalformedRequestError(request.tool_name, name, "is required")

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def collect(self, request: PermissionRequest, ruleset: Ruleset) -> list[RuleMatch]:
        """Every matching rule, in ruleset order. Faulty rules are skipped."""
        found: list[RuleMatch] = []
        for rule in ruleset.rules_for(request.tool_name):
            try:
                score = arity.match(rule, request)
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping rule %s: %s", rule.label, exc)
                continue
            if score is not None:
                found.append(RuleMatch(rule=rule, arity=score))
        return found

    def evaluate(self, request: PermissionRequest, ruleset: Ruleset) -> PermissionDecision:
        """Resolve *request* to a decision.

        Raises MalformedRequestError for requests that fail validation;
        never raises for a well-formed request.
        """
        self.validate(request)
        found = self.collect(request, ruleset)

        if not found:
            if not ruleset.rules_for(request.tool_name):
                logger.info("No rules for tool '%s'; applying default policy", request.tool_name)
            result = PermissionDecision(decision=self._default, reason=DEFAULT_REASON)
        else:
            # max() keeps the first of equal ranks, i.e. ruleset order
            winner = max(found, key=lambda m: m.rank)
            result = PermissionDecision(
                decision=winner.rule.decision,
                rule=winner.rule,
                arity=float(winner.arity),
                reason=f"matched {winner.rule.label}",
            )

        logger.debug(
            "%s %s -> %s (%s)",
            request.tool_name, dict(request.arguments), result.decision.value, result.rule_label,
        )
        return result

    def explain(self, request: PermissionRequest, ruleset: Ruleset) -> list[RuleMatch]:
        """Matching rules in resolution order, winner first."""
        self.validate(request)
        found = self.collect(request, ruleset)
        # Stable sort keeps ruleset order among equal ranks
        return sorted(found, key=lambda m: m.rank, reverse=True)

    # ------------------------------------------------------------------
    # Tool filtering
    # ------------------------------------------------------------------

    def disabled_tools(self, tool_names: Iterable[str], ruleset: Ruleset) -> set[str]:
        """Tools for which every possible request is denied."""
        return {name for name in tool_names if self._always_denied(name, ruleset)}

    def _always_denied(self, tool_name: str, ruleset: Ruleset) -> bool:
        candidates = [
            RuleMatch(rule=rule, arity=arity.arity_of(rule))
            for rule in ruleset.rules_for(tool_name)
            if arity.tool_matches(rule.tool, tool_name)
        ]
        blankets = [m for m in candidates if m.rule.is_blanket]
        floor = max(blankets, key=lambda m: m.rank) if blankets else None
        fallback = floor.rule.decision if floor is not None else self._default
        if fallback is not Decision.DENY:
            return False
        # A narrower non-deny rule that outranks the floor can still let a call through
        for m in candidates:
            if m.rule.decision is Decision.DENY:
                continue
            if floor is None or m.rank[:2] > floor.rank[:2]:
                return False
        return True

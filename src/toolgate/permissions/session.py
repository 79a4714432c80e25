"""Session-scoped grants and pending operator questions."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from toolgate.permissions.arity import SCALAR_TYPES, command_prefix, split_commands
from toolgate.permissions.engine import PermissionEngine
from toolgate.permissions.errors import PendingRequestNotFoundError
from toolgate.permissions.ruleset import Ruleset
from toolgate.types.permissions import (
    ArgPattern,
    Decision,
    Layer,
    PermissionDecision,
    PermissionRequest,
    Rule,
)
from toolgate.types.tools import DEFAULT_SCHEMAS, SHELL_TOOLS, ToolSchema

logger = logging.getLogger(__name__)


class OperatorResponse(Enum):
    """An operator's answer to an ASK."""

    ALLOW_ONCE = "allow_once"
    ALLOW_ALWAYS = "allow_always"
    DENY_ONCE = "deny_once"
    DENY_ALWAYS = "deny_always"

    @property
    def decision(self) -> Decision:
        if self in (OperatorResponse.ALLOW_ONCE, OperatorResponse.ALLOW_ALWAYS):
            return Decision.ALLOW
        return Decision.DENY

    @property
    def persistent(self) -> bool:
        return self in (OperatorResponse.ALLOW_ALWAYS, OperatorResponse.DENY_ALWAYS)

    @classmethod
    def parse(cls, answer: str) -> OperatorResponse:
        """Parse a typed answer. Anything unrecognised denies once."""
        text = answer.strip().lower()
        try:
            return cls(text)
        except ValueError:
            return _SHORT_ANSWERS.get(text, cls.DENY_ONCE)


_SHORT_ANSWERS = {
    "y": OperatorResponse.ALLOW_ONCE,
    "yes": OperatorResponse.ALLOW_ONCE,
    "once": OperatorResponse.ALLOW_ONCE,
    "a": OperatorResponse.ALLOW_ALWAYS,
    "always": OperatorResponse.ALLOW_ALWAYS,
    "n": OperatorResponse.DENY_ONCE,
    "no": OperatorResponse.DENY_ONCE,
    "reject": OperatorResponse.DENY_ONCE,
    "d": OperatorResponse.DENY_ALWAYS,
    "never": OperatorResponse.DENY_ALWAYS,
}


def _shell_family(command: str) -> ArgPattern | None:
    """Prefix pattern for a single simple command, e.g. ``git push *``."""
    commands = split_commands(command)
    if len(commands) != 1 or commands[0][0] == "cd":
        return None
    tokens = commands[0]
    prefix = " ".join(command_prefix(tokens))
    if len(tokens) > len(prefix.split()) and command.startswith(prefix + " "):
        return ArgPattern.prefix(prefix + " ")
    return None


def grant_rule(
    request: PermissionRequest,
    response: OperatorResponse,
    schemas: Mapping[str, ToolSchema] | None = None,
    *,
    broaden: bool = False,
) -> Rule | None:
    """Materialize an "always" answer as a session rule.

    The rule pins the exact tool and a literal of the request's subject
    argument (every scalar argument when the tool has no known subject).
    With *broaden*, a simple shell command widens to its command family.
    Returns None for "once" answers.
    """
    if not response.persistent:
        return None

    schemas = DEFAULT_SCHEMAS if schemas is None else schemas
    schema = schemas.get(request.tool_name)
    subject = schema.subject if schema is not None else None

    arguments: dict[str, ArgPattern] = {}
    if subject is not None and request.get(subject) is not None:
        value = str(request.get(subject))
        pattern = ArgPattern.literal(value)
        if broaden and request.tool_name in SHELL_TOOLS:
            pattern = _shell_family(value) or pattern
        arguments[subject] = pattern
    else:
        for name, value in request.arguments.items():
            if value is not None and isinstance(value, SCALAR_TYPES):
                arguments[name] = ArgPattern.literal(str(value))

    return Rule.create(
        request.tool_name,
        response.decision,
        layer=Layer.SESSION,
        arguments=arguments,
        source=f"session:{request.session_id}" if request.session_id else "session",
        description=f"operator answered {response.value}",
    )


def new_request_id() -> str:
    return f"per_{uuid.uuid4().hex[:12]}"


@dataclass(slots=True)
class PendingPermission:
    """A question waiting for the operator."""

    id: str
    session_id: str
    request: PermissionRequest
    decision: PermissionDecision
    suggestions: tuple[str, ...] = ()
    created: float = field(default_factory=time.time)
    future: asyncio.Future[OperatorResponse | None] | None = field(default=None, repr=False)


class PermissionSession:
    """Permission state of one agent session.

    Owns a forked ruleset (its session layer holds the grants), the pending
    operator questions and the lock that serializes ask resolution.
    """

    def __init__(
        self,
        session_id: str,
        base: Ruleset,
        engine: PermissionEngine,
        *,
        broaden_grants: bool = False,
    ) -> None:
        self.session_id = session_id
        self._ruleset = base.fork()
        self._engine = engine
        self._broaden = broaden_grants
        self._lock = asyncio.Lock()
        self._pending: dict[str, PendingPermission] = {}
        self._closed = False

    @property
    def ruleset(self) -> Ruleset:
        return self._ruleset

    @property
    def engine(self) -> PermissionEngine:
        return self._engine

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def closed(self) -> bool:
        return self._closed

    def evaluate(self, request: PermissionRequest) -> PermissionDecision:
        return self._engine.evaluate(request, self._ruleset)

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def grant(self, rule: Rule) -> None:
        """Insert a session-layer rule."""
        if rule.layer is not Layer.SESSION:
            raise ValueError(f"session grants must use the session layer, got {rule.layer.label}")
        self._ruleset.insert(rule)
        logger.info("Session %s: granted %s", self.session_id, rule.label)

    def preview(self, request: PermissionRequest, response: OperatorResponse) -> Rule | None:
        """The rule an answer would insert, without inserting it."""
        return grant_rule(request, response, self._engine.schemas, broaden=self._broaden)

    def record(self, request: PermissionRequest, response: OperatorResponse) -> Rule | None:
        """Persist an operator answer if it is an "always" answer."""
        rule = self.preview(request, response)
        if rule is None or self._closed:
            return None
        self.grant(rule)
        return rule

    def grants(self) -> list[Rule]:
        return self._ruleset.rules(Layer.SESSION)

    # ------------------------------------------------------------------
    # Pending questions
    # ------------------------------------------------------------------

    def ask(
        self,
        request: PermissionRequest,
        decision: PermissionDecision,
        suggestions: tuple[str, ...] = (),
    ) -> PendingPermission:
        """Register a question; its future resolves on respond() or close()."""
        loop = asyncio.get_running_loop()
        pending = PendingPermission(
            id=new_request_id(),
            session_id=self.session_id,
            request=request,
            decision=decision,
            suggestions=suggestions,
            future=loop.create_future(),
        )
        self._pending[pending.id] = pending
        return pending

    def pending(self) -> list[PendingPermission]:
        return sorted(self._pending.values(), key=lambda p: (p.created, p.id))

    def respond(self, request_id: str, response: OperatorResponse) -> None:
        """Answer a pending question."""
        pending = self._pending.pop(request_id, None)
        if pending is None:
            raise PendingRequestNotFoundError(self.session_id, request_id)
        if pending.future is not None and not pending.future.done():
            pending.future.set_result(response)

    def discard(self, request_id: str) -> None:
        """Drop a question without inserting any rule."""
        pending = self._pending.pop(request_id, None)
        if pending is not None and pending.future is not None and not pending.future.done():
            pending.future.set_result(None)

    def close(self) -> None:
        """End the session: drop grants and resolve pending questions as cancelled."""
        if self._closed:
            return
        for request_id in list(self._pending):
            self.discard(request_id)
        removed = self._ruleset.remove_session_rules()
        self._closed = True
        logger.debug("Session %s closed (%d grant(s) dropped)", self.session_id, removed)

    def __repr__(self) -> str:
        return (
            f"PermissionSession(id={self.session_id!r}, grants={len(self.grants())}, "
            f"pending={len(self._pending)})"
        )


class SessionRegistry:
    """Open permission sessions sharing one base ruleset and engine."""

    def __init__(
        self,
        base: Ruleset,
        engine: PermissionEngine | None = None,
        *,
        broaden_grants: bool = False,
    ) -> None:
        self._base = base
        self._engine = engine or PermissionEngine()
        self._broaden = broaden_grants
        self._sessions: dict[str, PermissionSession] = {}

    @property
    def base(self) -> Ruleset:
        return self._base

    @property
    def engine(self) -> PermissionEngine:
        return self._engine

    def open(self, session_id: str) -> PermissionSession:
        """Return the session, creating it with an empty session layer."""
        session = self._sessions.get(session_id)
        if session is None or session.closed:
            session = PermissionSession(
                session_id, self._base, self._engine, broaden_grants=self._broaden,
            )
            self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> PermissionSession | None:
        session = self._sessions.get(session_id)
        if session is None or session.closed:
            return None
        return session

    def close(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.close(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

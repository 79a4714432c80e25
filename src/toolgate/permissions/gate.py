"""PermissionGate — the check an executor runs before every tool call.

The engine is synchronous; the gate is the only place that suspends.  On
ASK it consults ``permission_ask`` hooks, then the operator, and records
"always" answers as session grants.  Asks are serialized per session, and
anything that ends a wait early (timeout, session close, missing prompt)
denies the call without inserting a rule.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass

from toolgate.audit.logger import AuditLogger
from toolgate.hooks.events import build_hook_context
from toolgate.hooks.manager import HookManager, permission_status
from toolgate.permissions.approval import ApprovalCallback, describe_request
from toolgate.permissions.errors import PendingRequestNotFoundError, PermissionDeniedError
from toolgate.permissions.session import OperatorResponse, PendingPermission, PermissionSession
from toolgate.types.hooks import HookEvent
from toolgate.types.permissions import Decision, PermissionDecision, PermissionRequest, Rule

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Authorization:
    """Final outcome for one tool call."""

    request: PermissionRequest
    decision: Decision  # ALLOW or DENY
    source: PermissionDecision | None
    response: OperatorResponse | None = None
    reason: str = ""
    grant: Rule | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


class PermissionGate:
    """Authorizes tool calls for one session.

    Usage::

        async with PermissionGate(registry.open(sid), approval_callback=cb) as gate:
            auth = await gate.authorize(PermissionRequest("bash", {"command": "ls"}))
            if auth.allowed:
                ...
    """

    def __init__(
        self,
        session: PermissionSession,
        *,
        approval_callback: ApprovalCallback | None = None,
        hooks: HookManager | None = None,
        audit: AuditLogger | None = None,
        ask_timeout: float | None = None,
        wait_for_response: bool = False,
        cwd: str = "",
    ) -> None:
        self._session = session
        self._callback = approval_callback
        self._hooks = hooks
        self._audit = audit
        self._ask_timeout = ask_timeout
        # Wait for session.respond() from elsewhere (e.g. a UI) when no callback is set
        self._wait_for_response = wait_for_response
        self._cwd = cwd

    @property
    def session(self) -> PermissionSession:
        return self._session

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Fire session_start hooks and open the audit trail."""
        if self._audit is not None:
            self._audit.log_session_start(
                default_policy=self._session.engine.default.value,
                rule_count=len(self._session.ruleset),
            )
        await self._fire(HookEvent.SESSION_START)

    async def stop(self) -> None:
        """Close the session (dropping its grants) and fire session_end hooks."""
        grants = len(self._session.grants())
        self._session.close()
        if self._audit is not None:
            self._audit.log_session_end(grants=grants)
        await self._fire(HookEvent.SESSION_END)

    async def __aenter__(self) -> PermissionGate:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.stop()

    async def _fire(self, event: HookEvent) -> None:
        if self._hooks is None:
            return
        ctx = build_hook_context(event, session_id=self._session.session_id, cwd=self._cwd)
        for result in await self._hooks.fire(ctx):
            if not result.success:
                logger.warning("%s hook failed: %s", event.value, result.error)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def authorize(self, request: PermissionRequest) -> Authorization:
        """Decide whether *request* may run, asking the operator if needed.

        Raises MalformedRequestError for requests the engine cannot
        evaluate; the caller must not run the tool in that case.
        """
        if request.session_id is None:
            request = dataclasses.replace(request, session_id=self._session.session_id)

        if self._session.closed:
            return Authorization(request, Decision.DENY, None, reason="session closed")

        result = self._session.evaluate(request)
        if not result.needs_approval:
            self._log_decision(request, result)
            return Authorization(request, result.decision, result, reason=result.reason)

        async with self._session.lock:
            # An earlier ask may have granted this while we waited
            result = self._session.evaluate(request)
            self._log_decision(request, result)
            if not result.needs_approval:
                return Authorization(request, result.decision, result, reason=result.reason)
            return await self._resolve_ask(request, result)

    async def require(self, request: PermissionRequest) -> Authorization:
        """Like :meth:`authorize` but raise PermissionDeniedError unless allowed."""
        auth = await self.authorize(request)
        if not auth.allowed:
            raise PermissionDeniedError(auth)
        return auth

    def _log_decision(self, request: PermissionRequest, result: PermissionDecision) -> None:
        """Audit the evaluation that settles a call."""
        if self._audit is not None:
            self._audit.log_permission_decision(request, result)

    async def _resolve_ask(
        self, request: PermissionRequest, result: PermissionDecision,
    ) -> Authorization:
        preview = self._session.preview(request, OperatorResponse.ALLOW_ALWAYS)
        suggestions = tuple(str(p) for _, p in preview.arguments) if preview else ()
        pending = self._session.ask(request, result, suggestions)
        try:
            hook_decision = await self._ask_hooks(request, pending)
            if hook_decision is not None and hook_decision is not Decision.ASK:
                if self._audit is not None:
                    self._audit.log_operator_response(
                        request, hook_decision.value, source="hook",
                    )
                return Authorization(
                    request, hook_decision, result,
                    reason=f"permission hook answered {hook_decision.value}",
                )
            response, reason = await self._wait(pending)
        finally:
            self._session.discard(pending.id)

        if response is None:
            logger.info("Denied %s: %s", request.tool_name, reason)
            return Authorization(request, Decision.DENY, result, reason=reason)

        if self._audit is not None:
            self._audit.log_operator_response(request, response.value)
        rule = self._session.record(request, response)
        if rule is not None and self._audit is not None:
            self._audit.log_permission_grant(rule)
        return Authorization(
            request, response.decision, result,
            response=response,
            reason=f"operator answered {response.value}",
            grant=rule,
        )

    async def _ask_hooks(
        self, request: PermissionRequest, pending: PendingPermission,
    ) -> Decision | None:
        if self._hooks is None:
            return None
        ctx = build_hook_context(
            HookEvent.PERMISSION_ASK,
            request=request,
            permission_id=pending.id,
            rule=pending.decision.rule_label,
            session_id=self._session.session_id,
            cwd=self._cwd,
        )
        return permission_status(await self._hooks.fire(ctx))

    async def _wait(self, pending: PendingPermission) -> tuple[OperatorResponse | None, str]:
        """Wait for an answer. Returns (None, reason) when the wait ends without one."""
        if self._callback is None and not self._wait_for_response:
            return None, "approval required but no operator is available"

        assert pending.future is not None
        prompt_task: asyncio.Task[None] | None = None
        if self._callback is not None:
            prompt_task = asyncio.create_task(self._prompt(pending))
        try:
            if self._ask_timeout is not None:
                response = await asyncio.wait_for(pending.future, self._ask_timeout)
            else:
                response = await pending.future
        except TimeoutError:
            return None, f"no answer within {self._ask_timeout}s"
        finally:
            if prompt_task is not None and not prompt_task.done():
                prompt_task.cancel()
                await asyncio.wait({prompt_task})

        if response is None:
            return None, "cancelled"
        return response, ""

    async def _prompt(self, pending: PendingPermission) -> None:
        assert self._callback is not None
        try:
            response = await self._callback.request_permission(
                pending.request, describe_request(pending.request), pending.suggestions,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning("Approval prompt failed, denying: %s", exc)
            response = OperatorResponse.DENY_ONCE
        try:
            self._session.respond(pending.id, response)
        except PendingRequestNotFoundError:
            logger.debug("Question %s was already resolved", pending.id)

"""Errors raised by the permission core."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from toolgate.permissions.gate import Authorization


class ToolgateError(Exception):
    """Base class for all toolgate errors."""


class MalformedRequestError(ToolgateError, ValueError):
    """A request is missing a required argument or carries a non-scalar value.

    This is a programming or configuration error in the caller, never a
    security decision: the tool call must be treated as not authorized.
    """

    def __init__(self, tool_name: str, argument: str, problem: str) -> None:
        super().__init__(f"Malformed request for tool '{tool_name}': argument '{argument}' {problem}")
        self.tool_name = tool_name
        self.argument = argument
        self.problem = problem


class RuleConfigError(ToolgateError, ValueError):
    """Rule or configuration data could not be turned into rules."""


class PendingRequestNotFoundError(ToolgateError, KeyError):
    """An operator answered a question that is not pending."""

    def __init__(self, session_id: str, request_id: str) -> None:
        super().__init__(f"Permission request not found: {session_id}/{request_id}")
        self.session_id = session_id
        self.request_id = request_id

    def __str__(self) -> str:
        return str(self.args[0])


class PermissionDeniedError(ToolgateError):
    """A tool call was not authorized."""

    def __init__(self, authorization: Authorization) -> None:
        request = authorization.request
        super().__init__(f"Permission denied for '{request.tool_name}': {authorization.reason}")
        self.authorization = authorization

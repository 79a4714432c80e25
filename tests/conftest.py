"""Shared fixtures: isolated config locations and a scripted operator."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

import pytest

from toolgate.permissions.engine import PermissionEngine
from toolgate.permissions.ruleset import Ruleset
from toolgate.permissions.session import OperatorResponse
from toolgate.types.permissions import PermissionRequest


class ScriptedApproval:
    """An approval callback that replays scripted answers.

    Usage:
        approval = ScriptedApproval([OperatorResponse.ALLOW_ALWAYS])
        gate = PermissionGate(session, approval_callback=approval)
    """

    def __init__(
        self,
        responses: Sequence[OperatorResponse] = (),
        *,
        delay: float = 0.0,
        block: bool = False,
    ) -> None:
        self._responses = list(responses)
        self._delay = delay
        self._block = block
        self.calls: list[tuple[PermissionRequest, str, tuple[str, ...]]] = []
        self.cancelled = 0

    async def request_permission(
        self,
        request: PermissionRequest,
        description: str,
        suggestions: Sequence[str] = (),
    ) -> OperatorResponse:
        self.calls.append((request, description, tuple(suggestions)))
        if self._block:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._responses:
            return self._responses.pop(0)
        return OperatorResponse.DENY_ONCE


class FailingApproval:
    """An approval callback whose prompt raises."""

    async def request_permission(self, request, description, suggestions=()):
        raise RuntimeError("terminal went away")


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at a temp dir and clear toolgate environment variables."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for var in ("TOOLGATE_DEFAULT_POLICY", "TOOLGATE_AGENT", "TOOLGATE_POLICY_PATHS", "TOOLGATE_AUDIT"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An empty project directory with a .toolgate folder."""
    root = tmp_path / "project"
    (root / ".toolgate").mkdir(parents=True)
    return root


@pytest.fixture
def engine() -> PermissionEngine:
    return PermissionEngine()


@pytest.fixture
def ruleset() -> Ruleset:
    return Ruleset()


@pytest.fixture
def scripted_approval():
    """Factory for ScriptedApproval callbacks."""
    return ScriptedApproval


@pytest.fixture
def failing_approval() -> FailingApproval:
    return FailingApproval()

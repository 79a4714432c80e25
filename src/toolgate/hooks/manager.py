"""Runs hook commands and interprets their output."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shlex
from collections.abc import Iterable
from typing import Any

from toolgate.hooks.events import HookContext
from toolgate.types.hooks import Hook, HookEvent, HookResult
from toolgate.types.permissions import Decision

logger = logging.getLogger(__name__)


def expand_command(command: str, ctx: HookContext) -> str:
    """Substitute ``{name}`` variables, shell-quoted. Empty values become ``''``."""
    for name, value in ctx.variables().items():
        command = command.replace(f"{{{name}}}", shlex.quote(value))
    return command


def _parse_output(output: str) -> dict[str, Any]:
    if not output.startswith("{"):
        return {}
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        logger.debug("Hook output is not valid JSON: %s", output[:200])
        return {}
    return data if isinstance(data, dict) else {}


class HookManager:
    """Registered hooks, run sequentially in registration order.

    A failing hook never raises: its result carries ``success=False`` and
    the error text.
    """

    def __init__(self, hooks: Iterable[Hook] = ()) -> None:
        self._hooks: list[Hook] = list(hooks)

    def register(self, hook: Hook) -> None:
        self._hooks.append(hook)

    def hooks_for(self, event: HookEvent, tool_name: str | None = None) -> list[Hook]:
        return [hook for hook in self._hooks if hook.applies_to(event, tool_name)]

    def __len__(self) -> int:
        return len(self._hooks)

    async def fire(self, ctx: HookContext) -> list[HookResult]:
        """Run every hook bound to the context's event and tool."""
        return [await self._run(hook, ctx) for hook in self.hooks_for(ctx.event, ctx.tool_name)]

    async def _run(self, hook: Hook, ctx: HookContext) -> HookResult:
        command = expand_command(hook.command, ctx)
        stdin = json.dumps(ctx.payload(), default=str).encode()
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=ctx.cwd or None,
                env={**os.environ, **ctx.environment()},
            )
        except OSError as exc:
            return HookResult(success=False, error=f"Hook failed to start: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout=hook.timeout)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            return HookResult(success=False, error=f"Hook timed out after {hook.timeout}s: {command}")

        output = stdout.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            error = stderr.decode("utf-8", errors="replace").strip()
            return HookResult(
                success=False,
                output=output,
                error=error or f"exit status {proc.returncode}",
            )
        return HookResult(success=True, output=output, data=_parse_output(output))


def permission_status(results: Iterable[HookResult]) -> Decision | None:
    """Decision requested by ``permission_ask`` hooks.

    The last successful hook with a valid ``status`` wins; None means no
    hook decided.
    """
    decided: Decision | None = None
    for result in results:
        if not result.success:
            logger.warning("permission_ask hook failed: %s", result.error)
            continue
        if result.status is not None:
            decided = result.status
    return decided

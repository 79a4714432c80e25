"""Tests for hook matching, template expansion and permission_ask status."""

from __future__ import annotations

import json

import pytest

from toolgate.hooks.events import HookContext, build_hook_context
from toolgate.hooks.manager import HookManager, expand_command, permission_status
from toolgate.types.hooks import Hook, HookEvent, HookResult
from toolgate.types.permissions import Decision, PermissionRequest


def _ask_ctx(tool: str = "bash", **args) -> HookContext:
    return build_hook_context(
        HookEvent.PERMISSION_ASK,
        request=PermissionRequest(tool, args, session_id="s1"),
        permission_id="per_1",
        rule="project:bash -> ask",
    )


class TestHookContext:
    def test_from_request(self):
        ctx = _ask_ctx(command="ls")
        assert ctx.tool_name == "bash"
        assert ctx.tool_args == {"command": "ls"}
        assert ctx.session_id == "s1"
        assert ctx.permission_id == "per_1"

    def test_session_event(self):
        ctx = build_hook_context(HookEvent.SESSION_START, session_id="s2", cwd="/tmp")
        assert ctx.tool_name is None
        assert ctx.payload() == {"event": "session_start", "session_id": "s2", "cwd": "/tmp"}

    def test_environment(self):
        env = _ask_ctx(command="ls").environment()
        assert env["TOOLGATE_TOOL_NAME"] == "bash"
        assert env["TOOLGATE_COMMAND"] == "ls"
        assert env["TOOLGATE_PATH"] == ""

    def test_payload(self):
        payload = _ask_ctx(command="ls").payload()
        assert payload["tool"] == "bash"
        assert payload["args"] == {"command": "ls"}
        assert payload["rule"] == "project:bash -> ask"


class TestMatching:
    def test_event_must_match(self):
        assert not Hook(HookEvent.SESSION_END, "true").applies_to(HookEvent.PERMISSION_ASK, "bash")

    def test_no_matcher_applies_to_all_tools(self):
        assert Hook(HookEvent.PERMISSION_ASK, "true").applies_to(HookEvent.PERMISSION_ASK, "read")

    def test_matcher_glob(self):
        hook = Hook(HookEvent.PERMISSION_ASK, "true", matcher="mcp__*")
        assert hook.applies_to(HookEvent.PERMISSION_ASK, "mcp__db__query")
        assert not hook.applies_to(HookEvent.PERMISSION_ASK, "bash")

    def test_matcher_requires_tool(self):
        hook = Hook(HookEvent.SESSION_START, "true", matcher="bash")
        assert not hook.applies_to(HookEvent.SESSION_START, None)

    def test_hooks_for(self):
        manager = HookManager([
            Hook(HookEvent.PERMISSION_ASK, "a", matcher="read"),
            Hook(HookEvent.PERMISSION_ASK, "b"),
            Hook(HookEvent.SESSION_END, "c"),
        ])
        assert [h.command for h in manager.hooks_for(HookEvent.PERMISSION_ASK, "bash")] == ["b"]


class TestExpandCommand:
    def test_values_are_quoted(self):
        command = expand_command("check {tool_name} {command} {rule}", _ask_ctx(command="rm -rf /; echo hi"))
        assert command == "check bash 'rm -rf /; echo hi' 'project:bash -> ask'"

    def test_empty_values(self):
        assert expand_command("x {path}", _ask_ctx(command="ls")) == "x ''"

    def test_unknown_names_are_left_alone(self):
        assert expand_command("x {nope}", _ask_ctx(command="ls")) == "x {nope}"


class TestFire:
    @pytest.mark.asyncio
    async def test_json_output(self):
        manager = HookManager([Hook(HookEvent.PERMISSION_ASK, """echo '{"status": "allow"}'""")])
        results = await manager.fire(_ask_ctx(command="ls"))
        assert len(results) == 1
        assert results[0].success
        assert results[0].data == {"status": "allow"}

    @pytest.mark.asyncio
    async def test_context_on_stdin(self):
        manager = HookManager([Hook(HookEvent.PERMISSION_ASK, "cat")])
        [result] = await manager.fire(_ask_ctx(command="ls"))
        assert json.loads(result.output)["args"] == {"command": "ls"}

    @pytest.mark.asyncio
    async def test_environment_variables(self):
        manager = HookManager([Hook(HookEvent.PERMISSION_ASK, 'echo "$TOOLGATE_PERMISSION_ID"')])
        [result] = await manager.fire(_ask_ctx(command="ls"))
        assert result.output == "per_1"

    @pytest.mark.asyncio
    async def test_failure(self):
        manager = HookManager([Hook(HookEvent.PERMISSION_ASK, "echo boom >&2; exit 3")])
        [result] = await manager.fire(_ask_ctx(command="ls"))
        assert not result.success
        assert result.error == "boom"

    @pytest.mark.asyncio
    async def test_silent_failure_reports_exit_status(self):
        manager = HookManager([Hook(HookEvent.PERMISSION_ASK, "exit 4")])
        [result] = await manager.fire(_ask_ctx(command="ls"))
        assert result.error == "exit status 4"

    @pytest.mark.asyncio
    async def test_timeout(self):
        manager = HookManager([Hook(HookEvent.PERMISSION_ASK, "sleep 5", timeout=0.1)])
        [result] = await manager.fire(_ask_ctx(command="ls"))
        assert not result.success
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_only_matching_hooks_run(self):
        manager = HookManager([
            Hook(HookEvent.PERMISSION_ASK, "echo a", matcher="read"),
            Hook(HookEvent.PERMISSION_ASK, "echo b", matcher="bash"),
        ])
        results = await manager.fire(_ask_ctx(command="ls"))
        assert [r.output for r in results] == ["b"]

    def test_register(self):
        manager = HookManager()
        manager.register(Hook(HookEvent.SESSION_START, "true"))
        assert len(manager) == 1


class TestPermissionStatus:
    def test_top_level(self):
        assert HookResult(True, data={"status": "deny"}).status is Decision.DENY

    def test_nested_in_output(self):
        assert HookResult(True, data={"output": {"status": "allow"}}).status is Decision.ALLOW

    def test_output_object_shadows_top_level(self):
        result = HookResult(True, data={"output": {"message": "hi"}, "status": "deny"})
        assert result.status is None

    def test_non_object_output_falls_back_to_top_level(self):
        assert HookResult(True, data={"output": "text", "status": "deny"}).status is Decision.DENY

    def test_data_key_is_not_consulted(self):
        assert HookResult(True, data={"data": {"status": "ask"}}).status is None

    def test_invalid_status(self):
        assert HookResult(True, data={"status": "maybe"}).status is None

    def test_last_valid_wins(self):
        results = [
            HookResult(True, data={"status": "allow"}),
            HookResult(True, data={"status": "deny"}),
            HookResult(True, data={"status": "whatever"}),
        ]
        assert permission_status(results) is Decision.DENY

    def test_failed_hooks_are_ignored(self):
        results = [HookResult(False, error="x", data={"status": "allow"})]
        assert permission_status(results) is None

    def test_no_results(self):
        assert permission_status([]) is None

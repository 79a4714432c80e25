"""Tests for settings resolution and ruleset assembly."""

from __future__ import annotations

import pytest

from toolgate.core.config import (
    build_registry,
    build_ruleset,
    global_config_path,
    load_env_config,
    load_settings,
    load_toml,
    project_config_path,
)
from toolgate.permissions.errors import RuleConfigError
from toolgate.types.config import PermissionSettings
from toolgate.types.hooks import HookEvent
from toolgate.types.permissions import Decision, Layer, PermissionRequest


def _global(home, text: str) -> None:
    path = home / ".toolgate" / "config.toml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _project(root, text: str) -> None:
    (root / ".toolgate" / "config.toml").write_text(text)


class TestPaths:
    def test_global_path(self, isolated_home):
        assert global_config_path() == isolated_home / ".toolgate" / "config.toml"

    def test_project_path(self, project):
        assert project_config_path(project) == project / ".toolgate" / "config.toml"


class TestLoadToml:
    def test_missing(self, tmp_path):
        assert load_toml(tmp_path / "none.toml") == {}

    def test_broken(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[permission\n")
        assert load_toml(path) == {}


class TestLoadSettings:
    def test_defaults(self, isolated_home, project):
        settings = load_settings(project)
        assert settings == PermissionSettings()
        assert settings.default is Decision.DENY

    def test_project_overrides_global(self, isolated_home, project):
        _global(isolated_home, '[settings]\ndefault = "ask"\nagent = "plan"\n')
        _project(project, '[settings]\nagent = "build"\nask_timeout = 30\n')
        settings = load_settings(project)
        assert settings.default is Decision.ASK
        assert settings.agent == "build"
        assert settings.ask_timeout == 30.0

    def test_env_overrides_files(self, isolated_home, project, monkeypatch):
        _project(project, '[settings]\ndefault = "ask"\n')
        monkeypatch.setenv("TOOLGATE_DEFAULT_POLICY", "deny")
        monkeypatch.setenv("TOOLGATE_AUDIT", "yes")
        settings = load_settings(project)
        assert settings.default is Decision.DENY
        assert settings.audit is True

    def test_env_policy_paths(self, isolated_home, monkeypatch):
        monkeypatch.setenv("TOOLGATE_POLICY_PATHS", "/a.yml:/b.yml")
        assert load_env_config()["policy_paths"] == ["/a.yml", "/b.yml"]

    def test_project_policy_paths_are_relative_to_project(self, isolated_home, project):
        _project(project, '[settings]\npolicy_paths = ["policies/team.yml"]\n')
        settings = load_settings(project)
        assert settings.policy_paths == (str((project / "policies" / "team.yml").resolve()),)

    def test_single_policy_path_string(self, isolated_home, project):
        _project(project, '[settings]\npolicy_paths = "p.yml"\n')
        settings = load_settings(project)
        assert settings.policy_paths == (str((project / "p.yml").resolve()),)

    def test_invalid_policy_paths(self, isolated_home, project):
        _global(isolated_home, "[settings]\npolicy_paths = 3\n")
        with pytest.raises(RuleConfigError, match="policy_paths"):
            load_settings(project)

    def test_invalid_default(self, isolated_home, project):
        _project(project, '[settings]\ndefault = "sometimes"\n')
        with pytest.raises(RuleConfigError, match="invalid default policy"):
            load_settings(project)

    def test_hooks(self, isolated_home, project):
        _project(project, """
[[hooks]]
event = "permission_ask"
command = "./approve.sh {tool_name}"
matcher = "bash"
timeout = 5

[[hooks]]
event = "no_such_event"
command = "true"

[[hooks]]
command = "missing event"
""")
        hooks = load_settings(project).hooks
        assert len(hooks) == 1
        assert hooks[0].event is HookEvent.PERMISSION_ASK
        assert hooks[0].matcher == "bash"
        assert hooks[0].timeout == 5.0


class TestBuildRuleset:
    def test_layers(self, isolated_home, project):
        _global(isolated_home, '[permission]\nbash = "ask"\n')
        _project(project, '[permission]\nbash = { "git *" = "allow" }\n')
        settings = load_settings(project)
        ruleset = build_ruleset(settings, project)
        assert [r.layer for r in ruleset.rules()] == [Layer.GLOBAL, Layer.PROJECT]

    def test_agent_preset_in_default_layer(self, isolated_home, project):
        settings = PermissionSettings(agent="build")
        ruleset = build_ruleset(settings, project)
        assert ruleset.rules(Layer.DEFAULT)
        assert ruleset.rules(Layer.GLOBAL) == []

    def test_policy_files(self, isolated_home, project):
        policies = project / "policies"
        policies.mkdir()
        (policies / "team.yml").write_text("rules:\n  - tool: read\n    decision: allow\n")
        _project(project, '[settings]\npolicy_paths = ["policies/team.yml"]\n')
        ruleset = build_ruleset(load_settings(project), project)
        assert [r.tool for r in ruleset.rules(Layer.PROJECT)] == ["read"]

    def test_invalid_permission_table(self, isolated_home, project):
        _project(project, 'permission = "allow"\n')
        with pytest.raises(RuleConfigError):
            build_ruleset(PermissionSettings(), project)

    def test_invalid_action(self, isolated_home, project):
        _project(project, '[permission]\nbash = "perhaps"\n')
        with pytest.raises(RuleConfigError):
            build_ruleset(PermissionSettings(), project)

    def test_single_policy_path_loads_deny_rules(self, isolated_home, project):
        (project / "p.yml").write_text("rules:\n  - tool: bash\n    decision: deny\n")
        _project(project, '[settings]\npolicy_paths = "p.yml"\n')
        ruleset = build_ruleset(load_settings(project), project)
        assert [(r.tool, r.decision) for r in ruleset.rules(Layer.PROJECT)] == [("bash", Decision.DENY)]

    def test_legacy_tools_table(self, isolated_home, project):
        _project(project, "[tools]\nwrite = false\nwebfetch = true\n")
        ruleset = build_ruleset(PermissionSettings(), project)
        actions = {r.tool: r.decision for r in ruleset.rules(Layer.PROJECT)}
        assert actions == {"edit": Decision.DENY, "webfetch": Decision.ALLOW}

    def test_permission_overrides_legacy_tools(self, isolated_home, project):
        _project(project, '[tools]\nedit = false\n\n[permission]\nedit = "ask"\n')
        rules = build_ruleset(PermissionSettings(), project).rules(Layer.PROJECT)
        assert [(r.tool, r.decision) for r in rules] == [("edit", Decision.ASK)]

    def test_invalid_legacy_tool_value(self, isolated_home, project):
        _project(project, '[tools]\nbash = "no"\n')
        with pytest.raises(RuleConfigError, match="true or false"):
            build_ruleset(PermissionSettings(), project)


class TestBuildRegistry:
    def test_end_to_end(self, isolated_home, project):
        _global(isolated_home, '[permission]\nbash = "ask"\n')
        _project(project, '[settings]\ndefault = "deny"\n\n[permission]\nbash = { "git status" = "allow" }\n')
        registry = build_registry(project)
        session = registry.open("s1")
        assert session.evaluate(PermissionRequest("bash", {"command": "git status"})).allowed
        assert session.evaluate(PermissionRequest("bash", {"command": "git push"})).needs_approval
        assert session.evaluate(PermissionRequest("read", {"path": "/x"})).denied

"""Tests for permission value types."""

from __future__ import annotations

import pytest

from toolgate.types.permissions import (
    ANY,
    ArgPattern,
    Decision,
    Layer,
    PatternKind,
    PermissionDecision,
    PermissionRequest,
    Rule,
    expand_home,
)


class TestDecision:
    def test_severity_order(self):
        assert Decision.DENY.severity > Decision.ASK.severity > Decision.ALLOW.severity

    def test_parse(self):
        assert Decision.parse(" Allow ") is Decision.ALLOW
        assert Decision.parse(Decision.ASK) is Decision.ASK
        with pytest.raises(ValueError):
            Decision.parse("maybe")


class TestArgPattern:
    @pytest.mark.parametrize(
        ("text", "kind", "stored"),
        [
            ("*", PatternKind.ANY, ""),
            ("git push", PatternKind.LITERAL, "git push"),
            ("git *", PatternKind.PREFIX, "git "),
            ("*.env", PatternKind.GLOB, "*.env"),
            ("src/*/test_*", PatternKind.GLOB, "src/*/test_*"),
            ("file?.txt", PatternKind.GLOB, "file?.txt"),
        ],
    )
    def test_parse(self, text, kind, stored):
        pattern = ArgPattern.parse(text)
        assert pattern.kind is kind
        assert pattern.text == stored
        assert str(pattern) == text

    def test_wildcard_is_any(self):
        assert ArgPattern.wildcard() is ANY

    def test_literal_chars(self):
        assert ArgPattern.parse("git *").literal_chars == 4
        assert ArgPattern.parse("*.env").literal_chars == 4
        assert ANY.literal_chars == 0


class TestExpandHome:
    def test_tilde(self, isolated_home):
        assert expand_home("~") == str(isolated_home)
        assert expand_home("~/x") == f"{isolated_home}/x"
        assert expand_home("$HOME/x") == f"{isolated_home}/x"

    def test_untouched(self):
        assert expand_home("/etc/~x") == "/etc/~x"


class TestRule:
    def test_arguments_sorted_and_parsed(self):
        rule = Rule.create("webfetch", "allow", arguments={"url": "https://*", "method": "GET"})
        assert [name for name, _ in rule.arguments] == ["method", "url"]
        assert rule.decision is Decision.ALLOW
        assert rule.layer is Layer.PROJECT

    def test_blanket(self):
        assert Rule.create("bash", "ask").is_blanket
        assert Rule.create("bash", "ask", arguments={"command": "*"}).is_blanket
        assert not Rule.create("bash", "ask", arguments={"command": "ls"}).is_blanket

    def test_label(self):
        rule = Rule.create("bash", "deny", layer=Layer.GLOBAL, arguments={"command": "rm *"})
        assert rule.label == "global:bash(command=rm *) -> deny"

    def test_to_dict(self):
        rule = Rule.create("read", "allow", source="cfg")
        assert rule.to_dict() == {"tool": "read", "decision": "allow", "layer": "project", "source": "cfg"}

    def test_immutable(self):
        rule = Rule.create("read", "allow")
        with pytest.raises(AttributeError):
            rule.tool = "write"


class TestPermissionRequest:
    def test_arguments_are_snapshotted(self):
        args = {"command": "ls"}
        request = PermissionRequest("bash", args)
        args["command"] = "rm -rf /"
        assert request.get("command") == "ls"
        with pytest.raises(TypeError):
            request.arguments["command"] = "x"

    def test_equality_and_hash(self):
        a = PermissionRequest("bash", {"command": "ls"})
        b = PermissionRequest("bash", {"command": "ls"})
        assert a == b
        assert hash(a) == hash(b)


class TestPermissionDecision:
    def test_default(self):
        result = PermissionDecision(Decision.DENY)
        assert result.is_default
        assert result.denied
        assert result.rule_label == "default"

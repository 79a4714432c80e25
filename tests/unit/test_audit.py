"""Tests for the hash-chained audit log."""

from __future__ import annotations

import json

from toolgate.audit import AuditEventType, AuditLogger, verify_chain
from toolgate.types.permissions import Decision, Layer, PermissionDecision, PermissionRequest, Rule


def _events(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestAuditLogger:
    def test_disabled_writes_nothing(self, tmp_path):
        audit = AuditLogger("s1", enabled=False, audit_dir=tmp_path)
        assert audit.log_session_start(default_policy="deny", rule_count=1) is None
        assert audit.log_path is None
        assert list(tmp_path.iterdir()) == []

    def test_default_dir_under_home(self, isolated_home):
        with AuditLogger("s1") as audit:
            assert audit.log_path == isolated_home / ".toolgate" / "audit" / "audit-s1.jsonl"

    def test_chain(self, tmp_path):
        request = PermissionRequest("bash", {"command": "ls"}, call_id="c1")
        rule = Rule.create("bash", "allow", layer=Layer.SESSION, arguments={"command": "ls"})
        with AuditLogger("s1", audit_dir=tmp_path) as audit:
            audit.log_session_start(default_policy="deny", rule_count=3)
            audit.log_permission_decision(request, PermissionDecision(Decision.ASK))
            audit.log_operator_response(request, "allow_always")
            audit.log_permission_grant(rule)
            audit.log_session_end(grants=1)
            assert audit.event_count == 5

        events = _events(audit.log_path)
        assert [e["type"] for e in events] == [t.value for t in (
            AuditEventType.SESSION_START,
            AuditEventType.PERMISSION_DECISION,
            AuditEventType.OPERATOR_RESPONSE,
            AuditEventType.PERMISSION_GRANT,
            AuditEventType.SESSION_END,
        )]
        assert events[1]["data"]["rule"] == "default"
        assert events[1]["data"]["args"] == {"command": "ls"}
        assert events[1]["data"]["call_id"] == "c1"
        assert events[3]["data"]["layer"] == "session"
        for prev, event in zip(events, events[1:]):
            assert event["prev_hash"] == prev["hash"]
        assert verify_chain(audit.log_path) == (True, [])

    def test_arguments_can_be_omitted(self, tmp_path):
        with AuditLogger("s1", audit_dir=tmp_path, log_arguments=False) as audit:
            audit.log_permission_decision(
                PermissionRequest("bash", {"command": "secret"}), PermissionDecision(Decision.DENY),
            )
        assert "args" not in _events(audit.log_path)[0]["data"]

    def test_tampering_is_detected(self, tmp_path):
        with AuditLogger("s1", audit_dir=tmp_path) as audit:
            audit.log_session_start(default_policy="deny", rule_count=0)
            audit.log_session_end()
        lines = audit.log_path.read_text().splitlines()
        audit.log_path.write_text(lines[1] + "\n")
        valid, errors = verify_chain(audit.log_path)
        assert not valid
        assert "prev_hash mismatch" in errors[0]

    def test_dropped_record_is_detected(self, tmp_path):
        with AuditLogger("s1", audit_dir=tmp_path) as audit:
            for _ in range(3):
                audit.log_session_end()
        lines = audit.log_path.read_text().splitlines()
        audit.log_path.write_text(lines[0] + "\n" + lines[2] + "\n")
        valid, errors = verify_chain(audit.log_path)
        assert not valid
        assert any("expected seq 2" in e for e in errors)

"""Append-only JSONL trail of permission decisions.

Every record carries a sequence number, the hash of the previous record
and its own SHA-256 hash, so deleting, reordering or editing a line is
detectable with :func:`verify_chain`.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from enum import Enum
from pathlib import Path
from typing import IO, Any

from toolgate.types.permissions import PermissionDecision, PermissionRequest, Rule

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64


class AuditEventType(Enum):
    """Types of audit records."""

    SESSION_START = "session_start"
    SESSION_END = "session_end"
    PERMISSION_DECISION = "permission_decision"
    OPERATOR_RESPONSE = "operator_response"
    PERMISSION_GRANT = "permission_grant"


def record_hash(record: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON of *record* minus its ``hash`` key."""
    body = {k: v for k, v in record.items() if k != "hash"}
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def verify_chain(log_path: Path) -> tuple[bool, list[str]]:
    """Check hashes, links and sequence numbers of an audit file.

    Returns ``(valid, errors)``.
    """
    errors: list[str] = []
    expected_prev = GENESIS_HASH
    expected_seq = 1
    with open(log_path) as f:
        for lineno, line in enumerate(f, 1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                errors.append(f"Line {lineno}: invalid JSON: {exc}")
                break

            stored = record.get("hash", "")
            if record_hash(record) != stored:
                errors.append(f"Line {lineno}: hash mismatch")
            if record.get("prev_hash") != expected_prev:
                errors.append(f"Line {lineno}: prev_hash mismatch")
            if record.get("seq") != expected_seq:
                errors.append(f"Line {lineno}: expected seq {expected_seq}, got {record.get('seq')}")

            expected_prev = stored
            expected_seq = (record.get("seq") or expected_seq) + 1
    return not errors, errors


class AuditLogger:
    """Audit trail of one permission session.

    Writes ``<audit_dir>/audit-<session_id>.jsonl`` (default directory
    ``~/.toolgate/audit``). Disabled loggers accept every call and write
    nothing. Use as a context manager or call :meth:`close`.
    """

    def __init__(
        self,
        session_id: str,
        *,
        enabled: bool = True,
        log_arguments: bool = True,
        audit_dir: Path | None = None,
    ) -> None:
        self._session_id = session_id
        self._log_arguments = log_arguments
        self._prev_hash = GENESIS_HASH
        self._seq = 0
        self._log_path: Path | None = None
        self._handle: IO[str] | None = None
        if enabled:
            directory = audit_dir or Path.home() / ".toolgate" / "audit"
            directory.mkdir(parents=True, exist_ok=True)
            self._log_path = directory / f"audit-{session_id}.jsonl"
            self._handle = open(self._log_path, "a")  # noqa: SIM115
            logger.debug("Audit log: %s", self._log_path)

    def __enter__(self) -> AuditLogger:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    @property
    def enabled(self) -> bool:
        return self._log_path is not None

    @property
    def log_path(self) -> Path | None:
        return self._log_path

    @property
    def event_count(self) -> int:
        return self._seq

    def _append(self, event_type: AuditEventType, data: dict[str, Any]) -> int | None:
        """Write one record. Returns its sequence number, or None when not writing."""
        if self._handle is None:
            return None
        self._seq += 1
        record: dict[str, Any] = {
            "seq": self._seq,
            "ts": time.time(),
            "type": event_type.value,
            "session_id": self._session_id,
            "data": data,
            "prev_hash": self._prev_hash,
        }
        record["hash"] = self._prev_hash = record_hash(record)
        self._handle.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
        self._handle.flush()
        return self._seq

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def log_session_start(self, *, default_policy: str, rule_count: int) -> int | None:
        return self._append(AuditEventType.SESSION_START, {
            "default_policy": default_policy,
            "rules": rule_count,
        })

    def log_session_end(self, *, grants: int = 0) -> int | None:
        return self._append(AuditEventType.SESSION_END, {"grants": grants})

    def _request_data(self, request: PermissionRequest) -> dict[str, Any]:
        data: dict[str, Any] = {"tool": request.tool_name}
        if request.call_id:
            data["call_id"] = request.call_id
        if self._log_arguments and request.arguments:
            data["args"] = dict(request.arguments)
        return data

    def log_permission_decision(
        self, request: PermissionRequest, result: PermissionDecision,
    ) -> int | None:
        data = self._request_data(request)
        data["decision"] = result.decision.value
        data["rule"] = result.rule_label
        data["reason"] = result.reason
        return self._append(AuditEventType.PERMISSION_DECISION, data)

    def log_operator_response(
        self, request: PermissionRequest, response: str, *, source: str = "operator",
    ) -> int | None:
        """Record an answer to an ask; *source* is ``operator`` or ``hook``."""
        data = self._request_data(request)
        data["response"] = response
        data["source"] = source
        return self._append(AuditEventType.OPERATOR_RESPONSE, data)

    def log_permission_grant(self, rule: Rule) -> int | None:
        return self._append(AuditEventType.PERMISSION_GRANT, rule.to_dict())

"""Hash-chained audit trail of permission decisions."""

from toolgate.audit.logger import AuditEventType, AuditLogger, verify_chain

__all__ = ["AuditEventType", "AuditLogger", "verify_chain"]

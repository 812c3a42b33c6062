"""Append-only security events and audit trail."""

from zhort.audit.log import (
    AuditTrail,
    BestEffortWriter,
    SecurityEventLog,
    build_audit_trail,
    build_security_event_log,
)
from zhort.audit.models import AuditAction, SecurityEventKind

__all__ = [
    "AuditAction",
    "AuditTrail",
    "BestEffortWriter",
    "SecurityEventKind",
    "SecurityEventLog",
    "build_audit_trail",
    "build_security_event_log",
]

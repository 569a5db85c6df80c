"""Persistence — hash-chained audit trail."""

from qrseal.persistence.event_log import AuditEvent, AuditEventKind, AuditLog

__all__ = ["AuditEvent", "AuditEventKind", "AuditLog"]

"""Audit trail for the mint engine."""
from .audit import AuditEventType, AuditSeverity, AuditLogger

__all__ = ["AuditEventType", "AuditSeverity", "AuditLogger"]

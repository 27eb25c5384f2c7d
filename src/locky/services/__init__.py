"""Optional observers that plug into the lock engine."""

from .audit_logger import AuditLogger

__all__ = ["AuditLogger"]

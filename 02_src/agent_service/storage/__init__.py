"""Storage module."""

from .storage import AuditStore, IAuditStore

__all__ = ["AuditStore", "IAuditStore"]

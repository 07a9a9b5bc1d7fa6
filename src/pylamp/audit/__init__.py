"""Activity log writers."""

from pylamp.audit.base import AuditLog
from pylamp.audit.firestore import FirestoreAuditLog
from pylamp.audit.memory import InMemoryAuditLog

__all__ = ["AuditLog", "FirestoreAuditLog", "InMemoryAuditLog"]

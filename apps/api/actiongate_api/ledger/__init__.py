from .service import AuditLedger, DuplicateExecutionError

__all__ = ["AuditLedger", "DuplicateExecutionError"]

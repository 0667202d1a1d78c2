# otphaven Core - Shared Utilities
#
# Core module provides functionality shared by the vault, code and sync
# modules:
# - Audit logging

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_security_event,
    set_audit_logger,
)

__all__ = [
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_security_event",
    "set_audit_logger",
]

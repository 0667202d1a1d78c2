# otphaven Core - Audit Logging
#
# Append-only structured log of security-relevant vault and sync events.
# Events carry a timestamp, an event id and host context. Account
# secrets, companion passwords and passphrases are never written here:
# callers pass ids and counts only.

import logging
import os
import socket
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of events recorded in the audit log."""

    # Vault lifecycle
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_LOCKED = "vault.locked"
    VAULT_AUTO_LOCKED = "vault.auto_locked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_RESET = "vault.reset"
    VAULT_LEGACY_FORMAT = "vault.legacy_format"
    VAULT_ERROR = "vault.error"

    # Accounts
    ACCOUNT_ADDED = "account.added"
    ACCOUNT_UPDATED = "account.updated"
    ACCOUNT_DELETED = "account.deleted"

    # Backups
    BACKUP_EXPORTED = "backup.exported"
    BACKUP_IMPORTED = "backup.imported"

    # Storage
    STORAGE_LOW = "storage.low"

    # Peer sync
    SYNC_SESSION_STARTED = "sync.session.started"
    SYNC_CONNECTED = "sync.connected"
    SYNC_DISCONNECTED = "sync.disconnected"
    SYNC_ERROR = "sync.error"
    SYNC_SNAPSHOT_SENT = "sync.snapshot.sent"
    SYNC_SNAPSHOT_RECEIVED = "sync.snapshot.received"
    SYNC_SNAPSHOT_MERGED = "sync.snapshot.merged"

    # Process
    SYSTEM_START = "system.start"


class EventSeverity(str, Enum):
    """
    Severity levels for audit events.

    - INFO: normal activity
    - INVESTIGATE: unusual but expected (legacy format, storage low)
    - ALERT: failed unlocks, transport errors
    - CRITICAL: unexpected failures
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault and sync events.

    Features:
    - Structured JSON lines via structlog
    - Automatic timestamp and event ID
    - One file per day under ``log_dir``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger("otphaven.audit")

    def _setup_file_handler(self):
        """Attach a daily file handler to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog renders JSON

        audit_logger = logging.getLogger("otphaven.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        self._file_handler = file_handler

    def close(self):
        """Detach and close the file handler."""
        logging.getLogger("otphaven.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log an audit event.

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (ids and counts, never secrets)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        self.logger.info(
            "audit_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
            details=details or {},
            context=self._get_default_context(),
        )

        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ) -> str:
        """Log an informational vault event."""
        return self.log_event(
            event_type=event_type,
            severity=EventSeverity.INFO,
            message=f"Vault: {message}",
            details=details
        )

    def _get_default_context(self) -> Dict[str, Any]:
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def set_audit_logger(instance: Optional[AuditLogger]) -> None:
    """Replace the singleton (CLI startup and tests)."""
    global _audit_logger
    _audit_logger = instance


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging audit events.

    Usage:
        log_security_event(
            EventType.SYNC_ERROR,
            EventSeverity.ALERT,
            "Pairing transport failed",
            details={"role": "host"}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)

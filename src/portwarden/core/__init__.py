# Core module - shared functionality for all portwarden modules:
# - Audit logging
# - Configuration

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    configure_audit_log,
    get_audit_logger,
    log_backup_event,
)
from .config import PortwardenSettings

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "configure_audit_log",
    "get_audit_logger",
    "log_backup_event",
    # Configuration
    "PortwardenSettings",
]

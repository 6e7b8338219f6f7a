"""Storage classes for the relay core."""

from .audit import (
    ACTION_CONNECTED,
    ACTION_DISCONNECTED,
    ACTION_USERNAME_SET,
    AuditEvent,
    AuditLog,
    parse_audit_log,
)

__all__ = [
    "ACTION_CONNECTED",
    "ACTION_DISCONNECTED",
    "ACTION_USERNAME_SET",
    "AuditEvent",
    "AuditLog",
    "parse_audit_log",
]

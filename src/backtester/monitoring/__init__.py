"""Audit trail and logging setup."""

from backtester.monitoring.audit import AuditLog
from backtester.monitoring.logging_utils import setup_logging

__all__ = ["AuditLog", "setup_logging"]

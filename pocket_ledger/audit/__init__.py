"""Audit logging package."""

from pocket_ledger.audit.logger import AuditTrail, configure_logging, create_correlation_id

__all__ = ["AuditTrail", "configure_logging", "create_correlation_id"]

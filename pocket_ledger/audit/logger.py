"""
Audit Trail

DESIGN DECISION: Every balance movement and every lifecycle event in the
ledger is recorded. This provides:
1. An answer to "why did this balance change?" for every wallet
2. An independent way to verify balances (see ReconciliationOracle)
3. Debugging information when drift shows up

Two kinds of entries pass through here:
- Balance entries are persisted by the wallet storage together with the
  balance itself; the trail only emits them to the local log.
- Lifecycle entries (wallet renamed, loan deleted, goal archived, ...) are
  persisted by `record`, which never raises: a failed lifecycle entry must
  not undo the user's action, so the failure is logged instead.
"""

import logging
from typing import Optional
from uuid import uuid4

import structlog

from pocket_ledger.models.audit import AuditEntityType, AuditLogEntry, AuditSeverity
from pocket_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(log_level: str = "INFO") -> None:
    """
    Route the structured logs to stderr at the given level.

    structlog renders each event to a JSON line; the standard library
    handler only decides where it goes.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper()))


class AuditTrail:
    """
    Central audit service.

    Writes entries both to:
    1. Structured local log (for debugging)
    2. The audit collection (for persistence and the audit screens)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize the audit trail.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    def emit(self, entry: AuditLogEntry) -> None:
        """Log an entry locally, at its own severity."""
        log_dict = entry.to_log_dict()

        if entry.severity == AuditSeverity.ERROR:
            self._logger.error("audit_entry", **log_dict)
        elif entry.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_entry", **log_dict)
        else:
            self._logger.info("audit_entry", **log_dict)

    async def record(self, entry: AuditLogEntry) -> bool:
        """
        Log and persist a lifecycle entry.

        Returns True if the storage write succeeded (or no storage configured).
        """
        self.emit(entry)

        if self._storage:
            try:
                return await self._storage.append_entry(entry)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    entry_id=entry.entry_id,
                    change_type=entry.change_type.value,
                )
                return False

        return True

    async def history(
        self,
        owner_id: str,
        entity_type: AuditEntityType,
        entity_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """All entries for one entity, oldest first."""
        if self._storage is None:
            return []
        return await self._storage.get_entries_by_entity(
            owner_id, entity_type, entity_id, limit=limit, offset=offset
        )

    async def recent(
        self,
        owner_id: str,
        entity_type: Optional[AuditEntityType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """Newest entries of an owner, optionally for one entity type."""
        if self._storage is None:
            return []
        return await self._storage.get_recent_entries(
            owner_id, entity_type=entity_type, limit=limit, offset=offset
        )


def create_correlation_id() -> str:
    """
    Create a new correlation ID for tracking related entries.

    Use this at the start of a user action that moves several balances
    (e.g. a transfer). Pass it through all subsequent operations.
    """
    return uuid4().hex

"""Services package."""

from pocket_ledger.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    GoalStorageInterface,
    InMemoryStore,
    LoanStorageInterface,
    MongoLedgerClient,
    StorageError,
    VersionConflictError,
    WalletStorageInterface,
)

__all__ = [
    # Storage services
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoalStorageInterface",
    "InMemoryStore",
    "LoanStorageInterface",
    "MongoLedgerClient",
    "StorageError",
    "VersionConflictError",
    "WalletStorageInterface",
]

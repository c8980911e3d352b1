"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
MongoDB is the production backend; the in-memory backend serves tests
and local runs. Both are swappable behind the same interfaces.
"""

from pocket_ledger.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    GoalStorageInterface,
    LoanStorageInterface,
    StorageError,
    VersionConflictError,
    WalletStorageInterface,
)
from pocket_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryLoanStorage,
    InMemoryStore,
    InMemoryWalletStorage,
)
from pocket_ledger.services.storage.mongo import (
    MongoAuditStorage,
    MongoBudgetStorage,
    MongoGoalStorage,
    MongoLedgerClient,
    MongoLoanStorage,
    MongoWalletStorage,
    migrate_legacy_documents,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetStorageInterface",
    "GoalStorageInterface",
    "LoanStorageInterface",
    "WalletStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "StorageError",
    "VersionConflictError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetStorage",
    "InMemoryGoalStorage",
    "InMemoryLoanStorage",
    "InMemoryStore",
    "InMemoryWalletStorage",
    # MongoDB implementation
    "MongoAuditStorage",
    "MongoBudgetStorage",
    "MongoGoalStorage",
    "MongoLedgerClient",
    "MongoLoanStorage",
    "MongoWalletStorage",
    "migrate_legacy_documents",
]

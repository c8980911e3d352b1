"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the system must conform to these schemas.
"""

from pocket_ledger.models.ledger import (
    MONTH_NAMES,
    BudgetMonth,
    BudgetPeriod,
    Goal,
    GoalStatus,
    Loan,
    LoanDirection,
    LoanPayment,
    LoanStatus,
    LoanTopUp,
    Transaction,
    TransactionKind,
    Wallet,
    WalletType,
    new_id,
    utc_now,
)
from pocket_ledger.models.audit import (
    AuditChangeType,
    AuditEntityType,
    AuditEntryBuilder,
    AuditLogEntry,
    AuditSeverity,
)
from pocket_ledger.models.reports import (
    BalanceChange,
    ChainStopReason,
    DriftReport,
    DriftStatus,
    MonthSummary,
    RolloverChainResult,
    WalletAuditCheck,
)

__all__ = [
    # Ledger models
    "MONTH_NAMES",
    "BudgetMonth",
    "BudgetPeriod",
    "Goal",
    "GoalStatus",
    "Loan",
    "LoanDirection",
    "LoanPayment",
    "LoanStatus",
    "LoanTopUp",
    "Transaction",
    "TransactionKind",
    "Wallet",
    "WalletType",
    "new_id",
    "utc_now",
    # Audit models
    "AuditChangeType",
    "AuditEntityType",
    "AuditEntryBuilder",
    "AuditLogEntry",
    "AuditSeverity",
    # Reports
    "BalanceChange",
    "ChainStopReason",
    "DriftReport",
    "DriftStatus",
    "MonthSummary",
    "RolloverChainResult",
    "WalletAuditCheck",
]

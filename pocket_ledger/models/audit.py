"""
Audit Models for Pocket Ledger

Every balance-affecting mutation and every lifecycle event of a wallet,
loan, goal or transaction is recorded as an AuditLogEntry. This provides:
1. The answer to "why did this balance change?"
2. A way to verify balances independently of the wallets collection
3. Debugging information when drift shows up

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
The model is frozen so an entry cannot be altered after it is built.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from pocket_ledger.models.ledger import (
    BudgetMonth,
    Goal,
    Loan,
    Transaction,
    Wallet,
    new_id,
    utc_now,
)


class AuditEntityType(str, Enum):
    """What kind of record an audit entry is about."""
    WALLET = "wallet"
    LOAN = "loan"
    GOAL = "goal"
    TRANSACTION = "transaction"
    BUDGET = "budget"
    RECURRING = "recurring"  # Written by the recurring-rule sweep


class AuditChangeType(str, Enum):
    """
    Types of changes we audit.

    Only BALANCE_CHANGE entries carry a change_amount that moves a wallet.
    """
    # Wallets
    BALANCE_CHANGE = "balance_change"
    WALLET_CREATED = "wallet_created"
    WALLET_UPDATED = "wallet_updated"
    WALLET_DELETED = "wallet_deleted"

    # Loans
    LOAN_CREATED = "loan_created"
    LOAN_UPDATED = "loan_updated"
    LOAN_PAYMENT_ADDED = "loan_payment_added"
    LOAN_PAYMENT_REMOVED = "loan_payment_removed"
    LOAN_SETTLED = "loan_settled"
    LOAN_DELETED = "loan_deleted"

    # Goals
    GOAL_CREATED = "goal_created"
    GOAL_FULFILLED = "goal_fulfilled"
    GOAL_REACTIVATED = "goal_reactivated"
    GOAL_ARCHIVED = "goal_archived"
    GOAL_DELETED = "goal_deleted"

    # Transactions
    TRANSACTION_DELETED = "transaction_deleted"
    OPENING_BALANCE_RECORDED = "opening_balance_recorded"

    # Recurring rules
    RECURRING_CREATED = "recurring_created"
    RECURRING_DELETED = "recurring_deleted"


class AuditSeverity(str, Enum):
    """Severity level for the local structured log line."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditLogEntry(BaseModel):
    """
    A single audit entry.

    This is the core unit of our audit trail.
    Immutable once built.
    """
    model_config = ConfigDict(frozen=True)

    # Identity
    entry_id: str = Field(
        default_factory=new_id,
        description="Unique entry identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the change happened (UTC)"
    )
    owner_id: str = Field(..., min_length=1)

    # What entity is this about?
    entity_type: AuditEntityType
    entity_id: str = Field(..., min_length=1)
    entity_name: str = Field(..., max_length=300)

    # What happened
    change_type: AuditChangeType
    severity: AuditSeverity = Field(default=AuditSeverity.INFO)
    previous_balance: Optional[Decimal] = None
    new_balance: Optional[Decimal] = None
    change_amount: Optional[Decimal] = None
    reason: Optional[str] = Field(default=None, max_length=500)

    # Additional data (change-specific)
    details: dict[str, Any] = Field(default_factory=dict)

    # Correlation - for tracking entries written by one user action
    correlation_id: Optional[str] = None

    @property
    def moves_balance(self) -> bool:
        return self.change_type == AuditChangeType.BALANCE_CHANGE and self.change_amount is not None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        def money(value: Optional[Decimal]) -> Optional[str]:
            return str(value) if value is not None else None

        return {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "owner_id": self.owner_id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "entity_name": self.entity_name,
            "change_type": self.change_type.value,
            "severity": self.severity.value,
            "previous_balance": money(self.previous_balance),
            "new_balance": money(self.new_balance),
            "change_amount": money(self.change_amount),
            "reason": self.reason,
            "details": self.details,
            "correlation_id": self.correlation_id,
        }


class AuditEntryBuilder:
    """
    Helper class to build audit entries with common patterns.

    Usage:
        entry = AuditEntryBuilder.balance_change(wallet, new_balance, delta, reason)
        entry = AuditEntryBuilder.loan_event(loan, AuditChangeType.LOAN_SETTLED, amount, details)
    """

    @staticmethod
    def balance_change(
        wallet: Wallet,
        new_balance: Decimal,
        change_amount: Decimal,
        reason: str,
        details: Optional[dict] = None,
        correlation_id: Optional[str] = None,
    ) -> AuditLogEntry:
        return AuditLogEntry(
            owner_id=wallet.owner_id,
            entity_type=AuditEntityType.WALLET,
            entity_id=wallet.id,
            entity_name=wallet.name,
            change_type=AuditChangeType.BALANCE_CHANGE,
            previous_balance=wallet.balance,
            new_balance=new_balance,
            change_amount=change_amount,
            reason=reason,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def wallet_created(wallet: Wallet) -> AuditLogEntry:
        return AuditLogEntry(
            owner_id=wallet.owner_id,
            entity_type=AuditEntityType.WALLET,
            entity_id=wallet.id,
            entity_name=wallet.name,
            change_type=AuditChangeType.WALLET_CREATED,
            new_balance=wallet.balance,
            details={"type": wallet.type.value},
        )

    @staticmethod
    def wallet_updated(wallet: Wallet, changes: list[str]) -> AuditLogEntry:
        return AuditLogEntry(
            owner_id=wallet.owner_id,
            entity_type=AuditEntityType.WALLET,
            entity_id=wallet.id,
            entity_name=wallet.name,
            change_type=AuditChangeType.WALLET_UPDATED,
            details={"changes": changes},
        )

    @staticmethod
    def wallet_deleted(wallet: Wallet) -> AuditLogEntry:
        return AuditLogEntry(
            owner_id=wallet.owner_id,
            entity_type=AuditEntityType.WALLET,
            entity_id=wallet.id,
            entity_name=wallet.name,
            change_type=AuditChangeType.WALLET_DELETED,
            previous_balance=wallet.balance,
            details={"type": wallet.type.value},
        )

    @staticmethod
    def loan_event(
        loan: Loan,
        change_type: AuditChangeType,
        change_amount: Optional[Decimal],
        description: str,
        details: Optional[dict] = None,
        severity: AuditSeverity = AuditSeverity.INFO,
        correlation_id: Optional[str] = None,
    ) -> AuditLogEntry:
        payload = {
            "description": description,
            "total_amount": str(loan.total_amount),
            "remaining_amount": str(loan.remaining_amount),
            "status": loan.status.value,
        }
        payload.update(details or {})
        return AuditLogEntry(
            owner_id=loan.owner_id,
            entity_type=AuditEntityType.LOAN,
            entity_id=loan.id,
            entity_name=loan.entity_name,
            change_type=change_type,
            severity=severity,
            change_amount=change_amount,
            details=payload,
            correlation_id=correlation_id,
        )

    @staticmethod
    def goal_event(goal: Goal, change_type: AuditChangeType) -> AuditLogEntry:
        return AuditLogEntry(
            owner_id=goal.owner_id,
            entity_type=AuditEntityType.GOAL,
            entity_id=goal.id,
            entity_name=goal.name,
            change_type=change_type,
            details={
                "target_amount": str(goal.target_amount),
                "current_amount": str(goal.current_amount),
                "status": goal.status.value,
            },
        )

    @staticmethod
    def transaction_deleted(
        budget: BudgetMonth,
        transaction: Transaction,
        correlation_id: Optional[str] = None,
    ) -> AuditLogEntry:
        return AuditLogEntry(
            owner_id=budget.owner_id,
            entity_type=AuditEntityType.TRANSACTION,
            entity_id=transaction.id,
            entity_name=transaction.name,
            change_type=AuditChangeType.TRANSACTION_DELETED,
            change_amount=transaction.actual,
            details={
                "period": budget.period.label,
                "kind": transaction.kind.value,
                "category": transaction.category,
            },
            correlation_id=correlation_id,
        )

    @staticmethod
    def opening_balance_recorded(
        budget: BudgetMonth,
        transaction: Transaction,
        discrepancy: Decimal,
    ) -> AuditLogEntry:
        return AuditLogEntry(
            owner_id=budget.owner_id,
            entity_type=AuditEntityType.TRANSACTION,
            entity_id=transaction.id,
            entity_name=transaction.name,
            change_type=AuditChangeType.OPENING_BALANCE_RECORDED,
            severity=AuditSeverity.WARNING,
            change_amount=discrepancy,
            reason="Manual drift repair",
            details={
                "period": budget.period.label,
                "wallet_id": transaction.wallet_id,
            },
        )

"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run the engine on MongoDB in production
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

Repositories are constructed once at startup and handed to the engines.
There is no global registry of models.

The interface is intentionally simple - we're not building a full ORM.
Just the operations the ledger engines need.

All methods are scoped by owner_id. A record belonging to another owner
is reported exactly like a missing one.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from pocket_ledger.models.audit import AuditEntityType, AuditLogEntry
from pocket_ledger.models.ledger import (
    BudgetMonth,
    Goal,
    Loan,
    LoanDirection,
    LoanStatus,
    Wallet,
)


class WalletStorageInterface(ABC):
    """
    Abstract interface for wallet storage.

    CRITICAL: every write that touches a balance also takes the audit
    entry describing it, and must persist both or neither.
    """

    @abstractmethod
    async def get_wallet(self, owner_id: str, wallet_id: str) -> Optional[Wallet]:
        """
        Retrieve a wallet by its ID.

        Returns:
            The wallet if found for this owner, None otherwise
        """
        pass

    @abstractmethod
    async def list_wallets(self, owner_id: str) -> list[Wallet]:
        """List the owner's wallets, by display order then creation time."""
        pass

    @abstractmethod
    async def create_wallet(self, wallet: Wallet, entry: AuditLogEntry) -> Wallet:
        """
        Insert a wallet together with its creation audit entry.

        Raises:
            DuplicateError: If the wallet ID already exists
            StorageError: If the pair could not be persisted
        """
        pass

    @abstractmethod
    async def update_wallet_details(self, wallet: Wallet, entry: AuditLogEntry) -> Wallet:
        """
        Persist non-balance fields of a wallet with their audit entry.

        The stored balance and version are left untouched.
        """
        pass

    @abstractmethod
    async def delete_wallet(self, owner_id: str, wallet_id: str, entry: AuditLogEntry) -> bool:
        """
        Delete a wallet and append its deletion entry.

        Returns:
            True if a wallet was deleted
        """
        pass

    @abstractmethod
    async def apply_balance_change(
        self,
        owner_id: str,
        wallet_id: str,
        expected_version: int,
        new_balance: Decimal,
        entry: AuditLogEntry,
    ) -> Wallet:
        """
        Atomically set a wallet's balance and append the audit entry.

        The write only happens if the stored version still equals
        expected_version; the version is then incremented.

        Returns:
            The wallet as stored after the change

        Raises:
            VersionConflictError: If the wallet changed since it was read
            StorageError: If the pair could not be persisted (nothing is written)
        """
        pass

    @abstractmethod
    async def clear_flag(self, owner_id: str, flag: str, except_wallet_id: Optional[str] = None) -> int:
        """
        Unset a per-owner exclusive flag (is_savings_wallet / is_default)
        on every wallet except one.

        Returns:
            Number of wallets changed
        """
        pass


class BudgetStorageInterface(ABC):
    """Abstract interface for budget month storage (transactions are embedded)."""

    @abstractmethod
    async def get_budget(self, owner_id: str, month: int, year: int) -> Optional[BudgetMonth]:
        """Retrieve the budget for one (month, year), or None."""
        pass

    @abstractmethod
    async def create_budget(self, budget: BudgetMonth) -> BudgetMonth:
        """
        Insert a new budget month.

        Raises:
            DuplicateError: If the owner already has a budget for that month
        """
        pass

    @abstractmethod
    async def save_budget(self, budget: BudgetMonth) -> BudgetMonth:
        """
        Replace a stored budget month (transactions included).

        Raises:
            StorageError: If the budget does not exist or the write fails
        """
        pass

    @abstractmethod
    async def set_rollover_actual(
        self,
        owner_id: str,
        month: int,
        year: int,
        rollover_actual: Decimal,
    ) -> bool:
        """
        Overwrite only the carried-in balance of one month.

        Returns:
            True if a budget was updated
        """
        pass

    @abstractmethod
    async def list_budgets(self, owner_id: str) -> list[BudgetMonth]:
        """All budget months of an owner, oldest first."""
        pass


class LoanStorageInterface(ABC):
    """Abstract interface for loan storage (payments and top-ups are embedded)."""

    @abstractmethod
    async def get_loan(self, owner_id: str, loan_id: str) -> Optional[Loan]:
        pass

    @abstractmethod
    async def find_active_loan(
        self,
        owner_id: str,
        person_name: str,
        direction: LoanDirection,
    ) -> Optional[Loan]:
        """Find the active loan for the same person and direction, if any."""
        pass

    @abstractmethod
    async def save_loan(self, loan: Loan) -> Loan:
        """Insert or replace a loan."""
        pass

    @abstractmethod
    async def delete_loan(self, owner_id: str, loan_id: str) -> bool:
        pass

    @abstractmethod
    async def list_loans(
        self,
        owner_id: str,
        status: Optional[LoanStatus] = None,
    ) -> list[Loan]:
        """List loans, newest first, optionally by status."""
        pass


class GoalStorageInterface(ABC):
    """Abstract interface for goal storage."""

    @abstractmethod
    async def get_goal(self, owner_id: str, goal_id: str) -> Optional[Goal]:
        pass

    @abstractmethod
    async def save_goal(self, goal: Goal) -> Goal:
        """Insert or replace a goal."""
        pass

    @abstractmethod
    async def delete_goal(self, owner_id: str, goal_id: str) -> bool:
        pass

    @abstractmethod
    async def list_goals(self, owner_id: str) -> list[Goal]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    Balance entries are appended by WalletStorageInterface together with
    the balance; this interface covers every other entry and all reads.
    """

    @abstractmethod
    async def append_entry(self, entry: AuditLogEntry) -> bool:
        """
        Append an audit entry to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_entries_by_entity(
        self,
        owner_id: str,
        entity_type: AuditEntityType,
        entity_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """
        Get entries for one entity in chronological order.

        Args:
            limit: Maximum number of entries, None for all
        """
        pass

    @abstractmethod
    async def get_recent_entries(
        self,
        owner_id: str,
        entity_type: Optional[AuditEntityType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """
        Get the most recent entries of an owner (newest first).
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class VersionConflictError(StorageError):
    """The record changed between read and compare-and-set write."""

    def __init__(self, entity_id: str, expected_version: int):
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Version conflict on {entity_id}: expected version {expected_version}"
        )

"""
In-Memory Storage Implementation

Used by the test-suite and by the CLI when no database is configured.

Every read returns a deep copy and every write stores one, so callers
can never mutate stored state by accident - the same isolation a real
database gives.

Balance writes are staged: the version is checked and the audit entry
appended before the wallet is swapped in. If appending fails nothing
is committed.
"""

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
    utc_now,
)
from pocket_ledger.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    DuplicateError,
    GoalStorageInterface,
    LoanStorageInterface,
    StorageError,
    VersionConflictError,
    WalletStorageInterface,
)


EXCLUSIVE_FLAGS = ("is_savings_wallet", "is_default")


class InMemoryStore:
    """
    Shared state behind the in-memory repositories.

    One store backs all five repositories so that wallet writes and
    audit appends land in the same place.
    """

    def __init__(self):
        self.wallets: dict[str, Wallet] = {}
        self.budgets: dict[str, BudgetMonth] = {}
        self.loans: dict[str, Loan] = {}
        self.goals: dict[str, Goal] = {}
        self.audit_entries: list[AuditLogEntry] = []

    def append_audit(self, entry: AuditLogEntry) -> None:
        """Append one entry. Tests override this to simulate a failing log."""
        self.audit_entries.append(entry)

    def _stage_audit(self, entry: AuditLogEntry) -> None:
        try:
            self.append_audit(entry)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to append audit entry: {e}") from e


class InMemoryWalletStorage(WalletStorageInterface):
    """Wallet repository over an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self._store = store

    def _owned(self, owner_id: str, wallet_id: str) -> Optional[Wallet]:
        wallet = self._store.wallets.get(wallet_id)
        if wallet is None or wallet.owner_id != owner_id:
            return None
        return wallet

    async def get_wallet(self, owner_id: str, wallet_id: str) -> Optional[Wallet]:
        wallet = self._owned(owner_id, wallet_id)
        return wallet.model_copy(deep=True) if wallet else None

    async def list_wallets(self, owner_id: str) -> list[Wallet]:
        wallets = [w for w in self._store.wallets.values() if w.owner_id == owner_id]
        wallets.sort(key=lambda w: (w.display_order is None, w.display_order or 0, w.created_at))
        return [w.model_copy(deep=True) for w in wallets]

    async def create_wallet(self, wallet: Wallet, entry: AuditLogEntry) -> Wallet:
        if wallet.id in self._store.wallets:
            raise DuplicateError(f"Wallet already exists: {wallet.id}")
        self._store._stage_audit(entry)
        self._store.wallets[wallet.id] = wallet.model_copy(deep=True)
        return wallet.model_copy(deep=True)

    async def update_wallet_details(self, wallet: Wallet, entry: AuditLogEntry) -> Wallet:
        stored = self._owned(wallet.owner_id, wallet.id)
        if stored is None:
            raise StorageError(f"Wallet not found: {wallet.id}")
        updated = wallet.model_copy(
            update={
                "balance": stored.balance,
                "version": stored.version,
                "updated_at": utc_now(),
            },
            deep=True,
        )
        self._store._stage_audit(entry)
        self._store.wallets[wallet.id] = updated
        return updated.model_copy(deep=True)

    async def delete_wallet(self, owner_id: str, wallet_id: str, entry: AuditLogEntry) -> bool:
        if self._owned(owner_id, wallet_id) is None:
            return False
        self._store._stage_audit(entry)
        del self._store.wallets[wallet_id]
        return True

    async def apply_balance_change(
        self,
        owner_id: str,
        wallet_id: str,
        expected_version: int,
        new_balance: Decimal,
        entry: AuditLogEntry,
    ) -> Wallet:
        stored = self._owned(owner_id, wallet_id)
        if stored is None or stored.version != expected_version:
            raise VersionConflictError(wallet_id, expected_version)

        updated = stored.model_copy(
            update={
                "balance": new_balance,
                "version": stored.version + 1,
                "updated_at": utc_now(),
            },
            deep=True,
        )
        # Audit first: a failure here leaves the wallet untouched
        self._store._stage_audit(entry)
        self._store.wallets[wallet_id] = updated
        return updated.model_copy(deep=True)

    async def clear_flag(self, owner_id: str, flag: str, except_wallet_id: Optional[str] = None) -> int:
        if flag not in EXCLUSIVE_FLAGS:
            raise ValueError(f"Not an exclusive wallet flag: {flag}")
        changed = 0
        for wallet_id, wallet in list(self._store.wallets.items()):
            if wallet.owner_id != owner_id or wallet_id == except_wallet_id:
                continue
            if getattr(wallet, flag):
                self._store.wallets[wallet_id] = wallet.model_copy(update={flag: False})
                changed += 1
        return changed


class InMemoryBudgetStorage(BudgetStorageInterface):
    """Budget month repository over an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self._store = store

    def _find(self, owner_id: str, month: int, year: int) -> Optional[BudgetMonth]:
        for budget in self._store.budgets.values():
            if budget.owner_id == owner_id and budget.month == month and budget.year == year:
                return budget
        return None

    async def get_budget(self, owner_id: str, month: int, year: int) -> Optional[BudgetMonth]:
        budget = self._find(owner_id, month, year)
        return budget.model_copy(deep=True) if budget else None

    async def create_budget(self, budget: BudgetMonth) -> BudgetMonth:
        if self._find(budget.owner_id, budget.month, budget.year) is not None:
            raise DuplicateError(
                f"Budget already exists for {budget.period.label}"
            )
        self._store.budgets[budget.id] = budget.model_copy(deep=True)
        return budget.model_copy(deep=True)

    async def save_budget(self, budget: BudgetMonth) -> BudgetMonth:
        stored = self._store.budgets.get(budget.id)
        if stored is None or stored.owner_id != budget.owner_id:
            raise StorageError(f"Budget not found: {budget.id}")
        updated = budget.model_copy(update={"updated_at": utc_now()}, deep=True)
        self._store.budgets[budget.id] = updated
        return updated.model_copy(deep=True)

    async def set_rollover_actual(
        self,
        owner_id: str,
        month: int,
        year: int,
        rollover_actual: Decimal,
    ) -> bool:
        budget = self._find(owner_id, month, year)
        if budget is None:
            return False
        self._store.budgets[budget.id] = budget.model_copy(
            update={"rollover_actual": rollover_actual, "updated_at": utc_now()}
        )
        return True

    async def list_budgets(self, owner_id: str) -> list[BudgetMonth]:
        budgets = [b for b in self._store.budgets.values() if b.owner_id == owner_id]
        budgets.sort(key=lambda b: (b.year, b.month))
        return [b.model_copy(deep=True) for b in budgets]


class InMemoryLoanStorage(LoanStorageInterface):
    """Loan repository over an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_loan(self, owner_id: str, loan_id: str) -> Optional[Loan]:
        loan = self._store.loans.get(loan_id)
        if loan is None or loan.owner_id != owner_id:
            return None
        return loan.model_copy(deep=True)

    async def find_active_loan(
        self,
        owner_id: str,
        person_name: str,
        direction: LoanDirection,
    ) -> Optional[Loan]:
        for loan in self._store.loans.values():
            if (
                loan.owner_id == owner_id
                and loan.person_name == person_name
                and loan.direction == direction
                and loan.status == LoanStatus.ACTIVE
            ):
                return loan.model_copy(deep=True)
        return None

    async def save_loan(self, loan: Loan) -> Loan:
        stored = self._store.loans.get(loan.id)
        if stored is not None and stored.owner_id != loan.owner_id:
            raise StorageError(f"Loan belongs to another owner: {loan.id}")
        self._store.loans[loan.id] = loan.model_copy(deep=True)
        return loan.model_copy(deep=True)

    async def delete_loan(self, owner_id: str, loan_id: str) -> bool:
        loan = self._store.loans.get(loan_id)
        if loan is None or loan.owner_id != owner_id:
            return False
        del self._store.loans[loan_id]
        return True

    async def list_loans(
        self,
        owner_id: str,
        status: Optional[LoanStatus] = None,
    ) -> list[Loan]:
        loans = [
            loan for loan in self._store.loans.values()
            if loan.owner_id == owner_id and (status is None or loan.status == status)
        ]
        loans.sort(key=lambda loan: loan.created_at, reverse=True)
        return [loan.model_copy(deep=True) for loan in loans]


class InMemoryGoalStorage(GoalStorageInterface):
    """Goal repository over an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def get_goal(self, owner_id: str, goal_id: str) -> Optional[Goal]:
        goal = self._store.goals.get(goal_id)
        if goal is None or goal.owner_id != owner_id:
            return None
        return goal.model_copy(deep=True)

    async def save_goal(self, goal: Goal) -> Goal:
        stored = self._store.goals.get(goal.id)
        if stored is not None and stored.owner_id != goal.owner_id:
            raise StorageError(f"Goal belongs to another owner: {goal.id}")
        self._store.goals[goal.id] = goal.model_copy(deep=True)
        return goal.model_copy(deep=True)

    async def delete_goal(self, owner_id: str, goal_id: str) -> bool:
        goal = self._store.goals.get(goal_id)
        if goal is None or goal.owner_id != owner_id:
            return False
        del self._store.goals[goal_id]
        return True

    async def list_goals(self, owner_id: str) -> list[Goal]:
        goals = [g for g in self._store.goals.values() if g.owner_id == owner_id]
        goals.sort(key=lambda g: g.created_at)
        return [g.model_copy(deep=True) for g in goals]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log over an InMemoryStore."""

    def __init__(self, store: InMemoryStore):
        self._store = store

    async def append_entry(self, entry: AuditLogEntry) -> bool:
        self._store._stage_audit(entry)
        return True

    async def get_entries_by_entity(
        self,
        owner_id: str,
        entity_type: AuditEntityType,
        entity_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        entries = [
            e for e in self._store.audit_entries
            if e.owner_id == owner_id
            and e.entity_type == entity_type
            and e.entity_id == entity_id
        ]
        end = None if limit is None else offset + limit
        return entries[offset:end]

    async def get_recent_entries(
        self,
        owner_id: str,
        entity_type: Optional[AuditEntityType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        entries = [
            e for e in reversed(self._store.audit_entries)
            if e.owner_id == owner_id
            and (entity_type is None or e.entity_type == entity_type)
        ]
        return entries[offset:offset + limit]

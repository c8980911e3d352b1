"""
Transaction Poster

Applies the side effects of creating, editing and deleting budget
transactions:
1. Wallet balances (through the WalletLedger)
2. Goal contributions for saving transactions
3. Rollover recomputation from the affected month forward

Effects per kind (actual amount A):

    income    wallet_id +A
    expense   wallet_id -A
    saving    wallet_id -A, to_wallet_id +A (when set, needs wallet_id), goal +A (when set)
    transfer  wallet_id -A, to_wallet_id +A (both required)

Everything that can be checked is checked before the first write. A
failure after money has moved raises ConsistencyError.
"""

from collections import defaultdict
from decimal import Decimal

import structlog

from pocket_ledger.audit import AuditTrail, create_correlation_id
from pocket_ledger.errors import (
    BudgetNotFoundError,
    ConsistencyError,
    InvalidAmountError,
    InvalidTransactionError,
    LedgerError,
    TransactionNotFoundError,
)
from pocket_ledger.goals import GoalTracker
from pocket_ledger.models.audit import AuditEntryBuilder
from pocket_ledger.models.ledger import (
    BudgetMonth,
    BudgetPeriod,
    Transaction,
    TransactionKind,
)
from pocket_ledger.models.reports import BalanceChange
from pocket_ledger.rollover import RolloverEngine
from pocket_ledger.services.storage import BudgetStorageInterface, DuplicateError, StorageError
from pocket_ledger.wallets import WalletLedger


def wallet_effects(transaction: Transaction) -> dict[str, Decimal]:
    """Signed balance change per wallet caused by one transaction."""
    effects: defaultdict[str, Decimal] = defaultdict(Decimal)
    amount = transaction.actual
    if amount == 0:
        return {}

    if transaction.kind == TransactionKind.INCOME:
        if transaction.wallet_id:
            effects[transaction.wallet_id] += amount
    else:
        if transaction.wallet_id:
            effects[transaction.wallet_id] -= amount
        if transaction.kind != TransactionKind.EXPENSE and transaction.to_wallet_id:
            effects[transaction.to_wallet_id] += amount

    return dict(effects)


def goal_effects(transaction: Transaction) -> dict[str, Decimal]:
    if transaction.kind == TransactionKind.SAVING and transaction.goal_id and transaction.actual:
        return {transaction.goal_id: transaction.actual}
    return {}


def _net(new: dict[str, Decimal], old: dict[str, Decimal]) -> dict[str, Decimal]:
    """new minus old, dropping keys that cancel out."""
    result: defaultdict[str, Decimal] = defaultdict(Decimal)
    for key, amount in new.items():
        result[key] += amount
    for key, amount in old.items():
        result[key] -= amount
    return {key: amount for key, amount in result.items() if amount != 0}


def _earliest(*periods: BudgetPeriod) -> BudgetPeriod:
    return min(periods, key=lambda p: (p.year, p.month))


class TransactionPoster:
    """
    Records, edits and deletes transactions together with their effects.

    Usage:
        poster = TransactionPoster(budgets, wallet_ledger, goal_tracker, rollover, audit)
        await poster.record(owner_id, transaction)
    """

    def __init__(
        self,
        budgets: BudgetStorageInterface,
        wallets: WalletLedger,
        goals: GoalTracker,
        rollover: RolloverEngine,
        audit: AuditTrail,
    ):
        self._budgets = budgets
        self._wallets = wallets
        self._goals = goals
        self._rollover = rollover
        self._audit = audit
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_budget(self, owner_id: str, month: int, year: int) -> BudgetMonth:
        budget = await self._budgets.get_budget(owner_id, month, year)
        if budget is None:
            raise BudgetNotFoundError(month, year)
        return budget

    async def list_transactions(self, owner_id: str, month: int, year: int) -> list[Transaction]:
        budget = await self._budgets.get_budget(owner_id, month, year)
        return list(budget.transactions) if budget else []

    # =========================================================================
    # WRITES
    # =========================================================================

    async def record(self, owner_id: str, transaction: Transaction) -> Transaction:
        """
        Add a transaction to the budget month of its date.

        Raises:
            InvalidTransactionError: a transfer without both wallets
            WalletNotFoundError / GoalNotFoundError: a referenced record is missing
            InsufficientFundsError: a debited wallet cannot cover the amount
            ConsistencyError: failure after wallet balances were changed
        """
        self._validate(transaction)
        period = BudgetPeriod.of(transaction.transaction_date)
        deltas = wallet_effects(transaction)
        goal_deltas = goal_effects(transaction)

        await self._prevalidate(owner_id, deltas, goal_deltas)
        budget, created = await self._get_or_create_budget(owner_id, period)

        correlation_id = create_correlation_id()
        changes = await self._wallets.apply_batch(
            owner_id,
            deltas,
            reason=f"Transaction: {transaction.name}",
            details={"transaction_id": transaction.id, "period": period.label},
            correlation_id=correlation_id,
        )

        budget.transactions.append(transaction)
        await self._persist(budget, changes, transaction.id)
        await self._apply_goals(owner_id, goal_deltas, changes, transaction.id)

        start = await self._chain_start(owner_id, period, created)
        await self._rollover.recompute_chain(owner_id, start.month, start.year)
        return transaction

    async def edit(
        self,
        owner_id: str,
        month: int,
        year: int,
        transaction_id: str,
        updated: Transaction,
    ) -> Transaction:
        """
        Replace a transaction, applying only the net change of its effects.

        The old effect is added back before the new one is checked, so
        raising an expense from 30 to 50 on a wallet holding 20 works.
        The transaction moves to another budget month if its date does.
        """
        budget = await self.get_budget(owner_id, month, year)
        original = budget.find_transaction(transaction_id)
        if original is None:
            raise TransactionNotFoundError(transaction_id)

        updated = updated.model_copy(update={"id": transaction_id})
        self._validate(updated)
        old_period = budget.period
        new_period = BudgetPeriod.of(updated.transaction_date)

        old_effects = wallet_effects(original)
        deltas = _net(wallet_effects(updated), old_effects)
        deltas = await self._drop_missing_wallets(owner_id, deltas, keep=set(wallet_effects(updated)))
        goal_deltas = _net(goal_effects(updated), goal_effects(original))
        goal_deltas = await self._drop_missing_goals(owner_id, goal_deltas, keep=set(goal_effects(updated)))

        await self._prevalidate(owner_id, deltas, goal_deltas)
        target, created = budget, False
        if new_period != old_period:
            target, created = await self._get_or_create_budget(owner_id, new_period)

        correlation_id = create_correlation_id()
        changes = await self._wallets.apply_batch(
            owner_id,
            deltas,
            reason=f"Transaction edited: {updated.name}",
            details={"transaction_id": transaction_id, "period": new_period.label},
            correlation_id=correlation_id,
        )

        if target is budget:
            budget.replace_transaction(updated)
            await self._persist(budget, changes, transaction_id)
        else:
            budget.remove_transaction(transaction_id)
            target.transactions.append(updated)
            await self._persist(target, changes, transaction_id)
            await self._persist(budget, changes, transaction_id, partial=True)
        await self._apply_goals(owner_id, goal_deltas, changes, transaction_id)

        start = _earliest(old_period, await self._chain_start(owner_id, new_period, created))
        await self._rollover.recompute_chain(owner_id, start.month, start.year)
        return updated

    async def delete(self, owner_id: str, month: int, year: int, transaction_id: str) -> Transaction:
        """Remove a transaction and reverse its effects."""
        budget = await self.get_budget(owner_id, month, year)
        transaction = budget.find_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)

        deltas = _net({}, wallet_effects(transaction))
        deltas = await self._drop_missing_wallets(owner_id, deltas, keep=set())
        goal_deltas = _net({}, goal_effects(transaction))
        goal_deltas = await self._drop_missing_goals(owner_id, goal_deltas, keep=set())

        await self._prevalidate(owner_id, deltas, goal_deltas)

        correlation_id = create_correlation_id()
        changes = await self._wallets.apply_batch(
            owner_id,
            deltas,
            reason=f"Transaction deleted: {transaction.name}",
            details={"transaction_id": transaction_id, "period": budget.period.label},
            correlation_id=correlation_id,
        )

        budget.remove_transaction(transaction_id)
        await self._persist(budget, changes, transaction_id)
        await self._apply_goals(owner_id, goal_deltas, changes, transaction_id)
        await self._audit.record(
            AuditEntryBuilder.transaction_deleted(budget, transaction, correlation_id=correlation_id)
        )

        await self._rollover.recompute_chain(owner_id, month, year)
        return transaction

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _validate(transaction: Transaction) -> None:
        if transaction.kind == TransactionKind.TRANSFER:
            if not transaction.wallet_id or not transaction.to_wallet_id:
                raise InvalidTransactionError("A transfer needs both a source and a target wallet")
        elif transaction.kind != TransactionKind.SAVING and transaction.to_wallet_id:
            raise InvalidTransactionError(
                f"A {transaction.kind.value} transaction cannot have a target wallet"
            )
        elif transaction.to_wallet_id and not transaction.wallet_id:
            raise InvalidTransactionError("A saving into a wallet needs a source wallet")
        if transaction.goal_id and transaction.kind != TransactionKind.SAVING:
            raise InvalidTransactionError("Only saving transactions can contribute to a goal")

    async def _prevalidate(
        self,
        owner_id: str,
        deltas: dict[str, Decimal],
        goal_deltas: dict[str, Decimal],
    ) -> None:
        for wallet_id, delta in deltas.items():
            await self._wallets.check_funds(owner_id, wallet_id, delta)
        for goal_id, delta in goal_deltas.items():
            goal = await self._goals.get_goal(owner_id, goal_id)
            if goal.current_amount + delta < 0:
                raise InvalidAmountError(
                    f"Goal '{goal.name}' has only {goal.current_amount} saved"
                )

    async def _drop_missing_wallets(
        self,
        owner_id: str,
        deltas: dict[str, Decimal],
        keep: set[str],
    ) -> dict[str, Decimal]:
        """Reversals against wallets that no longer exist are skipped."""
        result = {}
        for wallet_id, delta in deltas.items():
            if wallet_id not in keep and await self._wallets.find_wallet(owner_id, wallet_id) is None:
                self._logger.warning(
                    "wallet_missing_on_reversal",
                    owner_id=owner_id,
                    wallet_id=wallet_id,
                    change_amount=str(delta),
                )
                continue
            result[wallet_id] = delta
        return result

    async def _drop_missing_goals(
        self,
        owner_id: str,
        goal_deltas: dict[str, Decimal],
        keep: set[str],
    ) -> dict[str, Decimal]:
        result = {}
        for goal_id, delta in goal_deltas.items():
            if goal_id not in keep and await self._goals.find_goal(owner_id, goal_id) is None:
                self._logger.warning("goal_missing_on_reversal", owner_id=owner_id, goal_id=goal_id)
                continue
            result[goal_id] = delta
        return result

    async def _get_or_create_budget(
        self, owner_id: str, period: BudgetPeriod
    ) -> tuple[BudgetMonth, bool]:
        """The budget of a month and whether this call created it."""
        budget = await self._budgets.get_budget(owner_id, period.month, period.year)
        if budget is not None:
            return budget, False
        try:
            created = await self._budgets.create_budget(
                BudgetMonth(owner_id=owner_id, month=period.month, year=period.year)
            )
            return created, True
        except DuplicateError:
            return await self.get_budget(owner_id, period.month, period.year), False

    async def _chain_start(self, owner_id: str, period: BudgetPeriod, created: bool) -> BudgetPeriod:
        """A new month has no carried-in balance yet; walk from the month before it."""
        if not created:
            return period
        previous = period.preceding()
        if await self._budgets.get_budget(owner_id, previous.month, previous.year) is None:
            return period
        return previous

    async def _persist(
        self,
        budget: BudgetMonth,
        changes: list[BalanceChange],
        transaction_id: str,
        partial: bool = False,
    ) -> None:
        """Save a budget; a failure is a consistency failure once anything else was written."""
        try:
            await self._budgets.save_budget(budget)
        except StorageError as e:
            if not changes and not partial:
                raise
            self._consistency_failure(budget.owner_id, transaction_id, changes, e)

    async def _apply_goals(
        self,
        owner_id: str,
        goal_deltas: dict[str, Decimal],
        changes: list[BalanceChange],
        transaction_id: str,
    ) -> None:
        # The budget is already saved at this point
        for goal_id, delta in goal_deltas.items():
            try:
                await self._goals.contribute(owner_id, goal_id, delta)
            except (LedgerError, StorageError) as e:
                self._consistency_failure(owner_id, transaction_id, changes, e)

    def _consistency_failure(
        self,
        owner_id: str,
        transaction_id: str,
        changes: list[BalanceChange],
        error: Exception,
    ) -> None:
        self._logger.error(
            "ledger_consistency_failure",
            owner_id=owner_id,
            transaction_id=transaction_id,
            applied=[c.audit_entry_id for c in changes],
            error=str(error),
        )
        raise ConsistencyError(
            f"Transaction {transaction_id} was only partly applied: {error}",
            entity_id=transaction_id,
        ) from error

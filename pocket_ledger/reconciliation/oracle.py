"""
Reconciliation Oracle

Compares two independent views of an owner's money:

    stock  = sum of wallet balances
    flow   = sum of income - sum of expenses and savings (all months)

    discrepancy = stock - flow

A positive discrepancy is normally the money that existed before the
owner started tracking; anything else is drift. Transfers and savings
into another wallet move money between the owner's own wallets and do
not count as flow.

The oracle only reads. The DriftRepairer is the single, manually
triggered writer: it books a positive discrepancy as an opening-balance
income transaction.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import structlog

from pocket_ledger.audit import AuditTrail
from pocket_ledger.config import LedgerSettings, get_settings
from pocket_ledger.models.audit import AuditEntityType, AuditEntryBuilder
from pocket_ledger.models.ledger import (
    ZERO,
    BudgetMonth,
    BudgetPeriod,
    Transaction,
    TransactionKind,
    Wallet,
    WalletType,
)
from pocket_ledger.models.reports import DriftReport, WalletAuditCheck
from pocket_ledger.rollover import RolloverEngine
from pocket_ledger.services.storage import (
    BudgetStorageInterface,
    DuplicateError,
    WalletStorageInterface,
)


def _between_wallets(transaction: Transaction) -> bool:
    return bool(transaction.wallet_id and transaction.to_wallet_id)


class ReconciliationOracle:
    """Read-only drift diagnosis."""

    def __init__(
        self,
        wallets: WalletStorageInterface,
        budgets: BudgetStorageInterface,
        audit: AuditTrail,
    ):
        self._wallets = wallets
        self._budgets = budgets
        self._audit = audit
        self._logger = structlog.get_logger(__name__)

    async def diagnose(self, owner_id: str) -> DriftReport:
        wallets = await self._wallets.list_wallets(owner_id)
        budgets = await self._budgets.list_budgets(owner_id)

        total_wallets = sum((w.balance for w in wallets), ZERO)
        income = ZERO
        outflow = ZERO
        count = 0
        for budget in budgets:
            for transaction in budget.transactions:
                count += 1
                if transaction.kind == TransactionKind.INCOME:
                    income += transaction.actual
                elif transaction.kind == TransactionKind.EXPENSE:
                    outflow += transaction.actual
                elif transaction.kind == TransactionKind.SAVING and not _between_wallets(transaction):
                    outflow += transaction.actual

        net_flow = income - outflow
        report = DriftReport(
            owner_id=owner_id,
            total_wallet_balance=total_wallets,
            net_flow=net_flow,
            discrepancy=total_wallets - net_flow,
            total_income=income,
            total_outflow=outflow,
            wallet_count=len(wallets),
            transaction_count=count,
        )
        self._logger.info(
            "drift_diagnosed",
            owner_id=owner_id,
            status=report.status.value,
            total_wallet_balance=str(report.total_wallet_balance),
            net_flow=str(report.net_flow),
            discrepancy=str(report.discrepancy),
        )
        return report

    async def verify_audit_trail(self, owner_id: str) -> list[WalletAuditCheck]:
        """
        Check every wallet against its own audit history.

        A wallet is consistent when
        balance == initial_balance + sum of its balance_change amounts.
        """
        checks = []
        for wallet in await self._wallets.list_wallets(owner_id):
            entries = await self._audit.history(owner_id, AuditEntityType.WALLET, wallet.id)
            moves = [entry for entry in entries if entry.moves_balance]
            check = WalletAuditCheck(
                wallet_id=wallet.id,
                wallet_name=wallet.name,
                balance=wallet.balance,
                initial_balance=wallet.initial_balance,
                audited_change=sum((entry.change_amount for entry in moves), ZERO),
                entry_count=len(moves),
                last_entry_id=moves[-1].entry_id if moves else None,
            )
            if not check.is_consistent:
                self._logger.warning(
                    "wallet_audit_mismatch",
                    owner_id=owner_id,
                    wallet_id=wallet.id,
                    balance=str(check.balance),
                    expected_balance=str(check.expected_balance),
                    drift=str(check.drift),
                )
            checks.append(check)
        return checks


class DriftRepairer:
    """
    Books a positive discrepancy as an opening balance.

    Never runs automatically. Wallet balances are left untouched: the
    money is already in the wallets, only the flow side was missing it.
    """

    def __init__(
        self,
        oracle: ReconciliationOracle,
        wallets: WalletStorageInterface,
        budgets: BudgetStorageInterface,
        rollover: RolloverEngine,
        audit: AuditTrail,
        settings: Optional[LedgerSettings] = None,
    ):
        self._oracle = oracle
        self._wallets = wallets
        self._budgets = budgets
        self._rollover = rollover
        self._audit = audit
        self._settings = settings or get_settings().ledger
        self._logger = structlog.get_logger(__name__)

    async def record_opening_balance(
        self,
        owner_id: str,
        today: Optional[date] = None,
    ) -> Optional[Transaction]:
        """
        Insert a "Previous month's leftover" income equal to the discrepancy.

        Returns:
            The inserted transaction, or None when there is nothing to book
        """
        report = await self._oracle.diagnose(owner_id)
        if report.discrepancy <= 0:
            self._logger.info(
                "drift_repair_skipped",
                owner_id=owner_id,
                discrepancy=str(report.discrepancy),
            )
            return None

        today = today or date.today()
        wallet = self._pick_wallet(await self._wallets.list_wallets(owner_id))
        transaction = Transaction(
            name=self._settings.opening_balance_name,
            category=self._settings.opening_balance_category,
            kind=TransactionKind.INCOME,
            planned=ZERO,
            actual=report.discrepancy,
            transaction_date=today,
            wallet_id=wallet.id if wallet else None,
        )

        period = BudgetPeriod.of(today)
        budget, created = await self._get_or_create_budget(owner_id, period)
        budget.transactions.append(transaction)
        await self._budgets.save_budget(budget)

        await self._audit.record(
            AuditEntryBuilder.opening_balance_recorded(budget, transaction, report.discrepancy)
        )
        start = period
        previous = period.preceding()
        if created and await self._budgets.get_budget(owner_id, previous.month, previous.year):
            start = previous
        await self._rollover.recompute_chain(owner_id, start.month, start.year)
        return transaction

    @staticmethod
    def _pick_wallet(wallets: list[Wallet]) -> Optional[Wallet]:
        """The cash wallet if there is one, otherwise the first wallet."""
        for wallet in wallets:
            if wallet.type == WalletType.CASH:
                return wallet
        return wallets[0] if wallets else None

    async def _get_or_create_budget(
        self, owner_id: str, period: BudgetPeriod
    ) -> tuple[BudgetMonth, bool]:
        budget = await self._budgets.get_budget(owner_id, period.month, period.year)
        if budget is not None:
            return budget, False
        try:
            created = await self._budgets.create_budget(
                BudgetMonth(owner_id=owner_id, month=period.month, year=period.year)
            )
            return created, True
        except DuplicateError:
            return await self._budgets.get_budget(owner_id, period.month, period.year), False

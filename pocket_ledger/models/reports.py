"""
Result models returned by the ledger engines.

These are read-only views. Nothing here is persisted.
"""

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from pocket_ledger.models.ledger import BudgetPeriod, ZERO


class BalanceChange(BaseModel):
    """Outcome of one WalletLedger adjustment."""

    wallet_id: str
    previous_balance: Decimal
    new_balance: Decimal
    change_amount: Decimal
    audit_entry_id: str


class MonthSummary(BaseModel):
    """Income / expense / savings totals of one budget month."""

    month: int
    year: int
    starting_balance: Decimal = ZERO
    income: Decimal = ZERO
    expenses: Decimal = ZERO
    savings: Decimal = ZERO

    @property
    def ending_balance(self) -> Decimal:
        return self.starting_balance + self.income - self.expenses - self.savings

    @property
    def period(self) -> BudgetPeriod:
        return BudgetPeriod(self.month, self.year)


class ChainStopReason(str, Enum):
    """
    Why a rollover chain walk stopped.

    None of these is an error - propagation simply ends.
    """
    MISSING_START_MONTH = "missing_start_month"
    MISSING_NEXT_MONTH = "missing_next_month"
    HORIZON_REACHED = "horizon_reached"


class RolloverChainResult(BaseModel):
    """What one recompute_chain call looked at and changed."""

    owner_id: str
    start: BudgetPeriod
    summaries: list[MonthSummary] = Field(default_factory=list)
    updated_periods: list[BudgetPeriod] = Field(
        default_factory=list,
        description="Months whose rollover_actual was overwritten"
    )
    created_periods: list[BudgetPeriod] = Field(default_factory=list)
    stop_reason: ChainStopReason

    @property
    def months_visited(self) -> int:
        return len(self.summaries)


class DriftStatus(str, Enum):
    BALANCED = "balanced"
    DRIFT = "drift"


class DriftReport(BaseModel):
    """
    Wallet stock versus transaction flow for one owner.

    A nonzero discrepancy is expected to equal the money that existed
    before tracking began plus any unrepaired drift.
    """

    owner_id: str
    total_wallet_balance: Decimal
    net_flow: Decimal
    discrepancy: Decimal
    total_income: Decimal = ZERO
    total_outflow: Decimal = ZERO
    wallet_count: int = Field(default=0, ge=0)
    transaction_count: int = Field(default=0, ge=0)

    @property
    def status(self) -> DriftStatus:
        return DriftStatus.BALANCED if self.discrepancy == 0 else DriftStatus.DRIFT

    @property
    def has_drift(self) -> bool:
        return self.status == DriftStatus.DRIFT


class WalletAuditCheck(BaseModel):
    """Comparison of a wallet balance against its audit trail."""

    wallet_id: str
    wallet_name: str
    balance: Decimal
    initial_balance: Decimal
    audited_change: Decimal
    entry_count: int = Field(default=0, ge=0)
    last_entry_id: Optional[str] = None

    @property
    def expected_balance(self) -> Decimal:
        return self.initial_balance + self.audited_change

    @property
    def drift(self) -> Decimal:
        return self.balance - self.expected_balance

    @property
    def is_consistent(self) -> bool:
        return self.drift == 0

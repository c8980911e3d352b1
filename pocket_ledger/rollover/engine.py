"""
Rollover Engine

Each budget month carries in the previous month's ending balance
(rollover_actual). When a month changes, every following month's
carried-in balance may be stale, so the engine walks forward from the
changed month and rewrites them.

    end = rollover_actual + income - expenses - savings

Transfers move money between the owner's own wallets and take no part
in the arithmetic.

The walk is bounded by a horizon and stops at the first missing month.
Stopping is never an error: the result says why the walk ended.
"""

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Optional

import structlog

from pocket_ledger.config import LedgerSettings, get_settings
from pocket_ledger.errors import InvalidAmountError
from pocket_ledger.models.ledger import ZERO, BudgetMonth, BudgetPeriod, TransactionKind
from pocket_ledger.models.reports import ChainStopReason, MonthSummary, RolloverChainResult
from pocket_ledger.services.storage import BudgetStorageInterface, DuplicateError


def _sort_key(period: BudgetPeriod) -> tuple[int, int]:
    return period.year, period.month


def summarize_month(budget: BudgetMonth) -> MonthSummary:
    """Totals of one month, by transaction kind."""
    totals = {kind: ZERO for kind in TransactionKind}
    for transaction in budget.transactions:
        totals[transaction.kind] += transaction.actual

    return MonthSummary(
        month=budget.month,
        year=budget.year,
        starting_balance=budget.rollover_actual,
        income=totals[TransactionKind.INCOME],
        expenses=totals[TransactionKind.EXPENSE],
        savings=totals[TransactionKind.SAVING],
    )


class RolloverEngine:
    """
    Propagates month-end balances forward.

    Walks for the same owner are serialized so two recomputations never
    interleave their writes.
    """

    def __init__(
        self,
        budgets: BudgetStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._budgets = budgets
        self._settings = settings or get_settings().ledger
        self._owner_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._logger = structlog.get_logger(__name__)

    def summarize_month(self, budget: BudgetMonth) -> MonthSummary:
        return summarize_month(budget)

    async def recompute_chain(
        self,
        owner_id: str,
        start_month: int,
        start_year: int,
        horizon_months: Optional[int] = None,
    ) -> RolloverChainResult:
        """
        Recompute carried-in balances from (start_month, start_year) forward.

        The start month's own rollover_actual is taken as given. Running the
        walk twice in a row changes nothing the second time.

        Args:
            horizon_months: Maximum months to summarize (defaults to the
                            configured horizon, 36)

        Raises:
            InvalidAmountError: horizon_months below 1
        """
        if horizon_months is not None and horizon_months < 1:
            raise InvalidAmountError(
                f"Rollover horizon must be at least one month, got {horizon_months}"
            )
        horizon = (
            horizon_months if horizon_months is not None
            else self._settings.rollover_horizon_months
        )
        start = BudgetPeriod(start_month, start_year)

        async with self._owner_locks[owner_id]:
            result = await self._walk(owner_id, start, horizon)

        self._logger.info(
            "rollover_chain_stopped",
            owner_id=owner_id,
            start=start.label,
            reason=result.stop_reason.value,
            months_visited=result.months_visited,
            months_updated=len(result.updated_periods),
            months_created=len(result.created_periods),
        )
        return result

    async def _walk(self, owner_id: str, start: BudgetPeriod, horizon: int) -> RolloverChainResult:
        summaries: list[MonthSummary] = []
        updated: list[BudgetPeriod] = []
        created: list[BudgetPeriod] = []
        latest: Optional[BudgetPeriod] = None

        current = await self._budgets.get_budget(owner_id, start.month, start.year)
        if current is None:
            return RolloverChainResult(
                owner_id=owner_id,
                start=start,
                stop_reason=ChainStopReason.MISSING_START_MONTH,
            )

        for _ in range(horizon):
            summary = summarize_month(current)
            summaries.append(summary)
            end = summary.ending_balance

            following = current.period.following()
            next_budget = await self._budgets.get_budget(owner_id, following.month, following.year)

            if next_budget is None:
                if latest is None and self._settings.auto_create_next_month:
                    latest = await self._latest_period(owner_id)
                # Auto-create only fills gaps before the owner's latest month
                if latest is None or _sort_key(following) > _sort_key(latest):
                    return RolloverChainResult(
                        owner_id=owner_id,
                        start=start,
                        summaries=summaries,
                        updated_periods=updated,
                        created_periods=created,
                        stop_reason=ChainStopReason.MISSING_NEXT_MONTH,
                    )
                next_budget = await self._create_month(owner_id, following, end)
                created.append(following)

            elif next_budget.rollover_actual != end:
                await self._budgets.set_rollover_actual(
                    owner_id, following.month, following.year, end
                )
                next_budget = next_budget.model_copy(update={"rollover_actual": end})
                updated.append(following)

            current = next_budget

        return RolloverChainResult(
            owner_id=owner_id,
            start=start,
            summaries=summaries,
            updated_periods=updated,
            created_periods=created,
            stop_reason=ChainStopReason.HORIZON_REACHED,
        )

    async def _latest_period(self, owner_id: str) -> Optional[BudgetPeriod]:
        budgets = await self._budgets.list_budgets(owner_id)
        if not budgets:
            return None
        return max((b.period for b in budgets), key=_sort_key)

    async def _create_month(self, owner_id: str, period: BudgetPeriod, carried_in: Decimal) -> BudgetMonth:
        budget = BudgetMonth(
            owner_id=owner_id,
            month=period.month,
            year=period.year,
            rollover_actual=carried_in,
        )
        try:
            return await self._budgets.create_budget(budget)
        except DuplicateError:
            # Created concurrently by a transaction write; carry into it instead
            await self._budgets.set_rollover_actual(owner_id, period.month, period.year, carried_in)
            existing = await self._budgets.get_budget(owner_id, period.month, period.year)
            return existing or budget

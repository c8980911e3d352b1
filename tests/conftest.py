"""
Shared fixtures.

Every test runs on a fresh in-memory store; nothing talks to MongoDB.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from pocket_ledger.config import LedgerSettings
from pocket_ledger.models import BudgetMonth, Transaction, TransactionKind
from pocket_ledger.orchestrator import create_ledger_components


OWNER = "user-1"
OTHER_OWNER = "user-2"


def make_transaction(
    actual: str,
    kind: TransactionKind = TransactionKind.EXPENSE,
    on: date = date(2025, 3, 10),
    wallet_id: Optional[str] = None,
    to_wallet_id: Optional[str] = None,
    goal_id: Optional[str] = None,
    name: str = "Groceries",
    category: str = "Food",
) -> Transaction:
    return Transaction(
        name=name,
        category=category,
        kind=kind,
        planned=Decimal(actual),
        actual=Decimal(actual),
        transaction_date=on,
        wallet_id=wallet_id,
        to_wallet_id=to_wallet_id,
        goal_id=goal_id,
    )


def seed_budget(
    store,
    month: int,
    year: int,
    rollover_actual: str = "0",
    transactions: Optional[list[Transaction]] = None,
    owner_id: str = OWNER,
) -> BudgetMonth:
    """Put a budget month straight into the store, bypassing every engine."""
    budget = BudgetMonth(
        owner_id=owner_id,
        month=month,
        year=year,
        rollover_actual=Decimal(rollover_actual),
        transactions=transactions or [],
    )
    store.budgets[budget.id] = budget
    return budget


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        rollover_horizon_months=36,
        auto_create_next_month=False,
        income_categories="income,Paycheck,Bonus,Debt Added",
        savings_category="Savings",
        transfer_category="Transfer",
    )


@pytest.fixture
def components(ledger_settings):
    return create_ledger_components(backend="memory", ledger=ledger_settings)


@pytest.fixture
def store(components):
    return components.store

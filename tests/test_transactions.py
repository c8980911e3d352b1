"""
Tests for the TransactionPoster.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import OWNER, make_transaction, seed_budget
from pocket_ledger.errors import (
    ConsistencyError,
    InsufficientFundsError,
    InvalidTransactionError,
    TransactionNotFoundError,
    WalletNotFoundError,
)
from pocket_ledger.models import AuditChangeType, TransactionKind
from pocket_ledger.services.storage import StorageError
from pocket_ledger.transactions import wallet_effects


async def balance(components, wallet_id):
    return (await components.wallets.get_wallet(OWNER, wallet_id)).balance


class TestWalletEffects:
    """Which wallets a transaction moves."""

    def test_income_credits(self):
        txn = make_transaction("10", TransactionKind.INCOME, wallet_id="w1")
        assert wallet_effects(txn) == {"w1": Decimal("10")}

    def test_expense_debits(self):
        txn = make_transaction("10", wallet_id="w1")
        assert wallet_effects(txn) == {"w1": Decimal("-10")}

    def test_saving_moves_into_savings_wallet(self):
        txn = make_transaction("10", TransactionKind.SAVING, wallet_id="w1", to_wallet_id="w2")
        assert wallet_effects(txn) == {"w1": Decimal("-10"), "w2": Decimal("10")}

    def test_no_wallet_no_effect(self):
        assert wallet_effects(make_transaction("10")) == {}


class TestRecord:
    """Creating transactions."""

    @pytest.mark.asyncio
    async def test_expense_debits_wallet_and_creates_budget(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("100"))

        await components.transactions.record(OWNER, make_transaction("30", wallet_id=cash.id))

        assert await balance(components, cash.id) == Decimal("70")
        budget = await components.transactions.get_budget(OWNER, 3, 2025)
        assert len(budget.transactions) == 1

    @pytest.mark.asyncio
    async def test_insufficient_funds_writes_nothing(self, components, store):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("20"))

        with pytest.raises(InsufficientFundsError):
            await components.transactions.record(OWNER, make_transaction("50", wallet_id=cash.id))

        assert await balance(components, cash.id) == Decimal("20")
        assert await components.transactions.list_transactions(OWNER, 3, 2025) == []

    @pytest.mark.asyncio
    async def test_transfer_requires_both_wallets(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("20"))
        txn = make_transaction("5", TransactionKind.TRANSFER, wallet_id=cash.id)

        with pytest.raises(InvalidTransactionError):
            await components.transactions.record(OWNER, txn)

    @pytest.mark.asyncio
    async def test_saving_into_a_wallet_needs_a_source(self, components):
        vault = await components.wallets.open_wallet(OWNER, "Vault")
        txn = make_transaction("5", TransactionKind.SAVING, to_wallet_id=vault.id)

        with pytest.raises(InvalidTransactionError):
            await components.transactions.record(OWNER, txn)

        assert await balance(components, vault.id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_new_month_carries_in_previous_month_end(self, components, store):
        seed_budget(store, 3, 2025, transactions=[make_transaction("1000", TransactionKind.INCOME)])

        await components.transactions.record(OWNER, make_transaction("30", on=date(2025, 4, 2)))

        april = await components.repositories.budgets.get_budget(OWNER, 4, 2025)
        assert april.rollover_actual == Decimal("1000")

    @pytest.mark.asyncio
    async def test_transfer_moves_money_but_not_the_rollover(self, components, store):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("100"))
        bank = await components.wallets.open_wallet(OWNER, "Bank")
        seed_budget(store, 4, 2025)

        txn = make_transaction("60", TransactionKind.TRANSFER, wallet_id=cash.id, to_wallet_id=bank.id)
        await components.transactions.record(OWNER, txn)

        assert await balance(components, cash.id) == Decimal("40")
        assert await balance(components, bank.id) == Decimal("60")
        april = await components.repositories.budgets.get_budget(OWNER, 4, 2025)
        assert april.rollover_actual == Decimal("0")

    @pytest.mark.asyncio
    async def test_recording_recomputes_following_months(self, components, store):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("0"))
        seed_budget(store, 4, 2025)

        await components.transactions.record(
            OWNER, make_transaction("800", TransactionKind.INCOME, wallet_id=cash.id)
        )

        april = await components.repositories.budgets.get_budget(OWNER, 4, 2025)
        assert april.rollover_actual == Decimal("800")

    @pytest.mark.asyncio
    async def test_saving_with_goal_contributes(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("100"))
        goal = await components.goals.create_goal(OWNER, "Laptop", Decimal("500"))

        txn = make_transaction("40", TransactionKind.SAVING, wallet_id=cash.id, goal_id=goal.id)
        await components.transactions.record(OWNER, txn)

        assert (await components.goals.get_goal(OWNER, goal.id)).current_amount == Decimal("40")
        assert await balance(components, cash.id) == Decimal("60")

    @pytest.mark.asyncio
    async def test_budget_save_failure_after_debit_is_consistency_error(self, components, monkeypatch):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("100"))

        async def broken_save(budget):
            raise StorageError("write failed")

        monkeypatch.setattr(components.repositories.budgets, "save_budget", broken_save)

        with pytest.raises(ConsistencyError):
            await components.transactions.record(OWNER, make_transaction("30", wallet_id=cash.id))


class TestEdit:
    """Editing applies only the net change."""

    @pytest.mark.asyncio
    async def test_raising_an_expense_adds_back_the_original_first(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("50"))
        txn = await components.transactions.record(OWNER, make_transaction("30", wallet_id=cash.id))
        assert await balance(components, cash.id) == Decimal("20")

        await components.transactions.edit(
            OWNER, 3, 2025, txn.id, make_transaction("50", wallet_id=cash.id)
        )

        assert await balance(components, cash.id) == Decimal("0")
        budget = await components.transactions.get_budget(OWNER, 3, 2025)
        assert budget.transactions[0].actual == Decimal("50")
        assert budget.transactions[0].id == txn.id

    @pytest.mark.asyncio
    async def test_switching_wallets(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("50"))
        bank = await components.wallets.open_wallet(OWNER, "Bank", balance=Decimal("50"))
        txn = await components.transactions.record(OWNER, make_transaction("30", wallet_id=cash.id))

        await components.transactions.edit(
            OWNER, 3, 2025, txn.id, make_transaction("30", wallet_id=bank.id)
        )

        assert await balance(components, cash.id) == Decimal("50")
        assert await balance(components, bank.id) == Decimal("20")

    @pytest.mark.asyncio
    async def test_moving_to_another_month(self, components, store):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("50"))
        txn = await components.transactions.record(OWNER, make_transaction("30", wallet_id=cash.id))

        await components.transactions.edit(
            OWNER, 3, 2025, txn.id, make_transaction("30", wallet_id=cash.id, on=date(2025, 4, 2))
        )

        assert await components.transactions.list_transactions(OWNER, 3, 2025) == []
        moved = await components.transactions.list_transactions(OWNER, 4, 2025)
        assert [t.id for t in moved] == [txn.id]
        april = await components.repositories.budgets.get_budget(OWNER, 4, 2025)
        assert april.rollover_actual == Decimal("0")
        assert await balance(components, cash.id) == Decimal("20")

    @pytest.mark.asyncio
    async def test_moving_into_a_new_month_after_an_existing_one(self, components, store):
        seed_budget(store, 4, 2025, transactions=[
            make_transaction("200", TransactionKind.INCOME, on=date(2025, 4, 1)),
        ])
        txn = await components.transactions.record(OWNER, make_transaction("30"))

        await components.transactions.edit(
            OWNER, 3, 2025, txn.id, make_transaction("30", on=date(2025, 5, 3))
        )

        may = await components.repositories.budgets.get_budget(OWNER, 5, 2025)
        assert may.rollover_actual == Decimal("200")

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, components, store):
        seed_budget(store, 3, 2025)
        with pytest.raises(TransactionNotFoundError):
            await components.transactions.edit(OWNER, 3, 2025, "nope", make_transaction("1"))


class TestDelete:
    """Deleting reverses effects."""

    @pytest.mark.asyncio
    async def test_delete_refunds_wallet_and_audits(self, components, store):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("50"))
        txn = await components.transactions.record(OWNER, make_transaction("30", wallet_id=cash.id))

        await components.transactions.delete(OWNER, 3, 2025, txn.id)

        assert await balance(components, cash.id) == Decimal("50")
        assert await components.transactions.list_transactions(OWNER, 3, 2025) == []
        deleted = [e for e in store.audit_entries if e.change_type == AuditChangeType.TRANSACTION_DELETED]
        assert deleted[0].entity_id == txn.id

    @pytest.mark.asyncio
    async def test_delete_with_deleted_wallet_still_removes_transaction(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("50"))
        txn = await components.transactions.record(OWNER, make_transaction("30", wallet_id=cash.id))
        await components.wallets.close_wallet(OWNER, cash.id)

        await components.transactions.delete(OWNER, 3, 2025, txn.id)

        assert await components.transactions.list_transactions(OWNER, 3, 2025) == []

    @pytest.mark.asyncio
    async def test_deleting_income_needs_funds(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("0"))
        txn = await components.transactions.record(
            OWNER, make_transaction("30", TransactionKind.INCOME, wallet_id=cash.id)
        )
        await components.wallets.adjust(OWNER, cash.id, Decimal("-25"), "Spent elsewhere")

        with pytest.raises(InsufficientFundsError):
            await components.transactions.delete(OWNER, 3, 2025, txn.id)

    @pytest.mark.asyncio
    async def test_recording_against_missing_wallet(self, components):
        with pytest.raises(WalletNotFoundError):
            await components.transactions.record(OWNER, make_transaction("30", wallet_id="ghost"))

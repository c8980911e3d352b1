"""
Tests for drift diagnosis and repair.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import OWNER, make_transaction, seed_budget
from pocket_ledger.models import AuditChangeType, DriftStatus, TransactionKind, WalletType


class TestDiagnose:
    """Stock versus flow."""

    @pytest.mark.asyncio
    async def test_balanced_when_everything_went_through_transactions(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash")
        bank = await components.wallets.open_wallet(OWNER, "Bank")
        await components.transactions.record(
            OWNER, make_transaction("1000", TransactionKind.INCOME, wallet_id=cash.id)
        )
        await components.transactions.record(OWNER, make_transaction("300", wallet_id=cash.id))
        await components.transactions.record(
            OWNER, make_transaction("200", TransactionKind.TRANSFER, wallet_id=cash.id, to_wallet_id=bank.id)
        )

        report = await components.oracle.diagnose(OWNER)

        assert report.total_wallet_balance == Decimal("700")
        assert report.net_flow == Decimal("700")
        assert report.status == DriftStatus.BALANCED
        assert report.transaction_count == 3

    @pytest.mark.asyncio
    async def test_saving_into_another_wallet_is_not_flow(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash")
        vault = await components.wallets.open_wallet(OWNER, "Vault")
        await components.transactions.record(
            OWNER, make_transaction("1000", TransactionKind.INCOME, wallet_id=cash.id)
        )
        before = await components.oracle.diagnose(OWNER)

        await components.transactions.record(
            OWNER,
            make_transaction("100", TransactionKind.SAVING, wallet_id=cash.id, to_wallet_id=vault.id),
        )
        after = await components.oracle.diagnose(OWNER)

        assert before.discrepancy == after.discrepancy == Decimal("0")
        assert after.status == DriftStatus.BALANCED
        assert await components.repairer.record_opening_balance(OWNER) is None

    @pytest.mark.asyncio
    async def test_opening_balances_show_up_as_drift(self, components, store):
        await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("250"))
        seed_budget(store, 3, 2025, transactions=[
            make_transaction("100", TransactionKind.INCOME),
            make_transaction("40", TransactionKind.SAVING),
        ])

        report = await components.oracle.diagnose(OWNER)

        assert report.net_flow == Decimal("60")
        assert report.discrepancy == Decimal("190")
        assert report.has_drift


class TestVerifyAuditTrail:
    """Wallet balance against initial balance plus audited changes."""

    @pytest.mark.asyncio
    async def test_consistent_wallet(self, components):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("50"))
        await components.wallets.adjust(OWNER, cash.id, Decimal("25"), "Gift")
        await components.wallets.adjust(OWNER, cash.id, Decimal("-10"), "Snack")

        [check] = await components.oracle.verify_audit_trail(OWNER)

        assert check.expected_balance == Decimal("65")
        assert check.entry_count == 2
        assert check.is_consistent

    @pytest.mark.asyncio
    async def test_unaudited_write_is_reported(self, components, store):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("50"))
        store.wallets[cash.id] = store.wallets[cash.id].model_copy(update={"balance": Decimal("80")})

        [check] = await components.oracle.verify_audit_trail(OWNER)

        assert check.drift == Decimal("30")
        assert not check.is_consistent


class TestRepair:
    """Booking the opening balance."""

    @pytest.mark.asyncio
    async def test_nothing_to_book(self, components, store):
        await components.wallets.open_wallet(OWNER, "Cash")
        seed_budget(store, 3, 2025, transactions=[make_transaction("10", TransactionKind.INCOME)])

        assert await components.repairer.record_opening_balance(OWNER) is None
        assert len(store.budgets) == 1

    @pytest.mark.asyncio
    async def test_books_discrepancy_without_moving_money(self, components, store):
        await components.wallets.open_wallet(OWNER, "Bank", WalletType.BANK, Decimal("100"))
        cash = await components.wallets.open_wallet(OWNER, "Cash", WalletType.CASH, Decimal("150"))
        seed_budget(store, 4, 2025)

        txn = await components.repairer.record_opening_balance(OWNER, today=date(2025, 3, 15))

        assert txn.actual == Decimal("250")
        assert txn.kind == TransactionKind.INCOME
        assert txn.wallet_id == cash.id
        assert await components.wallets.total_balance(OWNER) == Decimal("250")
        assert (await components.oracle.diagnose(OWNER)).status == DriftStatus.BALANCED

        april = await components.repositories.budgets.get_budget(OWNER, 4, 2025)
        assert april.rollover_actual == Decimal("250")
        recorded = [e for e in store.audit_entries if e.change_type == AuditChangeType.OPENING_BALANCE_RECORDED]
        assert recorded[0].change_amount == Decimal("250")

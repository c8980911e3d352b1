"""
Tests for the LoanSettlementEngine.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import OWNER
from pocket_ledger.errors import (
    ConsistencyError,
    InsufficientFundsError,
    InvalidAmountError,
    LoanAlreadySettledError,
    PaymentNotFoundError,
)
from pocket_ledger.loans import LoanRequest
from pocket_ledger.models import AuditChangeType, AuditSeverity, LoanDirection, LoanStatus
from pocket_ledger.services.storage import StorageError


async def balance(components, wallet_id):
    return (await components.wallets.get_wallet(OWNER, wallet_id)).balance


def loan_entries(store, loan_id):
    return [e for e in store.audit_entries if e.entity_id == loan_id]


@pytest.fixture
def lend(components):
    async def _lend(amount, wallet_id=None, person="Sam", direction=LoanDirection.GIVEN, **kwargs):
        request = LoanRequest(
            person_name=person,
            direction=direction,
            amount=Decimal(amount),
            wallet_id=wallet_id,
            **kwargs,
        )
        return await components.loans.create_loan(OWNER, request)
    return _lend


class TestCreateLoan:
    """Opening and consolidating loans."""

    @pytest.mark.asyncio
    async def test_second_loan_to_same_person_is_a_top_up(self, components, store, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("500"))

        first = await lend("100", cash.id)
        second = await lend("50", cash.id, due_date=date(2025, 12, 31))

        assert second.id == first.id
        assert second.total_amount == Decimal("150")
        assert second.remaining_amount == Decimal("150")
        assert len(second.top_ups) == 2
        assert second.due_date == date(2025, 12, 31)
        assert len(await components.loans.list_loans(OWNER)) == 1
        assert await balance(components, cash.id) == Decimal("350")
        assert [e.change_type for e in loan_entries(store, first.id)] == [
            AuditChangeType.LOAN_CREATED,
            AuditChangeType.LOAN_UPDATED,
        ]

    @pytest.mark.asyncio
    async def test_other_direction_opens_a_separate_loan(self, components, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("500"))

        given = await lend("100", cash.id)
        received = await lend("70", cash.id, direction=LoanDirection.RECEIVED)

        assert given.id != received.id
        assert await balance(components, cash.id) == Decimal("470")

    @pytest.mark.asyncio
    async def test_lending_more_than_the_wallet_holds(self, components, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("20"))

        with pytest.raises(InsufficientFundsError):
            await lend("100", cash.id)

        assert await components.loans.list_loans(OWNER) == []

    @pytest.mark.asyncio
    async def test_amount_must_be_positive(self, lend):
        with pytest.raises(InvalidAmountError):
            await lend("0")

    @pytest.mark.asyncio
    async def test_save_failure_after_wallet_change(self, components, lend, monkeypatch):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("500"))

        async def broken_save(loan):
            raise StorageError("loans collection unavailable")

        monkeypatch.setattr(components.repositories.loans, "save_loan", broken_save)

        with pytest.raises(ConsistencyError):
            await lend("100", cash.id)


class TestPayments:
    """Repayment, settlement and reversal."""

    @pytest.mark.asyncio
    async def test_full_repayment_settles_and_removal_reopens(self, components, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("500"))
        loan = await lend("200", cash.id)

        loan = await components.loans.add_payment(OWNER, loan.id, Decimal("200"))

        assert loan.status == LoanStatus.SETTLED
        assert loan.remaining_amount == Decimal("0")
        assert await balance(components, cash.id) == Decimal("500")

        loan = await components.loans.remove_payment(OWNER, loan.id, loan.payments[0].id)

        assert loan.status == LoanStatus.ACTIVE
        assert loan.remaining_amount == Decimal("200")
        assert await balance(components, cash.id) == Decimal("300")

    @pytest.mark.asyncio
    async def test_partial_payment_is_audited(self, components, store, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("500"))
        loan = await lend("200", cash.id)

        loan = await components.loans.add_payment(OWNER, loan.id, Decimal("80"))

        assert loan.remaining_amount == Decimal("120")
        entry = loan_entries(store, loan.id)[-1]
        assert entry.change_type == AuditChangeType.LOAN_PAYMENT_ADDED
        assert entry.details["remaining_amount"] == "120"

    @pytest.mark.asyncio
    async def test_payment_exceeding_remaining_is_rejected(self, components, lend):
        loan = await lend("100")

        with pytest.raises(InvalidAmountError, match="exceeds remaining"):
            await components.loans.add_payment(OWNER, loan.id, Decimal("100.01"))

    @pytest.mark.asyncio
    async def test_payment_on_settled_loan(self, components, lend):
        loan = await lend("100")
        await components.loans.add_payment(OWNER, loan.id, Decimal("100"))

        with pytest.raises(LoanAlreadySettledError):
            await components.loans.add_payment(OWNER, loan.id, Decimal("1"))

    @pytest.mark.asyncio
    async def test_repaying_borrowed_money_needs_funds(self, components, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("0"))
        loan = await lend("100", cash.id, direction=LoanDirection.RECEIVED)
        await components.wallets.adjust(OWNER, cash.id, Decimal("-90"), "Spent")

        with pytest.raises(InsufficientFundsError):
            await components.loans.add_payment(OWNER, loan.id, Decimal("50"))

        loan = await components.loans.get_loan(OWNER, loan.id)
        assert loan.payments == []
        assert loan.remaining_amount == Decimal("100")

    @pytest.mark.asyncio
    async def test_payment_into_another_wallet(self, components, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("100"))
        bank = await components.wallets.open_wallet(OWNER, "Bank")
        loan = await lend("100", cash.id)

        loan = await components.loans.add_payment(OWNER, loan.id, Decimal("40"), wallet_id=bank.id)

        assert loan.payments[0].wallet_id == bank.id
        assert await balance(components, bank.id) == Decimal("40")
        assert await balance(components, cash.id) == Decimal("0")

    @pytest.mark.asyncio
    async def test_removing_payment_whose_wallet_is_gone(self, components, store, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("100"))
        loan = await lend("100", cash.id)
        loan = await components.loans.add_payment(OWNER, loan.id, Decimal("30"))
        await components.wallets.close_wallet(OWNER, cash.id)

        loan = await components.loans.remove_payment(OWNER, loan.id, loan.payments[0].id)

        assert loan.remaining_amount == Decimal("100")
        entry = loan_entries(store, loan.id)[-1]
        assert entry.change_type == AuditChangeType.LOAN_PAYMENT_REMOVED
        assert entry.details["wallet_missing"] is True
        assert entry.severity == AuditSeverity.WARNING

    @pytest.mark.asyncio
    async def test_unknown_payment(self, components, lend):
        loan = await lend("100")
        with pytest.raises(PaymentNotFoundError):
            await components.loans.remove_payment(OWNER, loan.id, "nope")


class TestDeleteLoan:
    """Deleting loans."""

    @pytest.mark.asyncio
    async def test_delete_active_loan_reverses_remaining(self, components, store, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("300"))
        loan = await lend("200", cash.id)
        await components.loans.add_payment(OWNER, loan.id, Decimal("50"))
        assert await balance(components, cash.id) == Decimal("150")

        await components.loans.delete_loan(OWNER, loan.id)

        assert await balance(components, cash.id) == Decimal("300")
        assert await components.loans.list_loans(OWNER) == []
        entry = loan_entries(store, loan.id)[-1]
        assert entry.change_type == AuditChangeType.LOAN_DELETED
        assert entry.details["reversed"] is True

    @pytest.mark.asyncio
    async def test_delete_settled_loan_leaves_wallet_alone(self, components, lend):
        cash = await components.wallets.open_wallet(OWNER, "Cash", balance=Decimal("300"))
        loan = await lend("200", cash.id)
        await components.loans.add_payment(OWNER, loan.id, Decimal("200"))

        await components.loans.delete_loan(OWNER, loan.id)

        assert await balance(components, cash.id) == Decimal("300")

    @pytest.mark.asyncio
    async def test_update_details_does_not_touch_amounts(self, components, lend):
        loan = await lend("200")

        loan = await components.loans.update_loan_details(OWNER, loan.id, person_name="Samuel")

        assert loan.person_name == "Samuel"
        assert loan.total_amount == Decimal("200")

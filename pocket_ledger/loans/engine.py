"""
Loan Settlement Engine

Tracks money lent to (given) or borrowed from (received) other people.

State machine:

    active --payment covers remaining--> settled
    settled --payment removed--> active

Wallet effects (all through the WalletLedger):

    create      given: debit      received: credit
    payment     given: credit     received: debit
    reversal    the opposite of the original effect

The wallet is always adjusted first. If the loan cannot be saved after
money has moved, ConsistencyError is raised.
"""

import asyncio
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from pocket_ledger.audit import AuditTrail, create_correlation_id
from pocket_ledger.errors import (
    ConsistencyError,
    InvalidAmountError,
    LoanAlreadySettledError,
    LoanNotFoundError,
    PaymentNotFoundError,
)
from pocket_ledger.models.audit import AuditChangeType, AuditEntryBuilder, AuditSeverity
from pocket_ledger.models.ledger import (
    Loan,
    LoanDirection,
    LoanPayment,
    LoanStatus,
    LoanTopUp,
    utc_now,
)
from pocket_ledger.models.reports import BalanceChange
from pocket_ledger.services.storage import LoanStorageInterface, StorageError
from pocket_ledger.wallets import WalletLedger


class LoanRequest(BaseModel):
    """Input for creating (or topping up) a loan."""
    model_config = ConfigDict(str_strip_whitespace=True)

    person_name: str = Field(..., min_length=1, max_length=200)
    direction: LoanDirection
    amount: Decimal = Field(..., description="Amount lent or borrowed")
    wallet_id: Optional[str] = Field(
        default=None,
        description="Wallet the money left (given) or arrived in (received)"
    )
    description: str = Field(default="", max_length=1000)
    lent_on: date = Field(default_factory=date.today)
    due_date: Optional[date] = None


def _lending_delta(direction: LoanDirection, amount: Decimal) -> Decimal:
    """Wallet effect of lending/borrowing: given debits, received credits."""
    return -amount if direction == LoanDirection.GIVEN else amount


class LoanSettlementEngine:
    """
    Loans, top-ups, payments and settlement.

    Usage:
        engine = LoanSettlementEngine(loan_storage, wallet_ledger, audit_trail)
        loan = await engine.create_loan(owner_id, LoanRequest(...))
        loan = await engine.add_payment(owner_id, loan.id, Decimal("50"))
    """

    def __init__(self, storage: LoanStorageInterface, wallets: WalletLedger, audit: AuditTrail):
        self._storage = storage
        self._wallets = wallets
        self._audit = audit
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._logger = structlog.get_logger(__name__)

    # =========================================================================
    # READS
    # =========================================================================

    async def get_loan(self, owner_id: str, loan_id: str) -> Loan:
        loan = await self._storage.get_loan(owner_id, loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    async def list_loans(self, owner_id: str, status: Optional[LoanStatus] = None) -> list[Loan]:
        return await self._storage.list_loans(owner_id, status=status)

    # =========================================================================
    # CREATE / CONSOLIDATE
    # =========================================================================

    async def create_loan(self, owner_id: str, request: LoanRequest) -> Loan:
        """
        Record money lent or borrowed.

        An active loan with the same person and direction absorbs the new
        amount as a top-up instead of a second loan being opened.
        """
        if request.amount <= 0:
            raise InvalidAmountError("Loan amount must be positive")

        # Serialize consolidation per counterparty
        async with self._locks[f"{owner_id}:{request.direction.value}:{request.person_name}"]:
            existing = await self._storage.find_active_loan(
                owner_id, request.person_name, request.direction
            )
            top_up = LoanTopUp(
                amount=request.amount,
                added_on=request.lent_on,
                timestamp=utc_now(),
                description=request.description or None,
                wallet_id=request.wallet_id,
            )

            if existing is not None:
                loan = existing
                loan.add_top_up(top_up)
                if request.due_date is not None:
                    loan.due_date = request.due_date
                change_type = AuditChangeType.LOAN_UPDATED
                summary = (
                    f"Added {request.amount} to existing loan. "
                    f"New total: {loan.total_amount} | Remaining: {loan.remaining_amount}"
                )
            else:
                loan = Loan(
                    owner_id=owner_id,
                    person_name=request.person_name,
                    direction=request.direction,
                    total_amount=request.amount,
                    remaining_amount=request.amount,
                    wallet_id=request.wallet_id,
                    description=request.description,
                    lent_on=request.lent_on,
                    due_date=request.due_date,
                    top_ups=[top_up],
                )
                change_type = AuditChangeType.LOAN_CREATED
                summary = f"Loan of {request.amount} recorded"

            correlation_id = create_correlation_id()
            change = None
            if request.wallet_id:
                verb = "given to" if request.direction == LoanDirection.GIVEN else "received from"
                change = await self._wallets.adjust(
                    owner_id,
                    request.wallet_id,
                    _lending_delta(request.direction, request.amount),
                    reason=f"Loan {verb} {request.person_name}",
                    details={"loan_id": loan.id, "top_up_id": top_up.id},
                    correlation_id=correlation_id,
                )

            loan = await self._save(loan, change)

        await self._audit.record(
            AuditEntryBuilder.loan_event(
                loan,
                change_type,
                request.amount,
                summary,
                details={"top_up_id": top_up.id, "wallet_id": request.wallet_id},
                correlation_id=correlation_id,
            )
        )
        return loan

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    async def add_payment(
        self,
        owner_id: str,
        loan_id: str,
        amount: Decimal,
        wallet_id: Optional[str] = None,
        paid_on: Optional[date] = None,
        note: Optional[str] = None,
    ) -> Loan:
        """
        Record a repayment.

        Raises:
            LoanAlreadySettledError: nothing is owed any more
            InvalidAmountError: amount not positive, or above what remains
            InsufficientFundsError: repaying a borrowed loan from a wallet that can't cover it
        """
        async with self._locks[loan_id]:
            loan = await self.get_loan(owner_id, loan_id)
            if loan.is_settled:
                raise LoanAlreadySettledError(loan_id)
            if amount <= 0:
                raise InvalidAmountError("Payment amount must be positive")
            if amount > loan.remaining_amount:
                raise InvalidAmountError(
                    f"Payment exceeds remaining amount ({loan.remaining_amount})"
                )

            wallet_id = wallet_id or loan.wallet_id
            payment = LoanPayment(
                amount=amount,
                paid_on=paid_on or date.today(),
                timestamp=utc_now(),
                wallet_id=wallet_id,
                note=note,
            )

            correlation_id = create_correlation_id()
            change = None
            if wallet_id:
                change = await self._wallets.adjust(
                    owner_id,
                    wallet_id,
                    -_lending_delta(loan.direction, amount),
                    reason=f"Loan payment: {loan.entity_name}",
                    details={"loan_id": loan.id, "payment_id": payment.id},
                    correlation_id=correlation_id,
                )

            loan.record_payment(payment)
            loan = await self._save(loan, change)

        change_type = (
            AuditChangeType.LOAN_SETTLED if loan.is_settled
            else AuditChangeType.LOAN_PAYMENT_ADDED
        )
        await self._audit.record(
            AuditEntryBuilder.loan_event(
                loan,
                change_type,
                amount,
                f"Payment of {amount} recorded. Remaining: {loan.remaining_amount}",
                details={"payment_id": payment.id, "wallet_id": wallet_id},
                correlation_id=correlation_id,
            )
        )
        return loan

    async def remove_payment(self, owner_id: str, loan_id: str, payment_id: str) -> Loan:
        """
        Undo a repayment; a settled loan becomes active again.

        The wallet effect is reversed if the wallet still exists.
        """
        async with self._locks[loan_id]:
            loan = await self.get_loan(owner_id, loan_id)
            payment = loan.find_payment(payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)

            correlation_id = create_correlation_id()
            change, wallet_missing = await self._reverse(
                owner_id,
                payment.wallet_id,
                _lending_delta(loan.direction, payment.amount),
                reason=f"Loan payment removed: {loan.entity_name}",
                details={"loan_id": loan.id, "payment_id": payment.id},
                correlation_id=correlation_id,
            )

            loan.revert_payment(payment_id)
            loan = await self._save(loan, change)

        details = {"payment_id": payment_id, "wallet_id": payment.wallet_id}
        if wallet_missing:
            details["wallet_missing"] = True
        await self._audit.record(
            AuditEntryBuilder.loan_event(
                loan,
                AuditChangeType.LOAN_PAYMENT_REMOVED,
                payment.amount,
                f"Payment of {payment.amount} removed. Remaining: {loan.remaining_amount}",
                details=details,
                severity=AuditSeverity.WARNING if wallet_missing else AuditSeverity.INFO,
                correlation_id=correlation_id,
            )
        )
        return loan

    # =========================================================================
    # DETAILS / DELETE
    # =========================================================================

    async def update_loan_details(
        self,
        owner_id: str,
        loan_id: str,
        person_name: Optional[str] = None,
        description: Optional[str] = None,
        due_date: Optional[date] = None,
    ) -> Loan:
        """Change descriptive fields. Amounts only change through payments and top-ups."""
        async with self._locks[loan_id]:
            loan = await self.get_loan(owner_id, loan_id)
            changes = []
            if person_name is not None and person_name.strip() != loan.person_name:
                loan.person_name = person_name.strip()
                changes.append("person_name")
            if description is not None and description != loan.description:
                loan.description = description
                changes.append("description")
            if due_date is not None and due_date != loan.due_date:
                loan.due_date = due_date
                changes.append("due_date")
            if not changes:
                return loan

            loan.updated_at = utc_now()
            loan = await self._storage.save_loan(loan)

        await self._audit.record(
            AuditEntryBuilder.loan_event(
                loan,
                AuditChangeType.LOAN_UPDATED,
                None,
                f"Updated {', '.join(changes)}",
                details={"changes": changes},
            )
        )
        return loan

    async def delete_loan(self, owner_id: str, loan_id: str) -> Loan:
        """
        Delete a loan.

        An active loan linked to a wallet first has its remaining amount
        reversed on that wallet.
        """
        async with self._locks[loan_id]:
            loan = await self.get_loan(owner_id, loan_id)

            correlation_id = create_correlation_id()
            change, wallet_missing = None, False
            if loan.status == LoanStatus.ACTIVE and loan.wallet_id and loan.remaining_amount > 0:
                change, wallet_missing = await self._reverse(
                    owner_id,
                    loan.wallet_id,
                    -_lending_delta(loan.direction, loan.remaining_amount),
                    reason=f"Loan deleted: {loan.entity_name}",
                    details={"loan_id": loan.id},
                    correlation_id=correlation_id,
                )

            try:
                deleted = await self._storage.delete_loan(owner_id, loan_id)
            except StorageError as e:
                if change is None:
                    raise
                self._consistency_failure(loan.id, change, e)
            if not deleted and change is not None:
                self._consistency_failure(loan.id, change, LoanNotFoundError(loan_id))
            if not deleted:
                raise LoanNotFoundError(loan_id)
        self._locks.pop(loan_id, None)

        details = {"wallet_id": loan.wallet_id, "reversed": change is not None}
        if wallet_missing:
            details["wallet_missing"] = True
        await self._audit.record(
            AuditEntryBuilder.loan_event(
                loan,
                AuditChangeType.LOAN_DELETED,
                loan.remaining_amount,
                f"Loan deleted with {loan.remaining_amount} outstanding",
                details=details,
                severity=AuditSeverity.WARNING,
                correlation_id=correlation_id,
            )
        )
        return loan

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _reverse(
        self,
        owner_id: str,
        wallet_id: Optional[str],
        delta: Decimal,
        reason: str,
        details: dict,
        correlation_id: str,
    ) -> tuple[Optional[BalanceChange], bool]:
        """
        Apply a reversal to a wallet that may have been deleted since.

        Returns:
            (the change or None, whether the wallet was missing)
        """
        if not wallet_id:
            return None, False
        if await self._wallets.find_wallet(owner_id, wallet_id) is None:
            self._logger.warning(
                "wallet_missing_on_reversal",
                owner_id=owner_id,
                wallet_id=wallet_id,
                change_amount=str(delta),
                loan_id=details.get("loan_id"),
            )
            return None, True

        change = await self._wallets.adjust(
            owner_id, wallet_id, delta, reason,
            details=details, correlation_id=correlation_id,
        )
        return change, False

    async def _save(self, loan: Loan, change: Optional[BalanceChange]) -> Loan:
        try:
            return await self._storage.save_loan(loan)
        except StorageError as e:
            if change is None:
                raise
            self._consistency_failure(loan.id, change, e)

    def _consistency_failure(self, loan_id: str, change: BalanceChange, error: Exception) -> None:
        self._logger.error(
            "ledger_consistency_failure",
            loan_id=loan_id,
            wallet_id=change.wallet_id,
            audit_entry_id=change.audit_entry_id,
            error=str(error),
        )
        raise ConsistencyError(
            f"Wallet {change.wallet_id} was adjusted but loan {loan_id} could not be saved: {error}",
            entity_id=loan_id,
        ) from error

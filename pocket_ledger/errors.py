"""
Ledger Errors

Every failure in the ledger core is synchronous and surfaced to the
immediate caller. Nothing here is retried automatically.

- NotFoundError: the record does not exist for this owner
- InvalidAmountError / InvalidTransactionError: user must correct input
- InsufficientFundsError: a debit would drive a wallet negative
- InvalidStateError: the operation is not allowed in the current state
- ConsistencyError: a balance and its audit trail could not be kept in step
"""

from decimal import Decimal
from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NotFoundError(LedgerError):
    """Record missing for the given owner."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found: {entity_id}")


class WalletNotFoundError(NotFoundError):
    def __init__(self, wallet_id: str):
        super().__init__("wallet", wallet_id)


class BudgetNotFoundError(NotFoundError):
    def __init__(self, month: int, year: int):
        super().__init__("budget", f"{month:02d}/{year}")


class TransactionNotFoundError(NotFoundError):
    def __init__(self, transaction_id: str):
        super().__init__("transaction", transaction_id)


class LoanNotFoundError(NotFoundError):
    def __init__(self, loan_id: str):
        super().__init__("loan", loan_id)


class PaymentNotFoundError(NotFoundError):
    def __init__(self, payment_id: str):
        super().__init__("payment", payment_id)


class GoalNotFoundError(NotFoundError):
    def __init__(self, goal_id: str):
        super().__init__("goal", goal_id)


class InvalidAmountError(LedgerError):
    """Amount is zero/negative or exceeds what is allowed."""
    pass


class InvalidTransactionError(LedgerError):
    """Transaction is missing something its kind requires."""
    pass


class InsufficientFundsError(LedgerError):
    """A debit would make the wallet balance negative."""

    def __init__(self, wallet_id: str, balance: Decimal, requested: Decimal):
        self.wallet_id = wallet_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient wallet balance: {balance} available, {requested} requested"
        )


class InvalidStateError(LedgerError):
    """Operation not allowed in the record's current state."""
    pass


class LoanAlreadySettledError(InvalidStateError):
    def __init__(self, loan_id: str):
        self.loan_id = loan_id
        super().__init__(f"Loan is already settled: {loan_id}")


class GoalTransitionError(InvalidStateError):
    pass


class ConsistencyError(LedgerError):
    """
    A balance mutation and its audit entry could not be kept in step,
    or a multi-step operation failed after part of it was persisted.
    """

    def __init__(self, message: str, entity_id: Optional[str] = None):
        self.entity_id = entity_id
        super().__init__(message)

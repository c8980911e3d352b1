"""
Core Ledger Models for Pocket Ledger

These models define the strict schemas for every document the ledger
engine reads or writes:
1. Wallets (authoritative balances)
2. Budget months and their transactions
3. Loans with payments and top-ups
4. Savings goals

DESIGN DECISION: Money is always Decimal. Binary floats drift, and a
ledger whose whole job is detecting drift cannot introduce its own.

DESIGN DECISION: A transaction's kind is an explicit enum. The category
is only a label for humans; no business rule looks at it.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import NamedTuple, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

ZERO = Decimal("0")


def new_id() -> str:
    """Generate a new record identifier."""
    return uuid4().hex


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class BudgetPeriod(NamedTuple):
    """A (month, year) pair identifying one budget month."""

    month: int
    year: int

    @classmethod
    def of(cls, day: date) -> "BudgetPeriod":
        return cls(day.month, day.year)

    def following(self) -> "BudgetPeriod":
        if self.month == 12:
            return BudgetPeriod(1, self.year + 1)
        return BudgetPeriod(self.month + 1, self.year)

    def preceding(self) -> "BudgetPeriod":
        if self.month == 1:
            return BudgetPeriod(12, self.year - 1)
        return BudgetPeriod(self.month - 1, self.year)

    @property
    def label(self) -> str:
        return f"{MONTH_NAMES[self.month - 1]} {self.year}"


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class WalletType(str, Enum):
    """Kinds of places money can sit."""
    CASH = "cash"
    BANK = "bank"
    CARD = "card"
    MFS = "mfs"  # Mobile financial service (bKash, Nagad, ...)
    OTHER = "other"


class TransactionKind(str, Enum):
    """
    What a transaction does to the money.

    INCOME and EXPENSE move money across the ledger boundary.
    SAVING is money set aside out of the month's budget.
    TRANSFER only moves money between the owner's own wallets and
    never takes part in income/expense or rollover arithmetic.
    """
    INCOME = "income"
    EXPENSE = "expense"
    SAVING = "saving"
    TRANSFER = "transfer"


class LoanDirection(str, Enum):
    """Who owes whom."""
    GIVEN = "given"        # We lent money, the person owes us
    RECEIVED = "received"  # We borrowed money, we owe the person


class LoanStatus(str, Enum):
    """
    Loan settlement state.

    Only two transitions exist:
    ACTIVE -> SETTLED when a payment covers the remaining amount,
    SETTLED -> ACTIVE when a payment is removed.
    """
    ACTIVE = "active"
    SETTLED = "settled"


class GoalStatus(str, Enum):
    """Savings goal lifecycle."""
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    ARCHIVED = "archived"


# =============================================================================
# WALLETS
# =============================================================================

class Wallet(BaseModel):
    """
    A wallet and its authoritative balance.

    CRITICAL: `balance` is only ever written by the WalletLedger, together
    with an audit entry. `version` is bumped on every balance write and is
    used as the compare-and-set guard against lost updates.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    type: WalletType = Field(default=WalletType.MFS)
    balance: Decimal = Field(default=ZERO)
    initial_balance: Decimal = Field(
        default=ZERO,
        description="Balance the wallet was opened with"
    )
    is_savings_wallet: bool = False
    is_default: bool = False
    display_order: Optional[int] = None
    description: str = Field(default="", max_length=500)
    version: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# BUDGETS & TRANSACTIONS
# =============================================================================

class Transaction(BaseModel):
    """
    A single budget line.

    `actual` is what really moved; `planned` is only used for budgeting
    screens and never touches balances.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Free-form label, display only"
    )
    kind: TransactionKind = Field(default=TransactionKind.EXPENSE)
    planned: Decimal = Field(default=ZERO, ge=0)
    actual: Decimal = Field(..., ge=0)
    transaction_date: date
    time_of_day: Optional[time] = None
    wallet_id: Optional[str] = Field(
        default=None,
        description="Source wallet (or the receiving wallet for income)"
    )
    to_wallet_id: Optional[str] = Field(
        default=None,
        description="Target wallet of a transfer"
    )
    goal_id: Optional[str] = None

    @model_validator(mode='after')
    def validate_wallets(self) -> 'Transaction':
        """A transaction cannot move money from a wallet into itself."""
        if self.wallet_id and self.to_wallet_id and self.wallet_id == self.to_wallet_id:
            raise ValueError("Source and target wallet must be different")
        return self


class BudgetMonth(BaseModel):
    """
    One owner's budget for one calendar month.

    Created lazily the first time a transaction lands in the month.
    The rollover fields are written only by the RolloverEngine.
    """

    id: str = Field(default_factory=new_id)
    owner_id: str = Field(..., min_length=1)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=1900, le=9999)
    rollover_planned: Decimal = Field(default=ZERO)
    rollover_actual: Decimal = Field(
        default=ZERO,
        description="Balance carried in from the previous month"
    )
    category_limits: dict[str, Decimal] = Field(default_factory=dict)
    transactions: list[Transaction] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def period(self) -> BudgetPeriod:
        return BudgetPeriod(self.month, self.year)

    def find_transaction(self, transaction_id: str) -> Optional[Transaction]:
        for transaction in self.transactions:
            if transaction.id == transaction_id:
                return transaction
        return None

    def replace_transaction(self, updated: Transaction) -> Transaction:
        """Swap in a new version of an existing transaction, returning the old one."""
        for index, transaction in enumerate(self.transactions):
            if transaction.id == updated.id:
                self.transactions[index] = updated
                return transaction
        raise KeyError(updated.id)

    def remove_transaction(self, transaction_id: str) -> Transaction:
        for index, transaction in enumerate(self.transactions):
            if transaction.id == transaction_id:
                return self.transactions.pop(index)
        raise KeyError(transaction_id)


# =============================================================================
# LOANS
# =============================================================================

class LoanPayment(BaseModel):
    """A repayment against a loan."""

    id: str = Field(default_factory=new_id)
    amount: Decimal = Field(..., gt=0)
    paid_on: date = Field(default_factory=date.today)
    timestamp: Optional[datetime] = None
    wallet_id: Optional[str] = Field(
        default=None,
        description="Wallet the repayment went into / came out of"
    )
    note: Optional[str] = Field(default=None, max_length=500)


class LoanTopUp(BaseModel):
    """An addition to a loan's principal (including the initial amount)."""

    id: str = Field(default_factory=new_id)
    amount: Decimal = Field(..., gt=0)
    added_on: date = Field(default_factory=date.today)
    timestamp: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=500)
    wallet_id: Optional[str] = None


class Loan(BaseModel):
    """
    Money lent to or borrowed from one person.

    INVARIANTS:
    - 0 <= remaining_amount <= total_amount
    - status is SETTLED exactly when remaining_amount is zero

    Mutate only through add_top_up / record_payment / revert_payment,
    which keep the invariants; they are re-checked when loading.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    owner_id: str = Field(..., min_length=1)
    person_name: str = Field(..., min_length=1, max_length=200)
    direction: LoanDirection
    total_amount: Decimal = Field(..., gt=0)
    remaining_amount: Decimal = Field(..., ge=0)
    status: LoanStatus = Field(default=LoanStatus.ACTIVE)
    wallet_id: Optional[str] = None
    description: str = Field(default="", max_length=1000)
    lent_on: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    payments: list[LoanPayment] = Field(default_factory=list)
    top_ups: list[LoanTopUp] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @model_validator(mode='after')
    def validate_bounds(self) -> 'Loan':
        """Enforce the remaining-amount bounds and the settled status rule."""
        if self.remaining_amount > self.total_amount:
            raise ValueError("Remaining amount cannot exceed total amount")
        if (self.status == LoanStatus.SETTLED) != (self.remaining_amount == 0):
            raise ValueError("Loan must be settled exactly when nothing remains")
        return self

    @property
    def is_settled(self) -> bool:
        return self.status == LoanStatus.SETTLED

    @property
    def entity_name(self) -> str:
        label = "Lent" if self.direction == LoanDirection.GIVEN else "Borrowed"
        return f"{self.person_name} ({label})"

    def find_payment(self, payment_id: str) -> Optional[LoanPayment]:
        for payment in self.payments:
            if payment.id == payment_id:
                return payment
        return None

    def add_top_up(self, top_up: LoanTopUp) -> None:
        self.top_ups.append(top_up)
        self.total_amount += top_up.amount
        self.remaining_amount += top_up.amount
        self.updated_at = utc_now()

    def record_payment(self, payment: LoanPayment) -> None:
        self.payments.append(payment)
        self.remaining_amount = max(self.remaining_amount - payment.amount, ZERO)
        self.status = LoanStatus.SETTLED if self.remaining_amount == 0 else LoanStatus.ACTIVE
        self.updated_at = utc_now()

    def revert_payment(self, payment_id: str) -> LoanPayment:
        payment = self.find_payment(payment_id)
        if payment is None:
            raise KeyError(payment_id)
        self.payments.remove(payment)
        self.remaining_amount = min(self.remaining_amount + payment.amount, self.total_amount)
        self.status = LoanStatus.ACTIVE
        self.updated_at = utc_now()
        return payment


# =============================================================================
# GOALS
# =============================================================================

class Goal(BaseModel):
    """A savings goal fed by saving transactions."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(default_factory=new_id)
    owner_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(default=ZERO, ge=0)
    color: Optional[str] = None
    status: GoalStatus = Field(default=GoalStatus.ACTIVE)
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

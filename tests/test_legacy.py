"""
Tests for reading documents written by the previous app version.
"""

from datetime import date
from decimal import Decimal

import pytest
from bson import Decimal128, ObjectId

from pocket_ledger.models import AuditLogEntry, BudgetMonth, Loan, TransactionKind, Wallet, WalletType
from pocket_ledger.services.storage.legacy import (
    LegacyDocumentError,
    infer_transaction_kind,
    is_legacy_document,
    normalize_audit_document,
    normalize_budget_document,
    normalize_loan_document,
    normalize_wallet_document,
    parse_month,
    to_decimal,
)


class TestToDecimal:
    """Money conversion."""

    def test_float_keeps_its_short_form(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal(19.99) == Decimal("19.99")

    def test_decimal128(self):
        assert to_decimal(Decimal128("12.34")) == Decimal("12.34")

    def test_garbage_is_rejected(self):
        with pytest.raises(LegacyDocumentError):
            to_decimal("twelve")
        with pytest.raises(LegacyDocumentError):
            to_decimal(True)


class TestInferKind:
    """Legacy type plus category to transaction kind."""

    @pytest.mark.parametrize("legacy_type,category,expected", [
        ("savings", "Savings", TransactionKind.TRANSFER),
        ("expense", "Savings", TransactionKind.SAVING),
        ("expense", "Food", TransactionKind.EXPENSE),
        ("transfer", "Transfer", TransactionKind.TRANSFER),
        (None, "Paycheck", TransactionKind.INCOME),
        (None, "Savings", TransactionKind.SAVING),
        (None, "Transfer", TransactionKind.TRANSFER),
        (None, "Rent", TransactionKind.EXPENSE),
    ])
    def test_mapping(self, ledger_settings, legacy_type, category, expected):
        assert infer_transaction_kind(legacy_type, category, ledger_settings) == expected

    def test_unknown_type(self, ledger_settings):
        with pytest.raises(LegacyDocumentError):
            infer_transaction_kind("gift", "Food", ledger_settings)


class TestParseMonth:
    def test_names_and_numbers(self):
        assert parse_month("March") == 3
        assert parse_month("december") == 12
        assert parse_month("7") == 7
        assert parse_month(11) == 11

    def test_unknown_name(self):
        with pytest.raises(LegacyDocumentError):
            parse_month("Smarch")


class TestNormalizeDocuments:
    """Whole documents in the legacy layout."""

    def test_budget_document(self, ledger_settings):
        oid = ObjectId()
        doc = {
            "_id": oid,
            "userId": "user-1",
            "month": "March",
            "year": 2025,
            "rolloverActual": 120.5,
            "__v": 3,
            "transactions": [
                {
                    "_id": "t1",
                    "name": "Emergency fund",
                    "category": "Savings",
                    "type": "expense",
                    "planned": 50,
                    "actual": 49.99,
                    "date": "2025-03-04T09:15:00.000Z",
                    "walletId": "",
                },
            ],
        }

        budget = BudgetMonth.model_validate(normalize_budget_document(doc, ledger_settings))

        assert budget.id == str(oid)
        assert budget.owner_id == "user-1"
        assert budget.month == 3
        assert budget.rollover_actual == Decimal("120.5")
        txn = budget.transactions[0]
        assert txn.id == "t1"
        assert txn.kind == TransactionKind.SAVING
        assert txn.actual == Decimal("49.99")
        assert txn.transaction_date == date(2025, 3, 4)
        assert txn.wallet_id is None

    def test_wallet_card_aliases(self):
        doc = {
            "_id": ObjectId(),
            "userId": "user-1",
            "name": "Visa",
            "type": "credit_card",
            "balance": 10.1,
            "isDefault": True,
            "icon": "card",
        }

        wallet = Wallet.model_validate(normalize_wallet_document(doc))

        assert wallet.type == WalletType.CARD
        assert wallet.balance == Decimal("10.1")
        assert wallet.is_default
        assert wallet.version == 0

    def test_loan_document(self):
        doc = {
            "_id": "loan-1",
            "userId": "user-1",
            "personName": "Sam",
            "direction": "given",
            "totalAmount": 100,
            "remainingAmount": 60,
            "status": "active",
            "date": "2025-01-02",
            "dueDate": "",
            "payments": [{"_id": "p", "amount": 40, "date": "2025-02-01T00:00:00Z", "walletId": "w1"}],
        }

        loan = Loan.model_validate(normalize_loan_document(doc))

        assert loan.person_name == "Sam"
        assert loan.lent_on == date(2025, 1, 2)
        assert loan.due_date is None
        assert loan.payments[0].paid_on == date(2025, 2, 1)
        assert loan.payments[0].wallet_id == "w1"
        assert loan.payments[0].id == "p"

    def test_audit_details_string(self):
        doc = {
            "_id": ObjectId(),
            "userId": "user-1",
            "entityType": "wallet",
            "entityId": "w1",
            "entityName": "Cash",
            "changeType": "balance_change",
            "previousBalance": 10,
            "newBalance": 15,
            "changeAmount": 5,
            "details": "Salary top-up",
        }

        entry = AuditLogEntry.model_validate(normalize_audit_document(doc))

        assert entry.details == {"text": "Salary top-up"}
        assert entry.change_amount == Decimal("5")
        assert entry.moves_balance

    def test_audit_details_json(self):
        doc = {"_id": "e1", "details": '{"loan_id": "l1"}'}
        assert normalize_audit_document(doc)["details"] == {"loan_id": "l1"}

    def test_current_documents_pass_through(self, ledger_settings):
        doc = normalize_budget_document(
            {"_id": "b1", "userId": "u", "month": "May", "year": 2024}, ledger_settings
        )
        assert not is_legacy_document(doc)
        assert normalize_budget_document(doc, ledger_settings) == doc

    def test_legacy_detection(self):
        assert is_legacy_document({"userId": "u"})
        assert is_legacy_document({"month": "May"})
        assert not is_legacy_document({"owner_id": "u", "month": 5})

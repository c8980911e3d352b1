"""
Legacy Document Normalization

Documents written by the previous version of the app use camelCase keys,
binary floats for money, month names instead of numbers and several
overlapping ways of saying "savings". Every raw document passes through
one of the normalize_* functions here before it becomes a model, so no
business rule ever sees the legacy shapes.

All functions are idempotent: a document that is already in the current
shape comes out unchanged.
"""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from bson import Decimal128, ObjectId

from pocket_ledger.config import LedgerSettings, get_settings
from pocket_ledger.models.ledger import MONTH_NAMES, TransactionKind


WALLET_TYPE_ALIASES = {
    "credit_card": "card",
    "debit_card": "card",
    "virtual_card": "card",
}

COMMON_KEYS = {
    "_id": "id",
    "userId": "owner_id",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

WALLET_KEYS = {
    "isSavingsWallet": "is_savings_wallet",
    "isDefault": "is_default",
    "initialBalance": "initial_balance",
    "displayOrder": "display_order",
}

BUDGET_KEYS = {
    "rolloverPlanned": "rollover_planned",
    "rolloverActual": "rollover_actual",
    "categoryLimits": "category_limits",
}

TRANSACTION_KEYS = {
    "_id": "id",
    "walletId": "wallet_id",
    "toWalletId": "to_wallet_id",
    "goalId": "goal_id",
    "date": "transaction_date",
    "time": "time_of_day",
}

LOAN_KEYS = {
    "personName": "person_name",
    "totalAmount": "total_amount",
    "remainingAmount": "remaining_amount",
    "walletId": "wallet_id",
    "date": "lent_on",
    "dueDate": "due_date",
    "topUps": "top_ups",
}

PAYMENT_KEYS = {"_id": "id", "walletId": "wallet_id", "date": "paid_on"}
TOP_UP_KEYS = {"_id": "id", "walletId": "wallet_id", "date": "added_on"}

GOAL_KEYS = {
    "targetAmount": "target_amount",
    "currentAmount": "current_amount",
    "completedAt": "completed_at",
}

AUDIT_KEYS = {
    "_id": "entry_id",
    "userId": "owner_id",
    "entityType": "entity_type",
    "entityId": "entity_id",
    "entityName": "entity_name",
    "changeType": "change_type",
    "previousBalance": "previous_balance",
    "newBalance": "new_balance",
    "changeAmount": "change_amount",
    "correlationId": "correlation_id",
}

DROPPED_KEYS = ("__v", "icon")


class LegacyDocumentError(ValueError):
    """A stored document cannot be interpreted."""
    pass


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert any stored money representation to Decimal.

    Floats go through their shortest string form so 0.1 stays 0.1.
    """
    if value is None or isinstance(value, Decimal):
        return value
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, bool):
        raise LegacyDocumentError(f"Not a money value: {value!r}")
    try:
        if isinstance(value, float):
            return Decimal(repr(value))
        return Decimal(str(value))
    except InvalidOperation as e:
        raise LegacyDocumentError(f"Not a money value: {value!r}") from e


def _rename(doc: dict, mapping: dict[str, str]) -> dict:
    """Copy a document, renaming legacy keys. Current keys win over legacy ones."""
    result = {}
    for key, value in doc.items():
        if key in DROPPED_KEYS:
            continue
        target = mapping.get(key, key)
        if target in result and target != key:
            continue
        result[target] = value
    return result


def _stringify_id(doc: dict, key: str = "id") -> None:
    if isinstance(doc.get(key), ObjectId):
        doc[key] = str(doc[key])


def _money_fields(doc: dict, *fields: str) -> None:
    for field in fields:
        if field in doc:
            doc[field] = to_decimal(doc[field])


def _date_part(value: Any) -> Any:
    """Legacy dates are ISO strings, sometimes with a time part."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in ("T", " "):
        return value[:10]
    return value


def parse_month(value: Any) -> int:
    """Accept a month number or an English month name."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.isdigit():
        return int(text)
    for index, name in enumerate(MONTH_NAMES, start=1):
        if name.lower() == text.lower():
            return index
    raise LegacyDocumentError(f"Unknown month: {value!r}")


def infer_transaction_kind(
    legacy_type: Optional[str],
    category: str,
    ledger: LedgerSettings,
) -> TransactionKind:
    """
    Decide the kind of a legacy transaction.

    The legacy "savings" type was an alias for transfer; an expense under
    the savings label was the old way of recording a saving.
    """
    if legacy_type == "savings":
        return TransactionKind.TRANSFER
    if legacy_type == "expense" and category == ledger.savings_category:
        return TransactionKind.SAVING
    if legacy_type in ("income", "expense", "transfer", "saving"):
        return TransactionKind(legacy_type)
    if legacy_type is not None:
        raise LegacyDocumentError(f"Unknown transaction type: {legacy_type!r}")

    if category in ledger.income_categories_set:
        return TransactionKind.INCOME
    if category == ledger.savings_category:
        return TransactionKind.SAVING
    if category == ledger.transfer_category:
        return TransactionKind.TRANSFER
    return TransactionKind.EXPENSE


def normalize_transaction_document(doc: dict, ledger: Optional[LedgerSettings] = None) -> dict:
    ledger = ledger or get_settings().ledger
    result = _rename(doc, TRANSACTION_KEYS)
    _stringify_id(result)

    legacy_type = result.pop("type", None)
    if "kind" not in result:
        result["kind"] = infer_transaction_kind(
            legacy_type, result.get("category", ""), ledger
        ).value

    _money_fields(result, "planned", "actual")
    if "transaction_date" in result:
        result["transaction_date"] = _date_part(result["transaction_date"])
    for key in ("wallet_id", "to_wallet_id", "goal_id", "time_of_day"):
        if result.get(key) == "":
            result[key] = None
    return result


def normalize_budget_document(doc: dict, ledger: Optional[LedgerSettings] = None) -> dict:
    ledger = ledger or get_settings().ledger
    result = _rename(doc, {**COMMON_KEYS, **BUDGET_KEYS})
    _stringify_id(result)

    if "month" in result:
        result["month"] = parse_month(result["month"])
    _money_fields(result, "rollover_planned", "rollover_actual")
    result["category_limits"] = {
        name: to_decimal(limit)
        for name, limit in (result.get("category_limits") or {}).items()
    }
    result["transactions"] = [
        normalize_transaction_document(txn, ledger)
        for txn in result.get("transactions") or []
    ]
    return result


def normalize_wallet_document(doc: dict) -> dict:
    result = _rename(doc, {**COMMON_KEYS, **WALLET_KEYS})
    _stringify_id(result)
    result.pop("color", None)

    wallet_type = result.get("type")
    if wallet_type in WALLET_TYPE_ALIASES:
        result["type"] = WALLET_TYPE_ALIASES[wallet_type]
    _money_fields(result, "balance", "initial_balance")
    if result.get("description") is None:
        result.pop("description", None)
    return result


def normalize_loan_document(doc: dict) -> dict:
    result = _rename(doc, {**COMMON_KEYS, **LOAN_KEYS})
    _stringify_id(result)

    _money_fields(result, "total_amount", "remaining_amount")
    for key in ("lent_on", "due_date"):
        if result.get(key) == "":
            result[key] = None
        elif key in result:
            result[key] = _date_part(result[key])
    if result.get("lent_on") is None:
        result.pop("lent_on", None)

    payments = []
    for payment in result.get("payments") or []:
        payment = _rename(payment, PAYMENT_KEYS)
        _stringify_id(payment)
        _money_fields(payment, "amount")
        payment["paid_on"] = _date_part(payment.get("paid_on"))
        payments.append(payment)
    result["payments"] = payments

    top_ups = []
    for top_up in result.get("top_ups") or []:
        top_up = _rename(top_up, TOP_UP_KEYS)
        _stringify_id(top_up)
        _money_fields(top_up, "amount")
        top_up["added_on"] = _date_part(top_up.get("added_on"))
        top_ups.append(top_up)
    result["top_ups"] = top_ups
    return result


def normalize_goal_document(doc: dict) -> dict:
    result = _rename(doc, {**COMMON_KEYS, **GOAL_KEYS})
    _stringify_id(result)
    _money_fields(result, "target_amount", "current_amount")
    return result


def normalize_audit_document(doc: dict) -> dict:
    result = _rename(doc, AUDIT_KEYS)
    _stringify_id(result, "entry_id")
    result.pop("id", None)
    _money_fields(result, "previous_balance", "new_balance", "change_amount")

    # Legacy details were a JSON string, or free text
    details = result.get("details")
    if details is None:
        result["details"] = {}
    elif isinstance(details, str):
        try:
            parsed = json.loads(details)
        except ValueError:
            parsed = {"text": details}
        result["details"] = parsed if isinstance(parsed, dict) else {"text": details}
    return result


def is_legacy_document(doc: dict) -> bool:
    """True when a stored document still uses the legacy key layout."""
    legacy_keys = set(COMMON_KEYS) - {"_id"}
    for mapping in (WALLET_KEYS, BUDGET_KEYS, LOAN_KEYS, GOAL_KEYS, AUDIT_KEYS):
        legacy_keys.update(key for key in mapping if key != "_id")
    return any(key in doc for key in legacy_keys) or isinstance(doc.get("month"), str)

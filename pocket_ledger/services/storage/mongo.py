"""
MongoDB Storage Implementation

DESIGN DECISION: MongoDB is the production backend because:
1. The existing data already lives there (wallets, budgets, loans, goals, auditlogs)
2. Multi-document transactions let a balance and its audit entry commit together
3. Embedded transactions/payments match how the data is read

TRADEOFFS:
- Transactions need a replica set (a single-node replica set is enough)
- Queries target the current document layout; run `python app/main.py migrate`
  once over legacy data so the owner/month filters match

Money is stored as Decimal128. Documents are normalized by the legacy
module on every read, so old and new layouts both load.
"""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Optional

from bson import Decimal128, ObjectId
from pydantic import BaseModel, ValidationError
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from tenacity import retry, stop_after_attempt, wait_exponential

from pocket_ledger.config import LedgerSettings, MongoSettings, get_settings
from pocket_ledger.models.audit import AuditEntityType, AuditLogEntry
from pocket_ledger.models.ledger import (
    BudgetMonth,
    Goal,
    Loan,
    LoanDirection,
    LoanStatus,
    Wallet,
    utc_now,
)
from pocket_ledger.services.storage.interface import (
    AuditStorageInterface,
    BudgetStorageInterface,
    ConnectionError,
    DuplicateError,
    GoalStorageInterface,
    LoanStorageInterface,
    StorageError,
    VersionConflictError,
    WalletStorageInterface,
)
from pocket_ledger.services.storage.legacy import (
    normalize_audit_document,
    normalize_budget_document,
    normalize_goal_document,
    normalize_loan_document,
    normalize_wallet_document,
)
from pocket_ledger.services.storage.memory import EXCLUSIVE_FLAGS


# Index specs per collection: [(keys, options), ...]
INDEX_SPECS = {
    "wallets": [
        ([("owner_id", ASCENDING)], {"name": "idx_wallet_owner"}),
    ],
    "budgets": [
        (
            [("owner_id", ASCENDING), ("year", ASCENDING), ("month", ASCENDING)],
            {
                "name": "idx_budget_period",
                "unique": True,
                # Unmigrated legacy budgets have no owner_id yet
                "partialFilterExpression": {"owner_id": {"$type": "string"}},
            },
        ),
    ],
    "loans": [
        ([("owner_id", ASCENDING), ("status", ASCENDING)], {"name": "idx_loan_status"}),
    ],
    "goals": [
        ([("owner_id", ASCENDING)], {"name": "idx_goal_owner"}),
    ],
    "audit": [
        ([("owner_id", ASCENDING), ("timestamp", DESCENDING)], {"name": "idx_audit_owner_time"}),
        ([("entity_id", ASCENDING), ("timestamp", DESCENDING)], {"name": "idx_audit_entity_time"}),
    ],
}


# =============================================================================
# DOCUMENT CONVERSION
# =============================================================================

def to_bson_value(value: Any) -> Any:
    """Convert a model_dump value into something BSON can store."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value
    if isinstance(value, (date, time)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_bson_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson_value(item) for item in value]
    return value


def from_bson_value(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: from_bson_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_bson_value(item) for item in value]
    return value


def to_document(model: BaseModel, id_field: str = "id") -> dict:
    """Model -> Mongo document, with the identifier stored as _id."""
    document = to_bson_value(model.model_dump())
    document["_id"] = document.pop(id_field)
    return document


def id_filter(record_id: str) -> dict:
    """
    Match a record by identifier.

    Legacy records use ObjectId keys; records created here use hex strings.
    """
    if ObjectId.is_valid(record_id):
        return {"_id": {"$in": [ObjectId(record_id), record_id]}}
    return {"_id": record_id}


def _load(model_cls: type[BaseModel], normalize: Callable[[dict], dict], document: dict):
    try:
        return model_cls.model_validate(normalize(from_bson_value(document)))
    except (ValidationError, ValueError) as e:
        raise StorageError(
            f"Stored {model_cls.__name__} {document.get('_id')} is invalid: {e}"
        ) from e


# =============================================================================
# CLIENT
# =============================================================================

class MongoLedgerClient:
    """
    Low-level MongoDB client wrapper.

    Handles connection and provides retry logic for the initial connect.
    Individual ledger writes are never retried.
    """

    def __init__(
        self,
        settings: Optional[MongoSettings] = None,
        client: Optional[MongoClient] = None,
    ):
        self._settings = settings or get_settings().mongo
        self._client: Optional[MongoClient] = client
        self._database: Optional[Database] = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> MongoClient:
        """
        Establish the connection and make sure the server answers.
        """
        if self._client is None:
            client = MongoClient(
                self._settings.uri,
                appname=self._settings.app_name,
                serverSelectionTimeoutMS=self._settings.server_selection_timeout_ms,
                tz_aware=True,
            )
            try:
                client.admin.command("ping")
            except PyMongoError as e:
                client.close()
                raise ConnectionError(f"Failed to connect to MongoDB: {e}")
            self._client = client

        return self._client

    def get_database(self) -> Database:
        if self._database is None:
            self._database = self.connect()[self._settings.database]
        return self._database

    def collection(self, key: str) -> Collection:
        """Get a collection by its logical name (wallets, budgets, loans, goals, audit)."""
        name = getattr(self._settings, f"{key}_collection")
        return self.get_database()[name]

    def start_session(self):
        return self.connect().start_session()

    def ensure_indexes(self) -> None:
        """Create the indexes the ledger queries rely on."""
        for key, index_list in INDEX_SPECS.items():
            collection = self.collection(key)
            for keys, options in index_list:
                collection.create_index(keys, **options)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._database = None


# =============================================================================
# WALLETS
# =============================================================================

class MongoWalletStorage(WalletStorageInterface):
    """
    Wallet storage on MongoDB.

    Every write that carries an audit entry runs in a multi-document
    transaction together with the audit insert.
    """

    def __init__(self, client: MongoLedgerClient):
        self._client = client

    @property
    def _wallets(self) -> Collection:
        return self._client.collection("wallets")

    @property
    def _audit(self) -> Collection:
        return self._client.collection("audit")

    def _find(self, owner_id: str, wallet_id: str, session=None) -> Optional[dict]:
        query = {**id_filter(wallet_id), "owner_id": owner_id}
        return self._wallets.find_one(query, session=session)

    async def get_wallet(self, owner_id: str, wallet_id: str) -> Optional[Wallet]:
        try:
            document = self._find(owner_id, wallet_id)
        except PyMongoError as e:
            raise StorageError(f"Failed to read wallet: {e}")
        return _load(Wallet, normalize_wallet_document, document) if document else None

    async def list_wallets(self, owner_id: str) -> list[Wallet]:
        try:
            documents = list(self._wallets.find({"owner_id": owner_id}))
        except PyMongoError as e:
            raise StorageError(f"Failed to list wallets: {e}")
        wallets = [_load(Wallet, normalize_wallet_document, doc) for doc in documents]
        wallets.sort(key=lambda w: (w.display_order is None, w.display_order or 0, w.created_at))
        return wallets

    async def create_wallet(self, wallet: Wallet, entry: AuditLogEntry) -> Wallet:
        try:
            with self._client.start_session() as session:
                with session.start_transaction():
                    self._wallets.insert_one(to_document(wallet), session=session)
                    self._audit.insert_one(to_document(entry, "entry_id"), session=session)
        except DuplicateKeyError:
            raise DuplicateError(f"Wallet already exists: {wallet.id}")
        except PyMongoError as e:
            raise StorageError(f"Failed to create wallet: {e}")
        return wallet

    async def update_wallet_details(self, wallet: Wallet, entry: AuditLogEntry) -> Wallet:
        fields = to_document(wallet)
        for key in ("_id", "owner_id", "balance", "version", "created_at"):
            fields.pop(key, None)
        fields["updated_at"] = utc_now()

        try:
            with self._client.start_session() as session:
                with session.start_transaction():
                    document = self._wallets.find_one_and_update(
                        {**id_filter(wallet.id), "owner_id": wallet.owner_id},
                        {"$set": fields},
                        return_document=ReturnDocument.AFTER,
                        session=session,
                    )
                    if document is None:
                        raise StorageError(f"Wallet not found: {wallet.id}")
                    self._audit.insert_one(to_document(entry, "entry_id"), session=session)
        except PyMongoError as e:
            raise StorageError(f"Failed to update wallet: {e}")
        return _load(Wallet, normalize_wallet_document, document)

    async def delete_wallet(self, owner_id: str, wallet_id: str, entry: AuditLogEntry) -> bool:
        try:
            with self._client.start_session() as session:
                with session.start_transaction():
                    result = self._wallets.delete_one(
                        {**id_filter(wallet_id), "owner_id": owner_id},
                        session=session,
                    )
                    if result.deleted_count == 0:
                        return False
                    self._audit.insert_one(to_document(entry, "entry_id"), session=session)
        except PyMongoError as e:
            raise StorageError(f"Failed to delete wallet: {e}")
        return True

    async def apply_balance_change(
        self,
        owner_id: str,
        wallet_id: str,
        expected_version: int,
        new_balance: Decimal,
        entry: AuditLogEntry,
    ) -> Wallet:
        """
        Compare-and-set the balance and insert the audit entry in one transaction.

        Legacy wallets have no version field; version 0 matches them too.
        """
        version_clause: dict = {"version": expected_version}
        if expected_version == 0:
            version_clause = {"$or": [{"version": 0}, {"version": {"$exists": False}}]}

        try:
            with self._client.start_session() as session:
                with session.start_transaction():
                    document = self._wallets.find_one_and_update(
                        {**id_filter(wallet_id), "owner_id": owner_id, **version_clause},
                        {
                            "$set": {
                                "balance": Decimal128(new_balance),
                                "version": expected_version + 1,
                                "updated_at": utc_now(),
                            },
                        },
                        return_document=ReturnDocument.AFTER,
                        session=session,
                    )
                    if document is None:
                        raise VersionConflictError(wallet_id, expected_version)
                    self._audit.insert_one(to_document(entry, "entry_id"), session=session)
        except PyMongoError as e:
            raise StorageError(f"Failed to apply balance change: {e}")
        return _load(Wallet, normalize_wallet_document, document)

    async def clear_flag(self, owner_id: str, flag: str, except_wallet_id: Optional[str] = None) -> int:
        if flag not in EXCLUSIVE_FLAGS:
            raise ValueError(f"Not an exclusive wallet flag: {flag}")
        query: dict = {"owner_id": owner_id, flag: True}
        if except_wallet_id is not None:
            excluded = id_filter(except_wallet_id)["_id"]
            ids = excluded["$in"] if isinstance(excluded, dict) else [excluded]
            query["_id"] = {"$nin": ids}
        try:
            result = self._wallets.update_many(query, {"$set": {flag: False}})
        except PyMongoError as e:
            raise StorageError(f"Failed to clear wallet flag: {e}")
        return result.modified_count


# =============================================================================
# BUDGETS
# =============================================================================

class MongoBudgetStorage(BudgetStorageInterface):
    """Budget months with embedded transactions."""

    def __init__(self, client: MongoLedgerClient, ledger: Optional[LedgerSettings] = None):
        self._client = client
        self._ledger = ledger or get_settings().ledger

    @property
    def _budgets(self) -> Collection:
        return self._client.collection("budgets")

    def _normalize(self, document: dict) -> dict:
        return normalize_budget_document(document, self._ledger)

    async def get_budget(self, owner_id: str, month: int, year: int) -> Optional[BudgetMonth]:
        try:
            document = self._budgets.find_one({"owner_id": owner_id, "month": month, "year": year})
        except PyMongoError as e:
            raise StorageError(f"Failed to read budget: {e}")
        return _load(BudgetMonth, self._normalize, document) if document else None

    async def create_budget(self, budget: BudgetMonth) -> BudgetMonth:
        try:
            self._budgets.insert_one(to_document(budget))
        except DuplicateKeyError:
            raise DuplicateError(f"Budget already exists for {budget.period.label}")
        except PyMongoError as e:
            raise StorageError(f"Failed to create budget: {e}")
        return budget

    async def save_budget(self, budget: BudgetMonth) -> BudgetMonth:
        budget = budget.model_copy(update={"updated_at": utc_now()})
        document = to_document(budget)
        document.pop("_id")
        try:
            result = self._budgets.replace_one(
                {**id_filter(budget.id), "owner_id": budget.owner_id},
                document,
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to save budget: {e}")
        if result.matched_count == 0:
            raise StorageError(f"Budget not found: {budget.id}")
        return budget

    async def set_rollover_actual(
        self,
        owner_id: str,
        month: int,
        year: int,
        rollover_actual: Decimal,
    ) -> bool:
        try:
            result = self._budgets.update_one(
                {"owner_id": owner_id, "month": month, "year": year},
                {"$set": {"rollover_actual": Decimal128(rollover_actual), "updated_at": utc_now()}},
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to update rollover: {e}")
        return result.matched_count > 0

    async def list_budgets(self, owner_id: str) -> list[BudgetMonth]:
        try:
            cursor = self._budgets.find({"owner_id": owner_id}).sort(
                [("year", ASCENDING), ("month", ASCENDING)]
            )
            documents = list(cursor)
        except PyMongoError as e:
            raise StorageError(f"Failed to list budgets: {e}")
        return [_load(BudgetMonth, self._normalize, doc) for doc in documents]


# =============================================================================
# LOANS
# =============================================================================

class MongoLoanStorage(LoanStorageInterface):

    def __init__(self, client: MongoLedgerClient):
        self._client = client

    @property
    def _loans(self) -> Collection:
        return self._client.collection("loans")

    async def get_loan(self, owner_id: str, loan_id: str) -> Optional[Loan]:
        try:
            document = self._loans.find_one({**id_filter(loan_id), "owner_id": owner_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to read loan: {e}")
        return _load(Loan, normalize_loan_document, document) if document else None

    async def find_active_loan(
        self,
        owner_id: str,
        person_name: str,
        direction: LoanDirection,
    ) -> Optional[Loan]:
        try:
            document = self._loans.find_one({
                "owner_id": owner_id,
                "person_name": person_name,
                "direction": direction.value,
                "status": LoanStatus.ACTIVE.value,
            })
        except PyMongoError as e:
            raise StorageError(f"Failed to find loan: {e}")
        return _load(Loan, normalize_loan_document, document) if document else None

    async def save_loan(self, loan: Loan) -> Loan:
        document = to_document(loan)
        document.pop("_id")
        try:
            self._loans.replace_one(
                {**id_filter(loan.id), "owner_id": loan.owner_id},
                document,
                upsert=True,
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to save loan: {e}")
        return loan

    async def delete_loan(self, owner_id: str, loan_id: str) -> bool:
        try:
            result = self._loans.delete_one({**id_filter(loan_id), "owner_id": owner_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to delete loan: {e}")
        return result.deleted_count > 0

    async def list_loans(
        self,
        owner_id: str,
        status: Optional[LoanStatus] = None,
    ) -> list[Loan]:
        query: dict = {"owner_id": owner_id}
        if status is not None:
            query["status"] = status.value
        try:
            documents = list(self._loans.find(query).sort("created_at", DESCENDING))
        except PyMongoError as e:
            raise StorageError(f"Failed to list loans: {e}")
        return [_load(Loan, normalize_loan_document, doc) for doc in documents]


# =============================================================================
# GOALS
# =============================================================================

class MongoGoalStorage(GoalStorageInterface):

    def __init__(self, client: MongoLedgerClient):
        self._client = client

    @property
    def _goals(self) -> Collection:
        return self._client.collection("goals")

    async def get_goal(self, owner_id: str, goal_id: str) -> Optional[Goal]:
        try:
            document = self._goals.find_one({**id_filter(goal_id), "owner_id": owner_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to read goal: {e}")
        return _load(Goal, normalize_goal_document, document) if document else None

    async def save_goal(self, goal: Goal) -> Goal:
        document = to_document(goal)
        document.pop("_id")
        try:
            self._goals.replace_one(
                {**id_filter(goal.id), "owner_id": goal.owner_id},
                document,
                upsert=True,
            )
        except PyMongoError as e:
            raise StorageError(f"Failed to save goal: {e}")
        return goal

    async def delete_goal(self, owner_id: str, goal_id: str) -> bool:
        try:
            result = self._goals.delete_one({**id_filter(goal_id), "owner_id": owner_id})
        except PyMongoError as e:
            raise StorageError(f"Failed to delete goal: {e}")
        return result.deleted_count > 0

    async def list_goals(self, owner_id: str) -> list[Goal]:
        try:
            documents = list(self._goals.find({"owner_id": owner_id}).sort("created_at", ASCENDING))
        except PyMongoError as e:
            raise StorageError(f"Failed to list goals: {e}")
        return [_load(Goal, normalize_goal_document, doc) for doc in documents]


# =============================================================================
# AUDIT
# =============================================================================

class MongoAuditStorage(AuditStorageInterface):
    """
    Audit log storage on MongoDB.

    Append-only: there is no update or delete here.
    """

    def __init__(self, client: MongoLedgerClient):
        self._client = client

    @property
    def _audit(self) -> Collection:
        return self._client.collection("audit")

    async def append_entry(self, entry: AuditLogEntry) -> bool:
        try:
            self._audit.insert_one(to_document(entry, "entry_id"))
        except PyMongoError as e:
            raise StorageError(f"Failed to append audit entry: {e}")
        return True

    async def get_entries_by_entity(
        self,
        owner_id: str,
        entity_type: AuditEntityType,
        entity_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        try:
            cursor = self._audit.find({
                "owner_id": owner_id,
                "entity_type": entity_type.value,
                "entity_id": entity_id,
            }).sort("timestamp", ASCENDING).skip(offset)
            if limit:
                cursor = cursor.limit(limit)
            documents = list(cursor)
        except PyMongoError as e:
            raise StorageError(f"Failed to read audit entries: {e}")
        return [_load(AuditLogEntry, normalize_audit_document, doc) for doc in documents]

    async def get_recent_entries(
        self,
        owner_id: str,
        entity_type: Optional[AuditEntityType] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        query: dict = {"owner_id": owner_id}
        if entity_type is not None:
            query["entity_type"] = entity_type.value
        try:
            cursor = self._audit.find(query).sort("timestamp", DESCENDING).skip(offset).limit(limit)
            documents = list(cursor)
        except PyMongoError as e:
            raise StorageError(f"Failed to read audit entries: {e}")
        return [_load(AuditLogEntry, normalize_audit_document, doc) for doc in documents]


# =============================================================================
# MIGRATION
# =============================================================================

def migrate_legacy_documents(
    client: MongoLedgerClient,
    ledger: Optional[LedgerSettings] = None,
    dry_run: bool = False,
) -> dict[str, int]:
    """
    Rewrite legacy documents in the current layout, in place.

    Each document keeps its original _id. Wallets without an opening
    balance get it from their wallet_created audit entry, or their
    current balance when no such entry exists.

    Returns:
        Number of rewritten documents per collection
    """
    from pocket_ledger.services.storage.legacy import is_legacy_document

    ledger = ledger or get_settings().ledger
    plan = [
        ("audit", AuditLogEntry, normalize_audit_document, "entry_id"),
        ("wallets", Wallet, normalize_wallet_document, "id"),
        ("budgets", BudgetMonth, lambda doc: normalize_budget_document(doc, ledger), "id"),
        ("loans", Loan, normalize_loan_document, "id"),
        ("goals", Goal, normalize_goal_document, "id"),
    ]
    counts: dict[str, int] = {}

    for key, model_cls, normalize, id_field in plan:
        collection = client.collection(key)
        rewritten = 0
        for document in collection.find({}):
            needs_backfill = key == "wallets" and "initial_balance" not in document
            if not is_legacy_document(document) and not needs_backfill:
                continue
            model = _load(model_cls, normalize, document)
            if needs_backfill and "initialBalance" not in document:
                model = model.model_copy(
                    update={"initial_balance": _opening_balance(client, model)}
                )
            replacement = to_document(model, id_field)
            replacement.pop("_id")
            if not dry_run:
                collection.replace_one({"_id": document["_id"]}, replacement)
            rewritten += 1
        counts[key] = rewritten

    return counts


def _opening_balance(client: MongoLedgerClient, wallet: Wallet) -> Decimal:
    created = client.collection("audit").find_one({
        "owner_id": wallet.owner_id,
        "entity_id": wallet.id,
        "change_type": "wallet_created",
    })
    if created and created.get("new_balance") is not None:
        return from_bson_value(created["new_balance"])
    return wallet.balance

"""
Ledger Orchestrator

Builds the repositories and engines once and wires them together:

    AuditTrail <- WalletLedger <- LoanSettlementEngine
                              <- TransactionPoster -> GoalTracker, RolloverEngine
    ReconciliationOracle (read-only) <- DriftRepairer

DESIGN DECISION: Dependencies are injected here and nowhere else. No
engine looks up a global model or connection, so the whole ledger can
run on in-memory storage in tests and on MongoDB in production.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from pocket_ledger.audit import AuditTrail
from pocket_ledger.config import LedgerSettings, get_settings
from pocket_ledger.goals import GoalTracker
from pocket_ledger.loans import LoanSettlementEngine
from pocket_ledger.reconciliation import DriftRepairer, ReconciliationOracle
from pocket_ledger.rollover import RolloverEngine
from pocket_ledger.services.storage import (
    AuditStorageInterface,
    BudgetStorageInterface,
    GoalStorageInterface,
    InMemoryAuditStorage,
    InMemoryBudgetStorage,
    InMemoryGoalStorage,
    InMemoryLoanStorage,
    InMemoryStore,
    InMemoryWalletStorage,
    LoanStorageInterface,
    MongoAuditStorage,
    MongoBudgetStorage,
    MongoGoalStorage,
    MongoLedgerClient,
    MongoLoanStorage,
    MongoWalletStorage,
    WalletStorageInterface,
)
from pocket_ledger.transactions import TransactionPoster
from pocket_ledger.wallets import WalletLedger


logger = structlog.get_logger(__name__)


@dataclass
class LedgerRepositories:
    wallets: WalletStorageInterface
    budgets: BudgetStorageInterface
    loans: LoanStorageInterface
    goals: GoalStorageInterface
    audit: AuditStorageInterface


@dataclass
class LedgerComponents:
    """Everything a caller needs to operate the ledger."""

    repositories: LedgerRepositories
    audit: AuditTrail
    wallets: WalletLedger
    rollover: RolloverEngine
    goals: GoalTracker
    transactions: TransactionPoster
    loans: LoanSettlementEngine
    oracle: ReconciliationOracle
    repairer: DriftRepairer
    mongo_client: Optional[MongoLedgerClient] = None
    store: Optional[InMemoryStore] = None


def build_memory_repositories(store: Optional[InMemoryStore] = None) -> tuple[LedgerRepositories, InMemoryStore]:
    store = store or InMemoryStore()
    repositories = LedgerRepositories(
        wallets=InMemoryWalletStorage(store),
        budgets=InMemoryBudgetStorage(store),
        loans=InMemoryLoanStorage(store),
        goals=InMemoryGoalStorage(store),
        audit=InMemoryAuditStorage(store),
    )
    return repositories, store


def build_mongo_repositories(
    client: MongoLedgerClient,
    ledger: Optional[LedgerSettings] = None,
) -> LedgerRepositories:
    return LedgerRepositories(
        wallets=MongoWalletStorage(client),
        budgets=MongoBudgetStorage(client, ledger),
        loans=MongoLoanStorage(client),
        goals=MongoGoalStorage(client),
        audit=MongoAuditStorage(client),
    )


def assemble(
    repositories: LedgerRepositories,
    ledger: Optional[LedgerSettings] = None,
) -> LedgerComponents:
    """Wire engines on top of an existing set of repositories."""
    ledger = ledger or get_settings().ledger

    audit = AuditTrail(repositories.audit)
    wallets = WalletLedger(repositories.wallets, audit)
    rollover = RolloverEngine(repositories.budgets, ledger)
    goals = GoalTracker(repositories.goals, audit)
    transactions = TransactionPoster(repositories.budgets, wallets, goals, rollover, audit)
    loans = LoanSettlementEngine(repositories.loans, wallets, audit)
    oracle = ReconciliationOracle(repositories.wallets, repositories.budgets, audit)
    repairer = DriftRepairer(
        oracle, repositories.wallets, repositories.budgets, rollover, audit, ledger
    )

    return LedgerComponents(
        repositories=repositories,
        audit=audit,
        wallets=wallets,
        rollover=rollover,
        goals=goals,
        transactions=transactions,
        loans=loans,
        oracle=oracle,
        repairer=repairer,
    )


def create_ledger_components(
    backend: Optional[str] = None,
    ledger: Optional[LedgerSettings] = None,
    store: Optional[InMemoryStore] = None,
    mongo_client: Optional[MongoLedgerClient] = None,
) -> LedgerComponents:
    """
    Factory function to create all ledger components.

    Args:
        backend: "memory" or "mongo"; defaults to the configured storage_backend
        store: Existing in-memory store to reuse (memory backend only)
        mongo_client: Existing client to reuse (mongo backend only)

    Raises:
        ConnectionError: The mongo backend is selected but unreachable.
                         There is no silent fallback to memory.
    """
    backend = backend or get_settings().app.storage_backend

    if backend == "mongo":
        client = mongo_client or MongoLedgerClient()
        client.connect()
        components = assemble(build_mongo_repositories(client, ledger), ledger)
        components.mongo_client = client
    elif backend == "memory":
        repositories, store = build_memory_repositories(store)
        components = assemble(repositories, ledger)
        components.store = store
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    logger.info("ledger_components_created", backend=backend)
    return components

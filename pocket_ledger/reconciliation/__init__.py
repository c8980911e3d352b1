"""Drift diagnosis and manual repair."""

from pocket_ledger.reconciliation.oracle import DriftRepairer, ReconciliationOracle

__all__ = ["DriftRepairer", "ReconciliationOracle"]

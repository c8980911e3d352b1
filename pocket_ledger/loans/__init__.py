"""Loans and their settlement."""

from pocket_ledger.loans.engine import LoanRequest, LoanSettlementEngine

__all__ = ["LoanRequest", "LoanSettlementEngine"]

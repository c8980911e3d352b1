"""Wallet balances package."""

from pocket_ledger.wallets.ledger import WalletLedger

__all__ = ["WalletLedger"]

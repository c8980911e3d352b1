"""
Pocket Ledger - Ledger Consistency Engine

Keeps derived money state (wallet balances, monthly rollovers, loan
remaining amounts) consistent with the append-only record of
transactions, payments and top-ups.

DESIGN PRINCIPLES:
1. Every balance change has exactly one audit entry
2. Fail early, fail visibly
3. No silent corrections - drift is reported, repair is manual
4. Derived values are recomputed forward, never patched locally
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pocket Ledger Team"

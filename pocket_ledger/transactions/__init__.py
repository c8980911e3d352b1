"""Budget transaction side effects."""

from pocket_ledger.transactions.poster import TransactionPoster, goal_effects, wallet_effects

__all__ = ["TransactionPoster", "goal_effects", "wallet_effects"]

"""Month-to-month balance propagation."""

from pocket_ledger.rollover.engine import RolloverEngine, summarize_month

__all__ = ["RolloverEngine", "summarize_month"]

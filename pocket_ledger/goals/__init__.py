"""Savings goals package."""

from pocket_ledger.goals.tracker import GoalTracker

__all__ = ["GoalTracker"]

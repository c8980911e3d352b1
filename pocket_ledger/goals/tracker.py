"""
Goal Tracker

Savings goals are fed by saving transactions that name a goal.

    active --fulfil--> fulfilled --reactivate--> active
    active --archive--> archived --reactivate--> active
    fulfilled --archive--> archived
"""

import asyncio
from collections import defaultdict
from decimal import Decimal
from typing import Optional

import structlog

from pocket_ledger.audit import AuditTrail
from pocket_ledger.errors import GoalNotFoundError, GoalTransitionError, InvalidAmountError
from pocket_ledger.models.audit import AuditChangeType, AuditEntryBuilder
from pocket_ledger.models.ledger import Goal, GoalStatus, utc_now
from pocket_ledger.services.storage import GoalStorageInterface


class GoalTracker:
    """Goal contributions and status transitions."""

    def __init__(self, storage: GoalStorageInterface, audit: AuditTrail):
        self._storage = storage
        self._audit = audit
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._logger = structlog.get_logger(__name__)

    async def find_goal(self, owner_id: str, goal_id: str) -> Optional[Goal]:
        return await self._storage.get_goal(owner_id, goal_id)

    async def get_goal(self, owner_id: str, goal_id: str) -> Goal:
        goal = await self._storage.get_goal(owner_id, goal_id)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        return goal

    async def list_goals(self, owner_id: str) -> list[Goal]:
        return await self._storage.list_goals(owner_id)

    async def create_goal(
        self,
        owner_id: str,
        name: str,
        target_amount: Decimal,
        color: Optional[str] = None,
    ) -> Goal:
        if target_amount <= 0:
            raise InvalidAmountError("Goal target must be positive")

        goal = await self._storage.save_goal(
            Goal(owner_id=owner_id, name=name, target_amount=target_amount, color=color)
        )
        await self._audit.record(AuditEntryBuilder.goal_event(goal, AuditChangeType.GOAL_CREATED))
        return goal

    async def contribute(self, owner_id: str, goal_id: str, delta: Decimal) -> Goal:
        """
        Add (or, when negative, take back) money saved towards a goal.

        Raises:
            InvalidAmountError: the goal's saved amount would go below zero
        """
        async with self._locks[goal_id]:
            goal = await self.get_goal(owner_id, goal_id)
            new_amount = goal.current_amount + delta
            if new_amount < 0:
                raise InvalidAmountError(
                    f"Goal '{goal.name}' has only {goal.current_amount} saved"
                )
            goal.current_amount = new_amount
            goal.updated_at = utc_now()
            goal = await self._storage.save_goal(goal)

        self._logger.info(
            "goal_contribution",
            owner_id=owner_id,
            goal_id=goal_id,
            change_amount=str(delta),
            current_amount=str(goal.current_amount),
        )
        return goal

    async def fulfil(self, owner_id: str, goal_id: str) -> Goal:
        """Mark an active goal as reached. Anything saved beyond the target is dropped from it."""
        goal = await self.get_goal(owner_id, goal_id)
        if goal.status != GoalStatus.ACTIVE:
            raise GoalTransitionError(f"Only active goals can be fulfilled (goal is {goal.status.value})")
        if goal.current_amount < goal.target_amount:
            raise GoalTransitionError(
                f"Goal '{goal.name}' has {goal.current_amount} of {goal.target_amount} saved"
            )

        goal.current_amount = goal.target_amount
        goal.status = GoalStatus.FULFILLED
        goal.completed_at = utc_now()
        return await self._transition(goal, AuditChangeType.GOAL_FULFILLED)

    async def reactivate(self, owner_id: str, goal_id: str) -> Goal:
        goal = await self.get_goal(owner_id, goal_id)
        if goal.status == GoalStatus.ACTIVE:
            raise GoalTransitionError("Goal is already active")

        goal.status = GoalStatus.ACTIVE
        goal.completed_at = None
        return await self._transition(goal, AuditChangeType.GOAL_REACTIVATED)

    async def archive(self, owner_id: str, goal_id: str) -> Goal:
        goal = await self.get_goal(owner_id, goal_id)
        if goal.status == GoalStatus.ARCHIVED:
            raise GoalTransitionError("Goal is already archived")

        goal.status = GoalStatus.ARCHIVED
        return await self._transition(goal, AuditChangeType.GOAL_ARCHIVED)

    async def delete_goal(self, owner_id: str, goal_id: str) -> Goal:
        goal = await self.get_goal(owner_id, goal_id)
        if not await self._storage.delete_goal(owner_id, goal_id):
            raise GoalNotFoundError(goal_id)
        await self._audit.record(AuditEntryBuilder.goal_event(goal, AuditChangeType.GOAL_DELETED))
        return goal

    async def _transition(self, goal: Goal, change_type: AuditChangeType) -> Goal:
        goal.updated_at = utc_now()
        goal = await self._storage.save_goal(goal)
        await self._audit.record(AuditEntryBuilder.goal_event(goal, change_type))
        return goal

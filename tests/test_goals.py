"""
Tests for the GoalTracker.
"""

from decimal import Decimal

import pytest

from conftest import OTHER_OWNER, OWNER
from pocket_ledger.errors import GoalNotFoundError, GoalTransitionError, InvalidAmountError
from pocket_ledger.models import AuditChangeType, GoalStatus


def goal_entries(store, goal_id):
    return [e.change_type for e in store.audit_entries if e.entity_id == goal_id]


class TestContribute:
    """Saved amount bookkeeping."""

    @pytest.mark.asyncio
    async def test_contributions_accumulate(self, components):
        goal = await components.goals.create_goal(OWNER, "Bike", Decimal("300"))

        await components.goals.contribute(OWNER, goal.id, Decimal("100"))
        goal = await components.goals.contribute(OWNER, goal.id, Decimal("50.25"))

        assert goal.current_amount == Decimal("150.25")

    @pytest.mark.asyncio
    async def test_cannot_take_back_more_than_saved(self, components):
        goal = await components.goals.create_goal(OWNER, "Bike", Decimal("300"))
        await components.goals.contribute(OWNER, goal.id, Decimal("10"))

        with pytest.raises(InvalidAmountError):
            await components.goals.contribute(OWNER, goal.id, Decimal("-11"))

        assert (await components.goals.get_goal(OWNER, goal.id)).current_amount == Decimal("10")

    @pytest.mark.asyncio
    async def test_target_must_be_positive(self, components):
        with pytest.raises(InvalidAmountError):
            await components.goals.create_goal(OWNER, "Nothing", Decimal("0"))

    @pytest.mark.asyncio
    async def test_goals_are_owner_scoped(self, components):
        goal = await components.goals.create_goal(OWNER, "Bike", Decimal("300"))
        with pytest.raises(GoalNotFoundError):
            await components.goals.get_goal(OTHER_OWNER, goal.id)


class TestTransitions:
    """active / fulfilled / archived."""

    @pytest.mark.asyncio
    async def test_fulfil_requires_target_reached(self, components):
        goal = await components.goals.create_goal(OWNER, "Phone", Decimal("200"))
        await components.goals.contribute(OWNER, goal.id, Decimal("150"))

        with pytest.raises(GoalTransitionError):
            await components.goals.fulfil(OWNER, goal.id)

    @pytest.mark.asyncio
    async def test_fulfil_caps_saved_amount_at_target(self, components, store):
        goal = await components.goals.create_goal(OWNER, "Phone", Decimal("200"))
        await components.goals.contribute(OWNER, goal.id, Decimal("230"))

        goal = await components.goals.fulfil(OWNER, goal.id)

        assert goal.status == GoalStatus.FULFILLED
        assert goal.current_amount == Decimal("200")
        assert goal.completed_at is not None
        assert AuditChangeType.GOAL_FULFILLED in goal_entries(store, goal.id)

    @pytest.mark.asyncio
    async def test_reactivate_clears_completion(self, components):
        goal = await components.goals.create_goal(OWNER, "Phone", Decimal("200"))
        await components.goals.contribute(OWNER, goal.id, Decimal("200"))
        await components.goals.fulfil(OWNER, goal.id)

        goal = await components.goals.reactivate(OWNER, goal.id)

        assert goal.status == GoalStatus.ACTIVE
        assert goal.completed_at is None

    @pytest.mark.asyncio
    async def test_reactivating_an_active_goal_fails(self, components):
        goal = await components.goals.create_goal(OWNER, "Phone", Decimal("200"))
        with pytest.raises(GoalTransitionError):
            await components.goals.reactivate(OWNER, goal.id)

    @pytest.mark.asyncio
    async def test_archive_twice_fails(self, components):
        goal = await components.goals.create_goal(OWNER, "Phone", Decimal("200"))
        await components.goals.archive(OWNER, goal.id)

        with pytest.raises(GoalTransitionError):
            await components.goals.archive(OWNER, goal.id)

    @pytest.mark.asyncio
    async def test_delete_goal_is_audited(self, components, store):
        goal = await components.goals.create_goal(OWNER, "Phone", Decimal("200"))

        await components.goals.delete_goal(OWNER, goal.id)

        assert await components.goals.list_goals(OWNER) == []
        assert goal_entries(store, goal.id) == [
            AuditChangeType.GOAL_CREATED,
            AuditChangeType.GOAL_DELETED,
        ]

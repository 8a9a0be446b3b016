"""Tests for the suspension registry and the admin suspension operations."""

from datetime import timedelta

import pytest

from msgguard.errors import Conflict, Forbidden, NotFound, ValidationError
from msgguard.policies.models import PolicyUpdate

ORG = "org-1"


@pytest.mark.asyncio
async def test_not_suspended_by_default(engine):
    assert await engine.suspensions.is_suspended(ORG, "coach-1") is None


@pytest.mark.asyncio
async def test_indefinite_suspension_is_active(engine):
    await engine.suspensions.suspend(ORG, "coach-1", "spam", created_by="admin-1")
    suspension = await engine.suspensions.is_suspended(ORG, "coach-1")
    assert suspension is not None
    assert suspension.reason == "spam"
    assert suspension.suspended_until is None


@pytest.mark.asyncio
async def test_suspension_expires(engine, clock):
    await engine.suspensions.suspend(
        ORG, "coach-1", "cool down", created_by="admin-1", suspended_until=clock() + timedelta(hours=1)
    )
    assert await engine.suspensions.is_suspended(ORG, "coach-1") is not None

    clock.advance(hours=2)
    assert await engine.suspensions.is_suspended(ORG, "coach-1") is None
    assert await engine.suspensions.list_active(ORG) == []


@pytest.mark.asyncio
async def test_suspension_in_the_past_is_inactive(engine, clock):
    await engine.suspensions.suspend(
        ORG, "coach-1", "old", created_by="admin-1", suspended_until=clock() - timedelta(minutes=1)
    )
    assert await engine.suspensions.is_suspended(ORG, "coach-1") is None


@pytest.mark.asyncio
async def test_suspend_twice_reuses_the_row(engine):
    first = await engine.suspensions.suspend(ORG, "coach-1", "first", created_by="admin-1")
    second = await engine.suspensions.suspend(ORG, "coach-1", "second", created_by="admin-1")

    assert first.id == second.id
    rows = await engine.db.fetch_all("SELECT * FROM messaging_suspensions WHERE user_id = 'coach-1'")
    assert len(rows) == 1
    assert rows[0]["reason"] == "second"


@pytest.mark.asyncio
async def test_lift_keeps_history(engine):
    await engine.suspensions.suspend(ORG, "coach-1", "spam", created_by="admin-1")
    assert await engine.suspensions.lift(ORG, "coach-1", lifted_by="admin-1") == 1
    assert await engine.suspensions.is_suspended(ORG, "coach-1") is None

    rows = await engine.db.fetch_all("SELECT * FROM messaging_suspensions WHERE user_id = 'coach-1'")
    assert len(rows) == 1
    assert rows[0]["lifted_by"] == "admin-1"


@pytest.mark.asyncio
async def test_suspensions_are_scoped_to_workspace(engine):
    await engine.suspensions.suspend(ORG, "coach-1", "spam", created_by="admin-1")
    assert await engine.suspensions.is_suspended("org-2", "coach-1") is None


# ---------------------------------------------------------------------------
# Admin operations
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_admin_suspends_and_lifts(engine, world):
    active = await engine.moderation.suspend_user(world.admin, "student-1", "insults")
    assert [s.user_id for s in active] == ["student-1"]

    active = await engine.moderation.lift_suspension(world.admin, "student-1")
    assert active == []


@pytest.mark.asyncio
async def test_non_admin_cannot_suspend(engine, world):
    with pytest.raises(Forbidden) as excinfo:
        await engine.moderation.suspend_user(world.coach, "student-1", "insults")
    assert excinfo.value.reason_code == "MODERATION_ADMIN_REQUIRED"


@pytest.mark.asyncio
async def test_supervision_disabled_blocks_moderation(engine, world):
    await engine.policies.update(ORG, PolicyUpdate(supervision_enabled=False))
    with pytest.raises(Forbidden):
        await engine.moderation.list_suspensions(world.admin)


@pytest.mark.asyncio
async def test_admin_cannot_suspend_self(engine, world):
    with pytest.raises(Conflict) as excinfo:
        await engine.moderation.suspend_user(world.admin, "admin-1", "oops")
    assert excinfo.value.reason_code == "SELF_SUSPENSION"


@pytest.mark.asyncio
async def test_unknown_target(engine, world):
    with pytest.raises(NotFound) as excinfo:
        await engine.moderation.suspend_user(world.admin, "solo-1", "not ours")
    assert excinfo.value.reason_code == "USER_NOT_FOUND"


@pytest.mark.asyncio
async def test_reason_is_required(engine, world):
    with pytest.raises(ValidationError):
        await engine.moderation.suspend_user(world.admin, "coach-1", "   ")

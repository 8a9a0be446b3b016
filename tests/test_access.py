"""Tests for the permission table and the thread access validator."""

import pytest

from msgguard.auth.models import Actor, ProfileRole
from msgguard.auth.permissions import THREAD_PERMISSIONS, ThreadIntent, role_permits
from msgguard.errors import DependencyUnavailable, Forbidden
from msgguard.messages.access import (
    DEPENDENCY_UNAVAILABLE,
    MESSAGING_CHARTER_REQUIRED,
    MESSAGING_SUSPENDED,
    THREAD_ACCESS_DENIED,
    THREAD_FROZEN,
    THREAD_PUBLISH_DENIED,
    AccessDecision,
)
from msgguard.messages.models import ThreadKind
from msgguard.orgs.models import Workspace
from msgguard.policies.models import PolicyUpdate

ORG = "org-1"


# ---------------------------------------------------------------------------
# Permission table
# ---------------------------------------------------------------------------


def test_every_kind_has_permissions():
    assert set(THREAD_PERMISSIONS) == set(ThreadKind)


@pytest.mark.parametrize(
    "kind, role, intent, expected",
    [
        (ThreadKind.student_coach, ProfileRole.student, ThreadIntent.write, True),
        (ThreadKind.student_coach, ProfileRole.parent, ThreadIntent.read, False),
        (ThreadKind.coach_coach, ProfileRole.student, ThreadIntent.read, False),
        (ThreadKind.coach_coach, ProfileRole.staff, ThreadIntent.write, True),
        (ThreadKind.org_info, ProfileRole.student, ThreadIntent.read, True),
        (ThreadKind.org_info, ProfileRole.student, ThreadIntent.write, False),
        (ThreadKind.group_info, ProfileRole.student, ThreadIntent.hide, True),
        (ThreadKind.org_coaches, ProfileRole.owner, ThreadIntent.write, True),
        (ThreadKind.org_coaches, ProfileRole.student, ThreadIntent.read, False),
    ],
)
def test_role_permits(kind, role, intent, expected):
    assert role_permits(kind, role, intent) is expected


def test_decision_raises_matching_error():
    decision = AccessDecision.deny(THREAD_FROZEN)
    with pytest.raises(Forbidden) as excinfo:
        decision.raise_for_denial()
    assert excinfo.value.reason_code == THREAD_FROZEN

    unavailable = AccessDecision.deny(DEPENDENCY_UNAVAILABLE, 503)
    assert isinstance(unavailable.to_error(), DependencyUnavailable)


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_participant_can_read_and_write(engine, world, student_thread):
    for actor in (world.coach, world.student):
        decision = await engine.validator.check(actor, student_thread.id, ThreadIntent.write)
        assert decision.allowed
        assert decision.thread.id == student_thread.id
        assert decision.audience.can_publish(actor.user_id)


@pytest.mark.asyncio
async def test_non_participant_is_denied(engine, world, student_thread):
    decision = await engine.validator.check(world.coach2, student_thread.id, ThreadIntent.read)
    assert not decision.allowed
    assert decision.reason_code == THREAD_ACCESS_DENIED
    assert decision.http_status_hint == 403


@pytest.mark.asyncio
async def test_unknown_thread_is_denied_not_leaked(engine, world):
    decision = await engine.validator.check(world.coach, "missing", ThreadIntent.read)
    assert decision.reason_code == THREAD_ACCESS_DENIED


@pytest.mark.asyncio
async def test_thread_from_other_workspace_is_denied(engine, world, student_thread):
    decision = await engine.validator.check(world.solo, student_thread.id, ThreadIntent.read)
    assert decision.reason_code == THREAD_ACCESS_DENIED


@pytest.mark.asyncio
async def test_suspension_wins_over_charter(engine, world, student_thread):
    await engine.suspensions.suspend(ORG, "coach-1", "spam", created_by="admin-1")
    await engine.policies.update(ORG, PolicyUpdate(charter_version=2))

    decision = await engine.validator.check(world.coach, student_thread.id, ThreadIntent.write)
    assert decision.reason_code == MESSAGING_SUSPENDED


@pytest.mark.asyncio
async def test_suspension_does_not_block_reads(engine, world, student_thread):
    await engine.suspensions.suspend(ORG, "coach-1", "spam", created_by="admin-1")
    assert (await engine.validator.check(world.coach, student_thread.id, ThreadIntent.read)).allowed


@pytest.mark.asyncio
async def test_charter_required_before_thread_lookup(engine, world):
    await engine.policies.update(ORG, PolicyUpdate(charter_version=2))
    decision = await engine.validator.check(world.coach, "missing", ThreadIntent.read)
    assert decision.reason_code == MESSAGING_CHARTER_REQUIRED


@pytest.mark.asyncio
async def test_charter_exempt_skips_the_gate(engine, world, student_thread):
    await engine.policies.update(ORG, PolicyUpdate(charter_version=2))
    decision = await engine.validator.check(
        world.coach, student_thread.id, ThreadIntent.read, charter_exempt=True
    )
    assert decision.allowed


@pytest.mark.asyncio
async def test_frozen_thread_blocks_writes_only(engine, world, student_thread):
    async with engine.db.transaction() as conn:
        await engine.threads.set_freeze(conn, student_thread.id, "admin-1", "investigation", "2026-01-15T12:00:00Z")

    write = await engine.validator.check(world.student, student_thread.id, ThreadIntent.write)
    assert write.reason_code == THREAD_FROZEN
    assert (await engine.validator.check(world.student, student_thread.id, ThreadIntent.read)).allowed
    assert (await engine.validator.check(world.student, student_thread.id, ThreadIntent.hide)).allowed

    async with engine.db.transaction() as conn:
        await engine.threads.clear_freeze(conn, student_thread.id)
    assert (await engine.validator.check(world.student, student_thread.id, ThreadIntent.write)).allowed


@pytest.mark.asyncio
async def test_students_read_but_cannot_publish_on_org_info(engine, world):
    handle = await engine.messaging.create_thread(world.admin, "org_info")
    thread_id = handle.thread.id

    assert (await engine.validator.check(world.student, thread_id, ThreadIntent.read)).allowed
    decision = await engine.validator.check(world.student, thread_id, ThreadIntent.write)
    assert decision.reason_code == THREAD_PUBLISH_DENIED
    assert (await engine.validator.check(world.coach2, thread_id, ThreadIntent.write)).allowed


@pytest.mark.asyncio
async def test_group_info_publishers_are_group_coaches(engine, world):
    handle = await engine.messaging.create_thread(world.coach, "group_info", group_id="grp-1")
    thread_id = handle.thread.id

    assert (await engine.validator.check(world.coach, thread_id, ThreadIntent.write)).allowed
    student_write = await engine.validator.check(world.student, thread_id, ThreadIntent.write)
    assert student_write.reason_code == THREAD_PUBLISH_DENIED
    outsider = await engine.validator.check(world.coach2, thread_id, ThreadIntent.read)
    assert outsider.reason_code == THREAD_ACCESS_DENIED


@pytest.mark.asyncio
async def test_unassigned_coach_loses_access(engine, world, student_thread):
    await engine.db.execute("DELETE FROM student_assignments WHERE student_id = 'stu-1'")
    decision = await engine.validator.check(world.coach, student_thread.id, ThreadIntent.read)
    assert decision.reason_code == THREAD_ACCESS_DENIED


@pytest.mark.asyncio
async def test_parent_has_no_thread_access(engine, world, student_thread):
    parent = Actor(
        user_id="parent-1",
        role=ProfileRole.parent,
        workspace=Workspace(id=ORG),
    )
    decision = await engine.validator.check(parent, student_thread.id, ThreadIntent.read)
    assert decision.reason_code == MESSAGING_CHARTER_REQUIRED

    await engine.charter.accept(ORG, "parent-1", 1)
    decision = await engine.validator.check(parent, student_thread.id, ThreadIntent.read)
    assert decision.reason_code == THREAD_ACCESS_DENIED


@pytest.mark.asyncio
async def test_storage_failure_denies_with_503(engine, world, student_thread):
    await engine.db.close()
    try:
        decision = await engine.validator.check(world.coach, student_thread.id, ThreadIntent.read)
        assert not decision.allowed
        assert decision.reason_code == DEPENDENCY_UNAVAILABLE
        assert decision.http_status_hint == 503

        decision = await engine.validator.check_actor(world.coach, write_class=True)
        assert decision.reason_code == DEPENDENCY_UNAVAILABLE
    finally:
        await engine.db.open()

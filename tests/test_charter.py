"""Tests for charter acceptance."""

import pytest

from msgguard.errors import Conflict
from msgguard.policies.models import PolicyUpdate

ORG = "org-1"


@pytest.mark.asyncio
async def test_new_user_must_accept(engine):
    status = await engine.charter.status(ORG, "newcomer")
    assert status.must_accept is True
    assert status.charter_version == 1
    assert status.accepted_at is None
    assert "title" in status.content


@pytest.mark.asyncio
async def test_accept_current_version(engine, clock):
    status = await engine.charter.accept(ORG, "newcomer", 1)
    assert status.must_accept is False
    assert status.accepted_at == clock().isoformat()


@pytest.mark.asyncio
async def test_accept_is_idempotent(engine, clock):
    first = await engine.charter.accept(ORG, "newcomer", 1)
    clock.advance(minutes=5)
    second = await engine.charter.accept(ORG, "newcomer", 1)
    assert second.accepted_at == first.accepted_at

    rows = await engine.db.fetch_all("SELECT * FROM charter_acceptances WHERE user_id = 'newcomer'")
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_stale_version_conflicts(engine):
    await engine.policies.update(ORG, PolicyUpdate(charter_version=2))
    with pytest.raises(Conflict) as excinfo:
        await engine.charter.accept(ORG, "newcomer", 1)
    assert excinfo.value.reason_code == "CHARTER_VERSION_STALE"
    assert excinfo.value.to_dict()["charter_version"] == 2


@pytest.mark.asyncio
async def test_version_bump_requires_new_acceptance(engine):
    await engine.charter.accept(ORG, "newcomer", 1)
    await engine.policies.update(ORG, PolicyUpdate(charter_version=2))

    status = await engine.charter.status(ORG, "newcomer")
    assert status.must_accept is True
    assert status.charter_version == 2

    status = await engine.charter.accept(ORG, "newcomer", 2)
    assert status.must_accept is False


@pytest.mark.asyncio
async def test_charter_operations_bypass_the_gate(engine, world):
    await engine.policies.update(ORG, PolicyUpdate(charter_version=2))
    status = await engine.moderation.charter_status(world.coach)
    assert status.must_accept is True
    status = await engine.moderation.accept_charter(world.coach, 2)
    assert status.must_accept is False

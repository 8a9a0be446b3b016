"""Tests for the moderation audit log."""

import csv
import io
import json

import pytest

from msgguard.errors import DependencyUnavailable

ORG = "org-1"


@pytest.mark.asyncio
async def test_record_returns_immediately_and_drain_persists(engine):
    entry = engine.audit.record(ORG, "admin-1", "report.created", report_id="r1", metadata={"k": 1})
    assert entry.action == "report.created"

    await engine.audit.drain()
    stored = await engine.audit.list_for_report("r1")
    assert len(stored) == 1
    assert stored[0].id == entry.id
    assert stored[0].metadata == {"k": 1}


@pytest.mark.asyncio
async def test_list_for_workspace_filters_by_action(engine, clock):
    engine.audit.record(ORG, "admin-1", "report.created", report_id="r1")
    clock.advance(seconds=1)
    engine.audit.record(ORG, "admin-1", "reports.list_viewed")
    engine.audit.record("org-2", "admin-9", "reports.list_viewed")
    await engine.audit.drain()

    entries = await engine.audit.list_for_workspace(ORG)
    assert [e.action for e in entries] == ["reports.list_viewed", "report.created"]
    only = await engine.audit.list_for_workspace(ORG, action="report.created")
    assert [e.report_id for e in only] == ["r1"]


@pytest.mark.asyncio
async def test_failed_write_is_logged_not_raised(engine, capsys):
    await engine.db.close()
    try:
        engine.audit.record(ORG, "admin-1", "report.created", report_id="r1")
        await engine.audit.drain()
    finally:
        await engine.db.open()

    assert "moderation_audit_write_failed" in capsys.readouterr().err
    assert await engine.audit.list_for_report("r1") == []


@pytest.mark.asyncio
async def test_entries_cannot_be_updated_or_deleted(engine):
    engine.audit.record(ORG, "admin-1", "report.created", report_id="r1")
    await engine.audit.drain()

    with pytest.raises(DependencyUnavailable):
        await engine.db.execute("UPDATE moderation_audit SET action = 'tampered'")
    with pytest.raises(DependencyUnavailable):
        await engine.db.execute("DELETE FROM moderation_audit")
    assert len(await engine.audit.list_for_report("r1")) == 1


@pytest.mark.asyncio
async def test_export_json(engine):
    engine.audit.record(ORG, "admin-1", "report.created", report_id="r1", thread_id="t1")
    await engine.audit.drain()

    data = json.loads(await engine.audit.export(ORG))
    assert len(data) == 1
    assert data[0]["report_id"] == "r1"
    assert data[0]["thread_id"] == "t1"


@pytest.mark.asyncio
async def test_export_csv(engine):
    engine.audit.record(ORG, "admin-1", "messages.purged", metadata={"redacted_messages": 4})
    await engine.audit.drain()

    rows = list(csv.DictReader(io.StringIO(await engine.audit.export(ORG, fmt="csv"))))
    assert len(rows) == 1
    assert rows[0]["action"] == "messages.purged"
    assert rows[0]["report_id"] == ""
    assert json.loads(rows[0]["metadata"]) == {"redacted_messages": 4}

"""Shared fixtures: a temp-dir engine, a controllable clock and a seeded directory."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from msgguard.config import Settings
from msgguard.engine import MessagingEngine
from msgguard.log import configure_logging
from msgguard.orgs.models import MembershipRole, Profile, Student, Workspace, WorkspaceType

ORG_ID = "org-1"
PERSONAL_ID = "ws-solo"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


async def seed_directory(engine: MessagingEngine) -> SimpleNamespace:
    """One organization with an admin, two coaches, a student and a group,
    plus a personal workspace owned by a solo coach."""
    orgs = engine.orgs
    await orgs.create_workspace(
        Workspace(id=ORG_ID, workspace_type=WorkspaceType.org, name="Club", owner_profile_id="admin-1")
    )
    await orgs.create_workspace(
        Workspace(id=PERSONAL_ID, workspace_type=WorkspaceType.personal, name="Solo", owner_profile_id="solo-1")
    )

    for user_id, role, name, email in [
        ("admin-1", "owner", "Ada Admin", "ada@example.com"),
        ("coach-1", "coach", "Carl Coach", "carl@example.com"),
        ("coach-2", "coach", "Cleo Coach", "cleo@example.com"),
        ("student-1", "student", "Sam Student", "sam@example.com"),
    ]:
        await orgs.upsert_profile(
            Profile(id=user_id, role=role, org_id=ORG_ID, full_name=name, email=email, active_workspace_id=ORG_ID)
        )
    await orgs.upsert_profile(
        Profile(
            id="solo-1",
            role="coach",
            org_id=PERSONAL_ID,
            full_name="Sol Solo",
            email="sol@example.com",
            active_workspace_id=PERSONAL_ID,
        )
    )

    await orgs.add_member(ORG_ID, "admin-1", MembershipRole.admin)
    await orgs.add_member(ORG_ID, "coach-1", MembershipRole.coach)
    await orgs.add_member(ORG_ID, "coach-2", MembershipRole.coach)

    await orgs.add_student(Student(id="stu-1", org_id=ORG_ID, first_name="Sam", last_name="Student"))
    await orgs.link_student_account("student-1", "stu-1")
    await orgs.assign_coach("stu-1", "coach-1")

    await orgs.create_group("grp-1", ORG_ID, "Juniors")
    await orgs.add_group_coach("grp-1", "coach-1")
    await orgs.add_group_student("grp-1", "stu-1")

    for user_id in ["admin-1", "coach-1", "coach-2", "student-1"]:
        await engine.charter.accept(ORG_ID, user_id, 1)
    await engine.charter.accept(PERSONAL_ID, "solo-1", 1)

    return SimpleNamespace(
        admin=await orgs.resolve_actor("admin-1"),
        coach=await orgs.resolve_actor("coach-1"),
        coach2=await orgs.resolve_actor("coach-2"),
        student=await orgs.resolve_actor("student-1"),
        solo=await orgs.resolve_actor("solo-1"),
    )


@pytest.fixture(scope="session", autouse=True)
def json_logging():
    configure_logging("production", "INFO")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(clock):
    """Engine on a temporary SQLite database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        settings = Settings(db_path=Path(tmpdir) / "messaging.db", dependency_timeout=5.0)
        eng = MessagingEngine(settings, clock=clock)
        await eng.start()
        yield eng
        await eng.stop()


@pytest.fixture
async def world(engine):
    return await seed_directory(engine)


@pytest.fixture
async def student_thread(engine, world):
    """The student_coach thread between student-1 and coach-1."""
    handle = await engine.messaging.create_thread(
        world.coach, "student_coach", student_id="stu-1", coach_id="coach-1"
    )
    return handle.thread


@pytest.fixture
async def coach_thread(engine, world):
    """A coach_coach thread between two coaches of the organization."""
    handle = await engine.messaging.create_thread(world.coach, "coach_coach", coach_user_id="coach-2")
    return handle.thread

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

import pytest

from campus_attendance.container import Container, build_services
from campus_attendance.core.enums import Role
from campus_attendance.sessions.memory_repository import InMemorySessionRepository
from campus_attendance.sessions.model import CourseInfo

NOW = datetime(2026, 3, 2, 8, 0, 0)
TODAY = NOW.date()


@dataclass
class InMemoryRoster:
    members: dict[str, set[str]]
    counselors: dict[str, set[str]] = field(default_factory=dict)
    leaders: dict[str, set[str]] = field(default_factory=dict)

    def get_students_in_class(self, class_id: str) -> set[str]:
        return set(self.members.get(class_id, set()))

    def classes_managed_by(self, user_id: str) -> set[str]:
        return set(self.counselors.get(user_id, set()))

    def classes_of(self, user_id: str) -> set[str]:
        own = {c for c, students in self.members.items() if user_id in students}
        return own | set(self.leaders.get(user_id, set()))


@dataclass
class InMemoryLeaves:
    approved: set[tuple[str, date]] = field(default_factory=set)

    def has_approved_leave(self, student_id: str, on_date: date) -> bool:
        return (student_id, on_date) in self.approved


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def roster() -> InMemoryRoster:
    return InMemoryRoster(
        members={
            "C1": {"s1", "s2", "s3"},
            "C2": {"s4", "s5"},
            "C3": {"s6"},
        },
        counselors={"coun1": {"C1"}, "coun2": {"C1", "C2"}},
        leaders={"lead1": {"C1"}},
    )


@pytest.fixture
def leaves() -> InMemoryLeaves:
    return InMemoryLeaves()


@pytest.fixture
def container(roster, leaves) -> Container:
    return build_services(sessions_repo=InMemorySessionRepository(), roster=roster, leaves=leaves, qr_ttl_seconds=30)


@pytest.fixture
def actor(container):
    def _actor(user_id: str, role: Role):
        return container.policy.resolve_actor(user_id, role)

    return _actor


@pytest.fixture
def course() -> CourseInfo:
    return CourseInfo(course_name="Linear Algebra", location="Room 301", periods=(1, 2))


@pytest.fixture
def open_session(container, actor, course, now):
    """Creates a session as admin unless another creator is given."""

    def _open(class_ids=("C1",), *, duration: int = 600, creator=None, at: Optional[datetime] = None):
        return container.session_service.create_session(
            actor=creator or actor("admin", Role.ADMIN),
            class_ids=list(class_ids),
            course_info=course,
            check_in_duration_seconds=duration,
            check_in_date=(at or now).date(),
            now=at or now,
        )

    return _open

from __future__ import annotations

from datetime import timedelta

import pytest

from campus_attendance.core.enums import RecordStatus, Role, SessionStatus
from campus_attendance.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    SessionClosedError,
    StorageUnavailableError,
    ValidationError,
)
from campus_attendance.sessions.model import CourseInfo
from campus_attendance.sessions.service import SessionService


def _statuses(session):
    return {(r.student_id, r.class_id): r.status for r in session.records}


def test_create_seeds_one_record_per_student_and_issues_token(open_session, now):
    session = open_session(["C1", "C2"])

    assert session.status == SessionStatus.ACTIVE
    assert session.class_ids == ("C1", "C2")
    assert len(session.records) == 5
    assert all(r.status == RecordStatus.PENDING for r in session.records)
    assert session.expired_at == now + timedelta(seconds=600)
    assert session.qr_token.value
    assert session.qr_token.expires_at <= session.expired_at


def test_create_seeds_leave_for_students_on_approved_leave(open_session, leaves, now):
    leaves.approved.add(("s2", now.date()))

    session = open_session(["C1"])

    assert _statuses(session) == {
        ("s1", "C1"): RecordStatus.PENDING,
        ("s2", "C1"): RecordStatus.LEAVE,
        ("s3", "C1"): RecordStatus.PENDING,
    }


def test_student_in_two_covered_classes_gets_two_records(open_session, roster):
    roster.members["C2"].add("s1")

    session = open_session(["C1", "C2"])

    assert [r.class_id for r in session.records_for("s1")] == ["C1", "C2"]


def test_duplicate_class_ids_are_collapsed(open_session):
    session = open_session(["C1", "C1"])

    assert session.class_ids == ("C1",)
    assert len(session.records) == 3


def test_counselor_cannot_create_for_unmanaged_class_and_nothing_is_stored(container, actor, course, now):
    counselor = actor("coun1", Role.COUNSELOR)

    with pytest.raises(AuthorizationError):
        container.session_service.create_session(
            actor=counselor,
            class_ids=["C1", "C2"],
            course_info=course,
            check_in_duration_seconds=600,
            check_in_date=now.date(),
            now=now,
        )

    assert container.session_service.list_sessions(actor=actor("admin", Role.ADMIN), now=now) == []


def test_student_cannot_create(open_session, actor):
    with pytest.raises(AuthorizationError):
        open_session(["C1"], creator=actor("s1", Role.STUDENT))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"class_ids": []},
        {"check_in_duration_seconds": 0},
        {"check_in_duration_seconds": 86401},
        {"course_info": CourseInfo(course_name="Math", location="R1", periods=(0,))},
        {"course_info": CourseInfo(course_name="Math", location="R1", periods=(15,))},
        {"course_info": CourseInfo(course_name="Math", location="R1", periods=())},
        {"course_info": CourseInfo(course_name=" ", location="R1", periods=(1,))},
    ],
)
def test_create_validates_input(container, actor, course, now, kwargs):
    args = dict(
        actor=actor("admin", Role.ADMIN),
        class_ids=["C1"],
        course_info=course,
        check_in_duration_seconds=600,
        check_in_date=now.date(),
        now=now,
    )
    args.update(kwargs)

    with pytest.raises(ValidationError):
        container.session_service.create_session(**args)


def test_duration_bounds_are_inclusive(open_session):
    assert open_session(duration=1).check_in_duration_seconds == 1
    assert open_session(duration=86400).check_in_duration_seconds == 86400


def test_observe_closes_only_after_expiry(container, open_session, now):
    session = open_session(duration=60)
    svc = container.session_service

    assert svc.observe_and_maybe_close(session.session_id, now=now + timedelta(seconds=60)).status == SessionStatus.ACTIVE

    closed = svc.observe_and_maybe_close(session.session_id, now=now + timedelta(seconds=61))
    assert closed.status == SessionStatus.CLOSED
    assert closed.closed_by is None

    again = svc.observe_and_maybe_close(session.session_id, now=now + timedelta(seconds=120))
    assert again.closed_at == closed.closed_at


def test_manual_close_then_second_close_fails(container, open_session, actor, now):
    session = open_session()
    admin = actor("admin", Role.ADMIN)

    closed = container.session_service.close_session(actor=admin, session_id=session.session_id, now=now)
    assert closed.status == SessionStatus.CLOSED
    assert closed.closed_by == "admin"

    with pytest.raises(InvalidStateError):
        container.session_service.close_session(actor=admin, session_id=session.session_id, now=now)


def test_manual_close_after_auto_close_reports_invalid_state(container, open_session, actor, now):
    session = open_session(duration=60)
    later = now + timedelta(seconds=61)
    container.session_service.observe_and_maybe_close(session.session_id, now=later)

    with pytest.raises(InvalidStateError):
        container.session_service.close_session(actor=actor("admin", Role.ADMIN), session_id=session.session_id, now=later)


def test_leader_can_close_only_own_session(container, open_session, actor, now):
    leader = actor("lead1", Role.STUDENT_LEADER)
    by_admin = open_session(["C1"])
    by_leader = open_session(["C1"], creator=leader)

    with pytest.raises(AuthorizationError):
        container.session_service.close_session(actor=leader, session_id=by_admin.session_id, now=now)

    closed = container.session_service.close_session(actor=leader, session_id=by_leader.session_id, now=now)
    assert closed.status == SessionStatus.CLOSED


def test_close_unknown_session(container, actor, now):
    with pytest.raises(NotFoundError):
        container.session_service.close_session(actor=actor("admin", Role.ADMIN), session_id="missing", now=now)


def test_override_sets_status_and_reason_without_touching_check_in_time(container, open_session, actor, now):
    session = open_session()
    counselor = actor("coun1", Role.COUNSELOR)

    record = container.session_service.override_record(
        actor=counselor,
        session_id=session.session_id,
        student_id="s1",
        new_status="ABSENT",
        now=now,
    )

    assert record.status == RecordStatus.ABSENT
    assert record.check_in_time is None
    assert record.updated_by == "coun1"


def test_override_away_from_leave_requires_reason(container, open_session, actor, leaves, now):
    leaves.approved.add(("s2", now.date()))
    session = open_session()
    admin = actor("admin", Role.ADMIN)
    svc = container.session_service

    with pytest.raises(ValidationError):
        svc.override_record(actor=admin, session_id=session.session_id, student_id="s2", new_status="PRESENT", reason=" ")

    record = svc.override_record(
        actor=admin,
        session_id=session.session_id,
        student_id="s2",
        new_status=RecordStatus.PRESENT,
        reason="Leave cancelled",
        now=now,
    )
    assert record.status == RecordStatus.PRESENT
    assert record.reason == "Leave cancelled"


def test_override_is_allowed_after_closure(container, open_session, actor, now):
    session = open_session()
    admin = actor("admin", Role.ADMIN)
    container.session_service.close_session(actor=admin, session_id=session.session_id, now=now)

    record = container.session_service.override_record(
        actor=admin, session_id=session.session_id, student_id="s3", new_status="EXCUSED", now=now
    )

    assert record.status == RecordStatus.EXCUSED


def test_override_errors(container, open_session, actor, now):
    session = open_session(["C1", "C2"])
    svc = container.session_service

    with pytest.raises(NotFoundError):
        svc.override_record(actor=actor("admin", Role.ADMIN), session_id="missing", student_id="s1", new_status="ABSENT")
    with pytest.raises(NotFoundError):
        svc.override_record(actor=actor("admin", Role.ADMIN), session_id=session.session_id, student_id="nobody", new_status="ABSENT")
    with pytest.raises(AuthorizationError):
        # coun1 manages C1 only; s4 is in C2
        svc.override_record(actor=actor("coun1", Role.COUNSELOR), session_id=session.session_id, student_id="s4", new_status="ABSENT")
    with pytest.raises(AuthorizationError):
        svc.override_record(actor=actor("lead1", Role.STUDENT_LEADER), session_id=session.session_id, student_id="s1", new_status="ABSENT")
    with pytest.raises(ValidationError):
        svc.override_record(actor=actor("admin", Role.ADMIN), session_id=session.session_id, student_id="s1", new_status="GONE")


def test_rotate_replaces_token(container, open_session, actor, now):
    session = open_session()

    token = container.session_service.rotate_qr(
        actor=actor("lead1", Role.STUDENT_LEADER), session_id=session.session_id, now=now + timedelta(seconds=5)
    )

    assert token.value != session.qr_token.value
    assert token.expires_at == now + timedelta(seconds=35)
    assert container.sessions_repo.get(session.session_id).qr_token == token


def test_rotate_never_outlives_session(container, open_session, actor, now):
    session = open_session(duration=40)

    token = container.session_service.rotate_qr(
        actor=actor("admin", Role.ADMIN), session_id=session.session_id, now=now + timedelta(seconds=20)
    )

    assert token.expires_at == session.expired_at


def test_rotate_on_expired_session_fails_and_closes(container, open_session, actor, now):
    session = open_session(duration=60)

    with pytest.raises(SessionClosedError):
        container.session_service.rotate_qr(
            actor=actor("admin", Role.ADMIN), session_id=session.session_id, now=now + timedelta(seconds=61)
        )

    assert container.sessions_repo.get(session.session_id).status == SessionStatus.CLOSED


def test_rotate_denied_for_student(container, open_session, actor, now):
    session = open_session()

    with pytest.raises(AuthorizationError):
        container.session_service.rotate_qr(actor=actor("s1", Role.STUDENT), session_id=session.session_id, now=now)


def test_get_session_lazily_closes_expired_session(container, open_session, actor, now):
    session = open_session(duration=60)
    admin = actor("admin", Role.ADMIN)

    fetched = container.session_service.get_session(
        actor=admin, session_id=session.session_id, now=now + timedelta(seconds=61)
    )

    assert fetched.status == SessionStatus.CLOSED


def test_get_session_returns_stale_state_when_auto_close_fails(roster, leaves, open_session, container, actor, now):
    session = open_session(duration=60)

    class BrokenWrites:
        def __init__(self, inner):
            self._inner = inner

        def get(self, session_id):
            return self._inner.get(session_id)

        def update(self, session_id, mutate):
            raise StorageUnavailableError("db down")

    svc = SessionService(BrokenWrites(container.sessions_repo), roster, leaves)
    fetched = svc.get_session(actor=actor("admin", Role.ADMIN), session_id=session.session_id, now=now + timedelta(seconds=61))

    assert fetched.status == SessionStatus.ACTIVE


def test_student_view_hides_other_students(container, open_session, actor, now):
    session = open_session(["C1"])

    fetched = container.session_service.get_session(actor=actor("s1", Role.STUDENT), session_id=session.session_id, now=now)

    assert [r.student_id for r in fetched.records] == ["s1"]


def test_get_session_outside_scope_is_denied(container, open_session, actor, now):
    session = open_session(["C2"])

    with pytest.raises(AuthorizationError):
        container.session_service.get_session(actor=actor("s1", Role.STUDENT), session_id=session.session_id, now=now)


def test_list_sessions_is_scoped_by_role(container, open_session, actor, now):
    c1 = open_session(["C1"])
    c2 = open_session(["C2"])
    c3 = open_session(["C3"])
    svc = container.session_service

    assert {s.session_id for s in svc.list_sessions(actor=actor("admin", Role.ADMIN), now=now)} == {
        c1.session_id,
        c2.session_id,
        c3.session_id,
    }
    assert {s.session_id for s in svc.list_sessions(actor=actor("coun2", Role.COUNSELOR), now=now)} == {
        c1.session_id,
        c2.session_id,
    }
    assert [s.session_id for s in svc.list_sessions(actor=actor("s4", Role.STUDENT), now=now)] == [c2.session_id]

    with pytest.raises(AuthorizationError):
        svc.list_sessions(actor=actor("coun1", Role.COUNSELOR), class_id="C2", now=now)


def test_list_sessions_filters_status_after_lazy_close(container, open_session, actor, now):
    short = open_session(duration=60)
    long = open_session(duration=3600)
    admin = actor("admin", Role.ADMIN)
    later = now + timedelta(seconds=120)

    active = container.session_service.list_sessions(actor=admin, status="ACTIVE", now=later)
    closed = container.session_service.list_sessions(actor=admin, status=SessionStatus.CLOSED, now=later)

    assert [s.session_id for s in active] == [long.session_id]
    assert [s.session_id for s in closed] == [short.session_id]


def test_list_sessions_rejects_bad_filters(container, actor, now):
    admin = actor("admin", Role.ADMIN)

    with pytest.raises(ValidationError):
        container.session_service.list_sessions(actor=admin, status="OPEN", now=now)
    with pytest.raises(ValidationError):
        container.session_service.list_sessions(
            actor=admin, start_date=now.date(), end_date=now.date() - timedelta(days=1), now=now
        )


def test_close_expired_sweeps_only_expired_sessions(container, open_session, now):
    short = open_session(duration=60)
    long = open_session(duration=3600)
    svc = container.session_service

    assert svc.close_expired(now=now + timedelta(seconds=61)) == 1
    assert svc.close_expired(now=now + timedelta(seconds=62)) == 0
    assert container.sessions_repo.get(short.session_id).status == SessionStatus.CLOSED
    assert container.sessions_repo.get(long.session_id).status == SessionStatus.ACTIVE


def test_list_sessions_skips_joint_session_outside_caller_scope(container, open_session, actor, now):
    joint = open_session(["C1", "C2"])
    own = open_session(["C1"])
    counselor = actor("coun1", Role.COUNSELOR)

    listed = container.session_service.list_sessions(actor=counselor, now=now)
    by_class = container.session_service.list_sessions(actor=counselor, class_id="C1", now=now)

    assert [s.session_id for s in listed] == [own.session_id]
    assert [s.session_id for s in by_class] == [own.session_id]
    assert all(r.class_id == "C1" for s in listed for r in s.records)
    with pytest.raises(AuthorizationError):
        container.session_service.get_session(actor=counselor, session_id=joint.session_id, now=now)

    wider = container.session_service.list_sessions(actor=actor("coun2", Role.COUNSELOR), now=now)
    assert {s.session_id for s in wider} == {joint.session_id, own.session_id}

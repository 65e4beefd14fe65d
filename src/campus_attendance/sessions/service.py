from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from ..common.datetime_utils import now_local
from ..common.validators import require_int_in_range, require_non_empty, unique_in_order
from ..core.constants import (
    DEFAULT_LIST_LIMIT,
    MAX_CHECK_IN_DURATION_SECONDS,
    MAX_PERIOD,
    MIN_CHECK_IN_DURATION_SECONDS,
    MIN_PERIOD,
)
from ..core.enums import Action, RecordStatus, Role, SessionStatus
from ..core.exceptions import InvalidStateError, NotFoundError, SessionClosedError, ValidationError
from ..policy.authorization import Actor, can_perform, require
from ..qr.generator import QrTokenGenerator
from ..roster.repository import LeaveLookup, RosterDirectory
from .model import AttendanceRecord, AttendanceSession, CourseInfo, QrToken
from .repository import SessionQuery, SessionRepository

logger = logging.getLogger(__name__)

# Overriding away from these requires a written reason.
_REASON_REQUIRED_FROM = frozenset({RecordStatus.PRESENT, RecordStatus.LEAVE})


def _new_session_id() -> str:
    return uuid.uuid4().hex


class SessionService:
    """Use cases: create, observe/auto-close, close, override, rotate QR, read."""

    def __init__(
        self,
        sessions: SessionRepository,
        roster: RosterDirectory,
        leaves: LeaveLookup,
        *,
        qr_generator: Optional[QrTokenGenerator] = None,
        id_factory: Callable[[], str] = _new_session_id,
    ):
        self._sessions = sessions
        self._roster = roster
        self._leaves = leaves
        self._qr = qr_generator or QrTokenGenerator()
        self._id_factory = id_factory

    # ------------------------------------------------------------------ create

    @staticmethod
    def _validate_course_info(course_info: CourseInfo) -> CourseInfo:
        if course_info is None:
            raise ValidationError("Course info is required")
        name = require_non_empty(course_info.course_name, "Course name")
        location = require_non_empty(course_info.location, "Location")
        periods = tuple(course_info.periods or ())
        if not periods:
            raise ValidationError("Periods must not be empty")
        for p in periods:
            require_int_in_range(p, "Period", MIN_PERIOD, MAX_PERIOD)
        return CourseInfo(course_name=name, location=location, periods=tuple(sorted(set(periods))))

    def _seed_records(self, class_ids: Sequence[str], check_in_date: date) -> tuple[AttendanceRecord, ...]:
        on_leave: dict[str, bool] = {}
        records: list[AttendanceRecord] = []
        for class_id in class_ids:
            for student_id in sorted(self._roster.get_students_in_class(class_id)):
                if student_id not in on_leave:
                    on_leave[student_id] = bool(self._leaves.has_approved_leave(student_id, check_in_date))
                status = RecordStatus.LEAVE if on_leave[student_id] else RecordStatus.PENDING
                records.append(AttendanceRecord(student_id=student_id, class_id=class_id, status=status))
        return tuple(records)

    def create_session(
        self,
        *,
        actor: Actor,
        class_ids: Iterable[str],
        course_info: CourseInfo,
        check_in_duration_seconds: int,
        check_in_date: date,
        now: datetime | None = None,
    ) -> AttendanceSession:
        now = now or now_local()

        class_ids = unique_in_order(str(c).strip() for c in (class_ids or ()) if c and str(c).strip())
        if not class_ids:
            raise ValidationError("Class id list must not be empty")
        course_info = self._validate_course_info(course_info)
        duration = require_int_in_range(
            check_in_duration_seconds,
            "Check-in duration",
            MIN_CHECK_IN_DURATION_SECONDS,
            MAX_CHECK_IN_DURATION_SECONDS,
        )
        if not isinstance(check_in_date, date):
            raise ValidationError("Check-in date is required")

        # All-or-nothing: one denied class rejects the whole joint session.
        require(actor, Action.CREATE, class_ids)

        records = self._seed_records(class_ids, check_in_date)
        session_id = self._id_factory()
        token = self._qr.issue(session_id, now=now, not_after=now + timedelta(seconds=duration))
        session = AttendanceSession(
            session_id=session_id,
            class_ids=class_ids,
            course_info=course_info,
            status=SessionStatus.ACTIVE,
            created_by=actor.user_id,
            created_at=now,
            check_in_duration_seconds=duration,
            check_in_date=check_in_date,
            qr_token=token,
            records=records,
        )
        self._sessions.add(session)

        logger.info(
            "attendance session created id=%s classes=%s records=%d by=%s",
            session_id,
            ",".join(class_ids),
            len(records),
            actor.user_id,
        )
        return session

    # ------------------------------------------------------------ transitions

    def _load(self, session_id: str) -> AttendanceSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"Attendance session {session_id} not found")
        return session

    def _close_if_expired(self, session_id: str, now: datetime) -> tuple[AttendanceSession, bool]:
        fired = []

        def _auto_close(s: AttendanceSession) -> Optional[AttendanceSession]:
            if s.status == SessionStatus.ACTIVE and s.is_expired(now):
                fired.append(True)
                return s.closed(now=now)
            return None

        session = self._sessions.update(session_id, _auto_close)
        if fired:
            logger.info("attendance session auto-closed id=%s expired_at=%s", session_id, session.expired_at.isoformat())
        return session, bool(fired)

    def observe_and_maybe_close(self, session_id: str, *, now: datetime | None = None) -> AttendanceSession:
        """Idempotent: concurrent callers agree on a single ACTIVE -> CLOSED transition."""
        session, _ = self._close_if_expired(session_id, now or now_local())
        return session

    def close_session(self, *, actor: Actor, session_id: str, now: datetime | None = None) -> AttendanceSession:
        now = now or now_local()
        session = self._load(session_id)
        require(actor, Action.CLOSE, session.class_ids, owner_id=session.created_by)

        def _close(s: AttendanceSession) -> AttendanceSession:
            if s.status == SessionStatus.CLOSED:
                raise InvalidStateError("Attendance session is already closed")
            return s.closed(now=now, closed_by=actor.user_id)

        closed = self._sessions.update(session_id, _close)
        logger.info("attendance session closed id=%s by=%s", session_id, actor.user_id)
        return closed

    def override_record(
        self,
        *,
        actor: Actor,
        session_id: str,
        student_id: str,
        new_status: RecordStatus | str,
        reason: Optional[str] = None,
        class_id: Optional[str] = None,
        now: datetime | None = None,
    ) -> AttendanceRecord:
        """Manual correction; allowed after closure and never touches check_in_time."""

        now = now or now_local()
        session = self._load(session_id)
        record = session.find_record(student_id, class_id)
        if record is None:
            raise NotFoundError(f"Student {student_id} has no record in session {session_id}")
        require(actor, Action.OVERRIDE, [record.class_id])

        try:
            new_status = RecordStatus(new_status)
        except ValueError:
            raise ValidationError(f"Unknown attendance status: {new_status!r}")
        reason = (reason or "").strip() or None

        updated: list[AttendanceRecord] = []

        def _override(s: AttendanceSession) -> AttendanceSession:
            current = s.find_record(record.student_id, record.class_id)
            if current.status in _REASON_REQUIRED_FROM and not reason:
                raise ValidationError(f"A reason is required to change a {current.status.value} record")
            new_record = replace(current, status=new_status, reason=reason, updated_by=actor.user_id, updated_at=now)
            updated.append(new_record)
            return s.with_record(new_record)

        self._sessions.update(session_id, _override)
        logger.info(
            "attendance record overridden session=%s student=%s class=%s status=%s by=%s",
            session_id,
            record.student_id,
            record.class_id,
            new_status.value,
            actor.user_id,
        )
        return updated[0]

    def rotate_qr(self, *, actor: Actor, session_id: str, now: datetime | None = None) -> QrToken:
        now = now or now_local()
        session = self._load(session_id)
        require(actor, Action.ROTATE_QR, session.class_ids)

        closed = []

        def _rotate(s: AttendanceSession) -> Optional[AttendanceSession]:
            if s.status != SessionStatus.ACTIVE:
                closed.append(True)
                return None
            if s.is_expired(now):
                closed.append(True)
                return s.closed(now=now)
            return self._qr.rotate(s, now=now)

        rotated = self._sessions.update(session_id, _rotate)
        if closed:
            raise SessionClosedError("Attendance session is closed")
        logger.info("qr token rotated session=%s by=%s", session_id, actor.user_id)
        return rotated.qr_token

    # ------------------------------------------------------------------ reads

    def _refresh(self, session: AttendanceSession, now: datetime) -> AttendanceSession:
        """Lazy auto-close on read. Best effort: a failed close never fails the read."""

        if session.status != SessionStatus.ACTIVE or not session.is_expired(now):
            return session
        try:
            return self.observe_and_maybe_close(session.session_id, now=now)
        except Exception:
            logger.exception("auto-close failed for session %s; returning last known state", session.session_id)
            return session

    def get_session(self, *, actor: Actor, session_id: str, now: datetime | None = None) -> AttendanceSession:
        now = now or now_local()
        session = self._load(session_id)
        require(actor, Action.VIEW, session.class_ids)

        session = self._refresh(session, now)
        if actor.role == Role.STUDENT:
            return session.student_view(actor.user_id)
        return session

    def list_sessions(
        self,
        *,
        actor: Actor,
        class_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        status: SessionStatus | str | None = None,
        now: datetime | None = None,
    ) -> list[AttendanceSession]:
        now = now or now_local()
        if start_date and end_date and start_date > end_date:
            raise ValidationError("Start date must be on or before end date")
        if status is not None:
            try:
                status = SessionStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown session status: {status!r}")

        if class_id:
            require(actor, Action.LIST, [class_id])
            scope: Optional[frozenset[str]] = frozenset({class_id})
        elif actor.role == Role.ADMIN:
            scope = None
        else:
            if not actor.class_ids:
                return []
            require(actor, Action.LIST, actor.class_ids)
            scope = actor.class_ids

        found = self._sessions.list_sessions(
            SessionQuery(class_ids=scope, start_date=start_date, end_date=end_date, limit=None)
        )
        out: list[AttendanceSession] = []
        for s in found:
            # The query matches on any shared class; a joint session is
            # listed only when get_session would show it too.
            if not can_perform(actor, Action.VIEW, s.class_ids):
                continue
            s = self._refresh(s, now)
            if status is not None and s.status != status:
                continue
            out.append(s.student_view(actor.user_id) if actor.role == Role.STUDENT else s)
        return out[:DEFAULT_LIST_LIMIT]

    def close_expired(self, *, now: datetime | None = None) -> int:
        """Sweep for the periodic poller; returns how many sessions were closed."""

        now = now or now_local()
        closed = 0
        for s in self._sessions.list_sessions(SessionQuery(status=SessionStatus.ACTIVE, limit=None)):
            if not s.is_expired(now):
                continue
            _, fired = self._close_if_expired(s.session_id, now)
            closed += int(fired)
        if closed:
            logger.info("expired sessions closed count=%d", closed)
        return closed

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional, Sequence

from ..core.enums import Action, RecordStatus, Role
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..policy.authorization import Actor, require
from ..sessions.model import AttendanceRecord, AttendanceSession
from ..sessions.repository import SessionQuery, SessionRepository

_ATTENDED = (RecordStatus.PRESENT, RecordStatus.LATE)
# Not expected to attend, so left out of the rate denominator.
_EXCLUDED = (RecordStatus.LEAVE, RecordStatus.EXCUSED)


@dataclass(frozen=True)
class AttendanceStats:
    total: int
    counts: dict[RecordStatus, int]
    attendance_rate: float
    session_count: int = 1
    details: Optional[list[dict]] = field(default=None)

    def to_dict(self) -> dict:
        data = {
            "total": self.total,
            "counts": {s.value: n for s, n in self.counts.items()},
            "attendanceRate": self.attendance_rate,
            "sessionCount": self.session_count,
        }
        if self.details is not None:
            data["details"] = self.details
        return data


def _rate(counts: dict[RecordStatus, int], total: int) -> float:
    expected = total - sum(counts[s] for s in _EXCLUDED)
    if expected <= 0:
        return 0.0
    return round(sum(counts[s] for s in _ATTENDED) / expected, 4)


def summarize(records: Iterable[AttendanceRecord], *, session_count: int = 1) -> AttendanceStats:
    """Counts per status; every status appears, so the counts sum to the total."""

    counts = {s: 0 for s in RecordStatus}
    total = 0
    for r in records:
        counts[r.status] += 1
        total += 1
    return AttendanceStats(total=total, counts=counts, attendance_rate=_rate(counts, total), session_count=session_count)


def _detail_row(session: AttendanceSession, r: AttendanceRecord) -> dict:
    return {
        "sessionId": session.session_id,
        "checkInDate": session.check_in_date.isoformat(),
        "courseName": session.course_info.course_name,
        "studentId": r.student_id,
        "classId": r.class_id,
        "status": r.status.value,
        "checkInTime": r.check_in_time.isoformat() if r.check_in_time else None,
        "reason": r.reason,
    }


class StatisticsService:
    """Live, session-scoped statistics.

    Sessions are immutable snapshots, so a record is never observed
    half-way through a check-in.
    """

    def __init__(self, sessions: SessionRepository):
        self._sessions = sessions

    def _scoped_sessions(
        self,
        actor: Actor,
        *,
        session_ids: Optional[Sequence[str]],
        class_id: Optional[str],
        start_date: Optional[date],
        end_date: Optional[date],
    ) -> tuple[list[AttendanceSession], Optional[frozenset[str]]]:
        if session_ids:
            found: list[AttendanceSession] = []
            for sid in session_ids:
                s = self._sessions.get(sid)
                if s is None:
                    raise NotFoundError(f"Attendance session {sid} not found")
                require(actor, Action.STATISTICS, s.class_ids)
                if start_date is not None and s.check_in_date < start_date:
                    continue
                if end_date is not None and s.check_in_date > end_date:
                    continue
                found.append(s)
            scope = None if actor.role == Role.ADMIN else actor.class_ids
            if class_id:
                scope = frozenset({class_id}) if scope is None else scope & {class_id}
            return found, scope

        if class_id:
            require(actor, Action.STATISTICS, [class_id])
            scope: Optional[frozenset[str]] = frozenset({class_id})
        elif actor.role == Role.ADMIN:
            scope = None
        else:
            if not actor.class_ids:
                return [], frozenset()
            require(actor, Action.STATISTICS, actor.class_ids)
            scope = actor.class_ids

        query = SessionQuery(class_ids=scope, start_date=start_date, end_date=end_date, limit=None)
        return list(self._sessions.list_sessions(query)), scope

    def aggregate(
        self,
        *,
        actor: Actor,
        session_ids: Optional[Sequence[str]] = None,
        class_id: Optional[str] = None,
        student_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> AttendanceStats:
        if start_date and end_date and start_date > end_date:
            raise ValidationError("Start date must be on or before end date")
        if actor.role == Role.STUDENT and student_id and student_id != actor.user_id:
            raise AuthorizationError("Students may only filter statistics by their own id")

        sessions, scope = self._scoped_sessions(
            actor,
            session_ids=session_ids,
            class_id=class_id,
            start_date=start_date,
            end_date=end_date,
        )

        selected: list[tuple[AttendanceSession, AttendanceRecord]] = []
        for s in sessions:
            for r in s.records:
                if scope is not None and r.class_id not in scope:
                    continue
                if student_id and r.student_id != student_id:
                    continue
                selected.append((s, r))

        stats = summarize((r for _, r in selected), session_count=len(sessions))

        # Students only ever see their own rows.
        show_details = actor.role != Role.STUDENT or (student_id is not None and student_id == actor.user_id)
        if not show_details:
            return stats
        details = [_detail_row(s, r) for s, r in selected]
        return AttendanceStats(
            total=stats.total,
            counts=stats.counts,
            attendance_rate=stats.attendance_rate,
            session_count=stats.session_count,
            details=details,
        )

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import mysql.connector

from ..core.enums import RecordStatus, SessionStatus
from ..core.exceptions import NotFoundError, ValidationError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, normalize_mysql_date
from .model import AttendanceRecord, AttendanceSession, CourseInfo, QrToken
from .repository import SessionMutator, SessionQuery, SessionRepository

_SESSION_COLUMNS = """
    session_id, course_name, location, periods, status, created_by, created_at,
    check_in_duration_seconds, check_in_date, qr_token, qr_issued_at, qr_expires_at,
    closed_at, closed_by
"""


def _periods_to_str(periods: Sequence[int]) -> str:
    return ",".join(str(int(p)) for p in periods)


def _periods_from_str(value: str) -> tuple[int, ...]:
    return tuple(int(p) for p in (value or "").split(",") if p.strip())


class MySQLSessionRepository(SessionRepository):
    """Sessions across three tables; ``update`` locks the session row (FOR UPDATE)."""

    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    # --------------------------------------------------------------- mapping

    @staticmethod
    def _load_children(cur, session_id: str) -> tuple[tuple[str, ...], tuple[AttendanceRecord, ...]]:
        cur.execute(
            "SELECT class_id FROM attendance_session_classes WHERE session_id=%s ORDER BY position",
            (session_id,),
        )
        class_ids = tuple(r["class_id"] for r in fetchall(cur))
        cur.execute(
            """
            SELECT student_id, class_id, status, check_in_time, location, device_info, reason, updated_by, updated_at
            FROM attendance_session_records
            WHERE session_id=%s
            ORDER BY position
            """,
            (session_id,),
        )
        records = tuple(
            AttendanceRecord(
                student_id=r["student_id"],
                class_id=r["class_id"],
                status=RecordStatus(r["status"]),
                check_in_time=r.get("check_in_time"),
                location=r.get("location"),
                device_info=r.get("device_info"),
                reason=r.get("reason"),
                updated_by=r.get("updated_by"),
                updated_at=r.get("updated_at"),
            )
            for r in fetchall(cur)
        )
        return class_ids, records

    def _to_session(self, cur, row: Dict[str, Any]) -> AttendanceSession:
        class_ids, records = self._load_children(cur, row["session_id"])
        return AttendanceSession(
            session_id=row["session_id"],
            class_ids=class_ids,
            course_info=CourseInfo(
                course_name=row["course_name"],
                location=row["location"],
                periods=_periods_from_str(row["periods"]),
            ),
            status=SessionStatus(row["status"]),
            created_by=row["created_by"],
            created_at=row["created_at"],
            check_in_duration_seconds=int(row["check_in_duration_seconds"]),
            check_in_date=normalize_mysql_date(row["check_in_date"]),
            qr_token=QrToken(
                value=row["qr_token"],
                issued_at=row["qr_issued_at"],
                expires_at=row["qr_expires_at"],
            ),
            records=records,
            closed_at=row.get("closed_at"),
            closed_by=row.get("closed_by"),
        )

    # ---------------------------------------------------------------- writes

    def add(self, session: AttendanceSession) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            try:
                cur.execute(
                    f"""
                    INSERT INTO attendance_sessions({_SESSION_COLUMNS})
                    VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    """,
                    (
                        session.session_id,
                        session.course_info.course_name,
                        session.course_info.location,
                        _periods_to_str(session.course_info.periods),
                        session.status.value,
                        session.created_by,
                        session.created_at,
                        session.check_in_duration_seconds,
                        session.check_in_date,
                        session.qr_token.value,
                        session.qr_token.issued_at,
                        session.qr_token.expires_at,
                        session.closed_at,
                        session.closed_by,
                    ),
                )
            except mysql.connector.IntegrityError:
                raise ValidationError(f"Session {session.session_id} already exists")
            cur.executemany(
                "INSERT INTO attendance_session_classes(session_id, class_id, position) VALUES(%s,%s,%s)",
                [(session.session_id, c, i) for i, c in enumerate(session.class_ids)],
            )
            if session.records:
                cur.executemany(
                    """
                    INSERT INTO attendance_session_records(
                        session_id, student_id, class_id, position, status, check_in_time,
                        location, device_info, reason, updated_by, updated_at
                    )
                    VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    """,
                    [
                        (
                            session.session_id,
                            r.student_id,
                            r.class_id,
                            i,
                            r.status.value,
                            r.check_in_time,
                            r.location,
                            r.device_info,
                            r.reason,
                            r.updated_by,
                            r.updated_at,
                        )
                        for i, r in enumerate(session.records)
                    ],
                )

    @staticmethod
    def _write_changes(cur, before: AttendanceSession, after: AttendanceSession) -> None:
        cur.execute(
            """
            UPDATE attendance_sessions
            SET status=%s, qr_token=%s, qr_issued_at=%s, qr_expires_at=%s, closed_at=%s, closed_by=%s
            WHERE session_id=%s
            """,
            (
                after.status.value,
                after.qr_token.value,
                after.qr_token.issued_at,
                after.qr_token.expires_at,
                after.closed_at,
                after.closed_by,
                after.session_id,
            ),
        )

        previous = {(r.student_id, r.class_id): r for r in before.records}
        changed = [r for r in after.records if previous.get((r.student_id, r.class_id)) != r]
        if not changed:
            return
        cur.executemany(
            """
            UPDATE attendance_session_records
            SET status=%s, check_in_time=%s, location=%s, device_info=%s, reason=%s, updated_by=%s, updated_at=%s
            WHERE session_id=%s AND student_id=%s AND class_id=%s
            """,
            [
                (
                    r.status.value,
                    r.check_in_time,
                    r.location,
                    r.device_info,
                    r.reason,
                    r.updated_by,
                    r.updated_at,
                    after.session_id,
                    r.student_id,
                    r.class_id,
                )
                for r in changed
            ],
        )

    def update(self, session_id: str, mutate: SessionMutator) -> AttendanceSession:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_SESSION_COLUMNS} FROM attendance_sessions WHERE session_id=%s FOR UPDATE",
                (session_id,),
            )
            row = fetchone(cur)
            if not row:
                raise NotFoundError(f"Attendance session {session_id} not found")
            current = self._to_session(cur, row)

            updated = mutate(current)
            if updated is None:
                return current
            if updated.session_id != session_id:
                raise ValidationError("Session id is immutable")
            self._write_changes(cur, current, updated)
            return updated

    # ----------------------------------------------------------------- reads

    def get(self, session_id: str) -> Optional[AttendanceSession]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_SESSION_COLUMNS} FROM attendance_sessions WHERE session_id=%s", (session_id,))
            row = fetchone(cur)
            if not row:
                return None
            return self._to_session(cur, row)

    def list_sessions(self, query: SessionQuery) -> Sequence[AttendanceSession]:
        clauses = ["1=1"]
        params: List[object] = []

        if query.class_ids is not None:
            if not query.class_ids:
                return []
            placeholders = ",".join(["%s"] * len(query.class_ids))
            clauses.append(
                f"s.session_id IN (SELECT session_id FROM attendance_session_classes WHERE class_id IN ({placeholders}))"
            )
            params.extend(sorted(query.class_ids))
        if query.start_date is not None:
            clauses.append("s.check_in_date >= %s")
            params.append(query.start_date)
        if query.end_date is not None:
            clauses.append("s.check_in_date <= %s")
            params.append(query.end_date)
        if query.status is not None:
            clauses.append("s.status = %s")
            params.append(query.status.value)
        if query.created_by is not None:
            clauses.append("s.created_by = %s")
            params.append(query.created_by)

        sql = f"SELECT {_SESSION_COLUMNS} FROM attendance_sessions s WHERE {' AND '.join(clauses)} ORDER BY s.created_at DESC"
        if query.limit is not None:
            sql += " LIMIT %s"
            params.append(int(query.limit))

        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(sql, tuple(params))
            rows = fetchall(cur)
            return [self._to_session(cur, r) for r in rows]

from __future__ import annotations

from datetime import date
from typing import Set

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone
from .repository import LeaveLookup, RosterDirectory

APPROVED = "APPROVED"


class MySQLRosterDirectory(RosterDirectory):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_students_in_class(self, class_id: str) -> Set[str]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT user_id FROM class_members WHERE class_id=%s", (class_id,))
            return {str(r["user_id"]) for r in fetchall(cur)}

    def classes_managed_by(self, user_id: str) -> Set[str]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT class_id FROM class_counselors WHERE counselor_id=%s", (user_id,))
            return {str(r["class_id"]) for r in fetchall(cur)}

    def classes_of(self, user_id: str) -> Set[str]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT class_id FROM class_members WHERE user_id=%s", (user_id,))
            return {str(r["class_id"]) for r in fetchall(cur)}


class MySQLLeaveLookup(LeaveLookup):
    """Approved leave requests whose date span covers the day."""

    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def has_approved_leave(self, student_id: str, on_date: date) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT 1 AS found
                FROM leave_requests
                WHERE student_id=%s AND status=%s AND start_date <= %s AND end_date >= %s
                LIMIT 1
                """,
                (student_id, APPROVED, on_date, on_date),
            )
            return fetchone(cur) is not None

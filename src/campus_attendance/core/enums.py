from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Roles resolved by the upstream auth layer."""

    ADMIN = "ADMIN"
    COUNSELOR = "COUNSELOR"
    STUDENT_LEADER = "STUDENT_LEADER"
    STUDENT = "STUDENT"


class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class RecordStatus(str, Enum):
    """Per-student status inside an attendance session."""

    PENDING = "PENDING"
    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"
    LEAVE = "LEAVE"
    EXCUSED = "EXCUSED"


class Action(str, Enum):
    CREATE = "CREATE"
    CLOSE = "CLOSE"
    OVERRIDE = "OVERRIDE"
    VIEW = "VIEW"
    LIST = "LIST"
    STATISTICS = "STATISTICS"
    ROTATE_QR = "ROTATE_QR"
    CHECK_IN = "CHECK_IN"

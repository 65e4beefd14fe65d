from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from typing import Optional

from ..core.enums import RecordStatus, SessionStatus


@dataclass(frozen=True)
class CourseInfo:
    course_name: str
    location: str
    periods: tuple[int, ...]

    def to_dict(self) -> dict:
        return {"courseName": self.course_name, "location": self.location, "periods": list(self.periods)}


@dataclass(frozen=True)
class QrToken:
    """Current check-in credential of a session."""

    value: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class AttendanceRecord:
    """One student's status within a session (one per student and class)."""

    student_id: str
    class_id: str
    status: RecordStatus = RecordStatus.PENDING
    check_in_time: Optional[datetime] = None
    location: Optional[str] = None
    device_info: Optional[str] = None
    reason: Optional[str] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "studentId": self.student_id,
            "classId": self.class_id,
            "status": self.status.value,
            "checkInTime": self.check_in_time.isoformat() if self.check_in_time else None,
            "location": self.location,
            "deviceInfo": self.device_info,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class AttendanceSession:
    """Aggregate root. Immutable: every change goes through the repository."""

    session_id: str
    class_ids: tuple[str, ...]
    course_info: CourseInfo
    status: SessionStatus
    created_by: str
    created_at: datetime
    check_in_duration_seconds: int
    check_in_date: date
    qr_token: QrToken
    records: tuple[AttendanceRecord, ...] = ()
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None

    @property
    def expired_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.check_in_duration_seconds)

    def is_expired(self, now: datetime) -> bool:
        return now > self.expired_at

    def is_open(self, now: datetime) -> bool:
        return self.status == SessionStatus.ACTIVE and not self.is_expired(now)

    def records_for(self, student_id: str) -> tuple[AttendanceRecord, ...]:
        return tuple(r for r in self.records if r.student_id == student_id)

    def find_record(self, student_id: str, class_id: Optional[str] = None) -> Optional[AttendanceRecord]:
        for r in self.records:
            if r.student_id == student_id and (class_id is None or r.class_id == class_id):
                return r
        return None

    def with_record(self, record: AttendanceRecord) -> "AttendanceSession":
        records = tuple(
            record if (r.student_id, r.class_id) == (record.student_id, record.class_id) else r
            for r in self.records
        )
        return replace(self, records=records)

    def closed(self, *, now: datetime, closed_by: Optional[str] = None) -> "AttendanceSession":
        return replace(self, status=SessionStatus.CLOSED, closed_at=now, closed_by=closed_by)

    def student_view(self, student_id: str) -> "AttendanceSession":
        """Only the viewer's own records; other students' statuses stay hidden."""
        return replace(self, records=self.records_for(student_id))

    def to_dict(self, *, include_token: bool = True) -> dict:
        data = {
            "sessionId": self.session_id,
            "classIds": list(self.class_ids),
            "courseInfo": self.course_info.to_dict(),
            "status": self.status.value,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat(),
            "checkInDuration": self.check_in_duration_seconds,
            "checkInDate": self.check_in_date.isoformat(),
            "expiredAt": self.expired_at.isoformat(),
            "closedAt": self.closed_at.isoformat() if self.closed_at else None,
            "records": [r.to_dict() for r in self.records],
        }
        if include_token:
            data["qrCode"] = {
                "code": self.qr_token.value,
                "expiresAt": self.qr_token.expires_at.isoformat(),
            }
        return data


@dataclass(frozen=True)
class CheckInResult:
    session_id: str
    student_id: str
    class_id: str
    status: RecordStatus
    check_in_time: datetime

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "studentId": self.student_id,
            "classId": self.class_id,
            "status": self.status.value,
            "checkInTime": self.check_in_time.isoformat(),
        }

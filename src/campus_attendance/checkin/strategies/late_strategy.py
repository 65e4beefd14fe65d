from __future__ import annotations

from datetime import datetime

from ...core.enums import RecordStatus
from ...sessions.model import AttendanceSession
from .base import CheckInStrategy


class LateStrategy(CheckInStrategy):
    """Check-in after the late threshold."""

    def decide_checkin(self, *, now: datetime, session: AttendanceSession) -> RecordStatus:
        return RecordStatus.LATE

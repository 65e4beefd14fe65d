from __future__ import annotations

from datetime import datetime

from ...core.enums import RecordStatus
from ...sessions.model import AttendanceSession
from .base import CheckInStrategy


class PresentStrategy(CheckInStrategy):
    """Check-in inside the window (or no late threshold configured)."""

    def decide_checkin(self, *, now: datetime, session: AttendanceSession) -> RecordStatus:
        return RecordStatus.PRESENT

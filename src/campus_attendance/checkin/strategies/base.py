from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from ...core.enums import RecordStatus
from ...sessions.model import AttendanceSession


class CheckInStrategy(ABC):
    """Strategy Pattern: encapsulate how we grade a successful check-in."""

    @abstractmethod
    def decide_checkin(self, *, now: datetime, session: AttendanceSession) -> RecordStatus:
        raise NotImplementedError

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..sessions.model import AttendanceSession
from .strategies.base import CheckInStrategy
from .strategies.late_strategy import LateStrategy
from .strategies.present_strategy import PresentStrategy


@dataclass
class CheckInStrategyFactory:
    """Factory Pattern: choose appropriate strategy based on rules.

    ``late_after_seconds`` counts from session creation; ``None`` disables LATE.
    """

    late_after_seconds: Optional[int] = None

    def for_checkin(self, *, now: datetime, session: AttendanceSession) -> CheckInStrategy:
        if self.late_after_seconds is None:
            return PresentStrategy()

        if now <= session.created_at + timedelta(seconds=int(self.late_after_seconds)):
            return PresentStrategy()
        return LateStrategy()

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional, Protocol, Sequence

from ..core.constants import DEFAULT_LIST_LIMIT
from ..core.enums import SessionStatus
from .model import AttendanceSession

# Returns the new session value, or None to leave the stored one untouched.
SessionMutator = Callable[[AttendanceSession], Optional[AttendanceSession]]


@dataclass(frozen=True)
class SessionQuery:
    """Listing filter. ``class_ids=None`` means no class restriction."""

    class_ids: Optional[frozenset[str]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[SessionStatus] = None
    created_by: Optional[str] = None
    limit: Optional[int] = DEFAULT_LIST_LIMIT

    def matches(self, session: AttendanceSession) -> bool:
        if self.class_ids is not None and not (set(session.class_ids) & self.class_ids):
            return False
        if self.start_date is not None and session.check_in_date < self.start_date:
            return False
        if self.end_date is not None and session.check_in_date > self.end_date:
            return False
        if self.status is not None and session.status != self.status:
            return False
        if self.created_by is not None and session.created_by != self.created_by:
            return False
        return True


class SessionRepository(Protocol):
    def add(self, session: AttendanceSession) -> None:
        raise NotImplementedError

    def get(self, session_id: str) -> Optional[AttendanceSession]:
        raise NotImplementedError

    def update(self, session_id: str, mutate: SessionMutator) -> AttendanceSession:
        """Atomic read-modify-write of one session.

        ``mutate`` runs while no other update of the same session can
        interleave; exceptions it raises abort the update and propagate.
        Raises NotFoundError when the session does not exist.
        """

        raise NotImplementedError

    def list_sessions(self, query: SessionQuery) -> Sequence[AttendanceSession]:
        """Newest first."""

        raise NotImplementedError

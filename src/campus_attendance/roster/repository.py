from __future__ import annotations

from datetime import date
from typing import Protocol, Set


class RosterDirectory(Protocol):
    """Class membership lookups.

    Note (DIP): services depend on this interface, not on a concrete DB.
    """

    def get_students_in_class(self, class_id: str) -> Set[str]:
        raise NotImplementedError

    def classes_managed_by(self, user_id: str) -> Set[str]:
        raise NotImplementedError

    def classes_of(self, user_id: str) -> Set[str]:
        raise NotImplementedError


class LeaveLookup(Protocol):
    def has_approved_leave(self, student_id: str, on_date: date) -> bool:
        raise NotImplementedError

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..core.enums import Action, Role
from ..core.exceptions import AuthorizationError
from ..roster.repository import RosterDirectory


@dataclass(frozen=True)
class Actor:
    """Identity context of the current request, scoped to classes.

    ``class_ids`` holds the classes a counselor manages, or the classes a
    student/student leader belongs to. Admins need no scope.
    """

    user_id: str
    role: Role
    class_ids: frozenset[str] = field(default_factory=frozenset)


_COUNSELOR_ACTIONS = frozenset(
    {Action.CREATE, Action.CLOSE, Action.OVERRIDE, Action.VIEW, Action.LIST, Action.STATISTICS, Action.ROTATE_QR}
)
_LEADER_ACTIONS = frozenset({Action.CREATE, Action.VIEW, Action.LIST, Action.STATISTICS, Action.ROTATE_QR})
_STUDENT_SCOPED_ACTIONS = frozenset({Action.VIEW, Action.LIST, Action.STATISTICS})


def can_perform(
    actor: Actor,
    action: Action,
    target_class_ids: Iterable[str],
    *,
    owner_id: Optional[str] = None,
) -> bool:
    """Pure role/class decision. Anything not explicitly allowed is denied."""

    targets = frozenset(target_class_ids)

    if actor.role == Role.ADMIN:
        return True

    if actor.role == Role.STUDENT:
        if action == Action.CHECK_IN:
            return True
        if action in _STUDENT_SCOPED_ACTIONS:
            return bool(targets & actor.class_ids)
        return False

    if not targets:
        return False

    if actor.role == Role.COUNSELOR:
        return action in _COUNSELOR_ACTIONS and targets <= actor.class_ids

    if actor.role == Role.STUDENT_LEADER:
        if not targets <= actor.class_ids:
            return False
        if action == Action.CLOSE:
            return owner_id is not None and owner_id == actor.user_id
        return action in _LEADER_ACTIONS

    return False


def require(
    actor: Actor,
    action: Action,
    target_class_ids: Iterable[str],
    *,
    owner_id: Optional[str] = None,
) -> None:
    if not can_perform(actor, action, target_class_ids, owner_id=owner_id):
        raise AuthorizationError(f"{actor.role.value} {actor.user_id} may not {action.value.lower()} these classes")


class AuthorizationPolicy:
    """Turns the opaque (user id, role) pair into a class-scoped Actor."""

    def __init__(self, roster: RosterDirectory):
        self._roster = roster

    def resolve_actor(self, user_id: str, role: Role | str) -> Actor:
        try:
            role = Role(role)
        except ValueError:
            raise AuthorizationError(f"Unknown role: {role!r}")

        if role == Role.ADMIN:
            class_ids: set[str] = set()
        elif role == Role.COUNSELOR:
            class_ids = set(self._roster.classes_managed_by(user_id))
        else:
            class_ids = set(self._roster.classes_of(user_id))
        return Actor(user_id=str(user_id), role=role, class_ids=frozenset(class_ids))

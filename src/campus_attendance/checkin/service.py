from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from ..common.datetime_utils import now_local
from ..core.enums import Action, RecordStatus, SessionStatus
from ..core.exceptions import (
    AlreadyOnLeaveError,
    DuplicateCheckInError,
    InvalidStateError,
    InvalidTokenError,
    NotEligibleError,
    NotFoundError,
    SessionClosedError,
)
from ..policy.authorization import Actor, require
from ..qr.generator import QrTokenGenerator
from ..sessions.model import AttendanceSession, CheckInResult
from ..sessions.repository import SessionRepository
from .factory import CheckInStrategyFactory

logger = logging.getLogger(__name__)


class CheckInService:
    """Validates and commits one check-in attempt.

    Every precondition after loading is re-checked inside the repository's
    atomic update, against the session value current at commit time. Two
    concurrent attempts by the same student therefore produce exactly one
    success; the other sees ``check_in_time`` set.
    """

    def __init__(
        self,
        sessions: SessionRepository,
        *,
        strategy_factory: CheckInStrategyFactory | None = None,
    ):
        self._sessions = sessions
        self._factory = strategy_factory or CheckInStrategyFactory()

    @staticmethod
    def _verify_token(session: AttendanceSession, presented_token: str, now: datetime) -> None:
        if not QrTokenGenerator.matches(session.qr_token, presented_token):
            raise InvalidTokenError("Invalid QR code", reason="mismatch")
        if session.qr_token.is_expired(now):
            raise InvalidTokenError("QR code has expired", reason="expired")

    def check_in(
        self,
        *,
        actor: Actor,
        session_id: str,
        presented_token: str,
        location: Optional[str] = None,
        device_info: Optional[str] = None,
        now: datetime | None = None,
    ) -> CheckInResult:
        now = now or now_local()
        require(actor, Action.CHECK_IN, ())
        student_id = actor.user_id

        if self._sessions.get(session_id) is None:
            raise NotFoundError(f"Attendance session {session_id} not found")

        committed: list[CheckInResult] = []
        closed: list[bool] = []

        def _commit(s: AttendanceSession) -> Optional[AttendanceSession]:
            if s.status != SessionStatus.ACTIVE:
                closed.append(True)
                return None
            if s.is_expired(now):
                # Auto-close as a side effect, then reject.
                closed.append(True)
                return s.closed(now=now)

            self._verify_token(s, presented_token, now)

            records = s.records_for(student_id)
            if not records:
                raise NotEligibleError("You are not enrolled in any class of this attendance session")
            if any(r.check_in_time is not None for r in records):
                raise DuplicateCheckInError("You have already checked in")

            record = next((r for r in records if r.status == RecordStatus.PENDING), None)
            if record is None:
                if any(r.status == RecordStatus.LEAVE for r in records):
                    raise AlreadyOnLeaveError("You are on approved leave; ask a counselor to change your status")
                raise InvalidStateError(f"Your record is already marked {records[0].status.value}")

            strategy = self._factory.for_checkin(now=now, session=s)
            status = strategy.decide_checkin(now=now, session=s)
            new_record = replace(
                record,
                status=status,
                check_in_time=now,
                location=location,
                device_info=device_info,
                updated_by=student_id,
                updated_at=now,
            )
            committed.append(
                CheckInResult(
                    session_id=s.session_id,
                    student_id=student_id,
                    class_id=record.class_id,
                    status=status,
                    check_in_time=now,
                )
            )
            return s.with_record(new_record)

        try:
            self._sessions.update(session_id, _commit)
        except InvalidTokenError as e:
            logger.info("check-in rejected session=%s student=%s token=%s", session_id, student_id, e.reason)
            raise

        if closed:
            logger.info("check-in rejected session=%s student=%s: session closed", session_id, student_id)
            raise SessionClosedError("Attendance session has ended")

        result = committed[0]
        logger.info(
            "check-in committed session=%s student=%s class=%s status=%s",
            session_id,
            student_id,
            result.class_id,
            result.status.value,
        )
        return result

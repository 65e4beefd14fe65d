from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Optional

from flask import Flask, g, jsonify, request

from ..common.datetime_utils import parse_iso_date
from ..container import Container
from ..core.enums import Role
from ..core.exceptions import (
    AlreadyOnLeaveError,
    AuthorizationError,
    DomainError,
    DuplicateCheckInError,
    InvalidStateError,
    InvalidTokenError,
    NotEligibleError,
    NotFoundError,
    SessionClosedError,
    StorageUnavailableError,
    ValidationError,
)
from ..qr.generator import render_png
from ..sessions.model import CourseInfo
from ..statistics.service import summarize

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"

_STATUS_BY_ERROR = (
    (ValidationError, 400),
    (InvalidTokenError, 400),
    (AuthorizationError, 403),
    (NotEligibleError, 403),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (SessionClosedError, 409),
    (DuplicateCheckInError, 409),
    (AlreadyOnLeaveError, 409),
)


def ok(data: Any = None, message: str = "OK", status: int = 200):
    return jsonify({"success": True, "message": message, "data": data}), status


def fail(message: str, status: int):
    return jsonify({"success": False, "message": message, "data": None}), status


def _optional_date(name: str):
    v = (request.args.get(name) or "").strip()
    return parse_iso_date(v) if v else None


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _optional_text(data: dict, key: str, max_length: int = 255) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return value or None


def _course_info(data: Any) -> CourseInfo:
    if not isinstance(data, dict):
        raise ValidationError("courseInfo must be an object")
    periods = data.get("periods") or []
    if not isinstance(periods, list):
        raise ValidationError("periods must be a list")
    return CourseInfo(
        course_name=str(data.get("courseName") or ""),
        location=str(data.get("location") or ""),
        periods=tuple(periods),
    )


def register(app: Flask, container: Container) -> None:
    @app.errorhandler(DomainError)
    def handle_domain_error(e: DomainError):
        for error_type, status in _STATUS_BY_ERROR:
            if isinstance(e, error_type):
                if isinstance(e, InvalidTokenError):
                    # One client-facing kind for wrong and stale codes.
                    return fail("Invalid or expired QR code", status)
                return fail(str(e), status)
        return fail(str(e), 400)

    @app.errorhandler(StorageUnavailableError)
    def handle_storage_error(e: StorageUnavailableError):
        logger.error("storage unavailable: %s", e)
        return fail("Storage temporarily unavailable", 503)

    def identity_required(view):
        """The upstream auth layer puts the verified identity in headers."""

        @wraps(view)
        def wrapper(*args, **kwargs):
            user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
            role = (request.headers.get(USER_ROLE_HEADER) or "").strip().upper()
            if not user_id or not role:
                return fail("Authentication required", 401)
            g.actor = container.policy.resolve_actor(user_id, role)
            return view(*args, **kwargs)

        return wrapper

    @app.route("/api/attendances", methods=["POST"], endpoint="create_attendance")
    @identity_required
    def create_attendance():
        data = _json_body()
        class_ids = data.get("classIds")
        if not isinstance(class_ids, list):
            raise ValidationError("classIds must be a non-empty list")
        duration = data.get("checkInDuration")
        if isinstance(duration, bool) or not isinstance(duration, int):
            raise ValidationError("checkInDuration must be an integer number of seconds")

        session = container.session_service.create_session(
            actor=g.actor,
            class_ids=[str(c) for c in class_ids],
            course_info=_course_info(data.get("courseInfo")),
            check_in_duration_seconds=duration,
            check_in_date=parse_iso_date(str(data.get("checkInDate") or "")),
        )
        return ok(
            {
                "attendanceId": session.session_id,
                "classIds": list(session.class_ids),
                "code": session.qr_token.value,
            },
            message="Attendance session created",
            status=201,
        )

    @app.route("/api/attendances/<attendance_id>/checkin", methods=["POST"], endpoint="check_in")
    @identity_required
    def check_in(attendance_id: str):
        data = _json_body()
        result = container.checkin_service.check_in(
            actor=g.actor,
            session_id=attendance_id,
            presented_token=str(data.get("code") or ""),
            location=_optional_text(data, "location"),
            device_info=_optional_text(data, "deviceInfo"),
        )
        return ok(result.to_dict(), message="Checked in")

    @app.route("/api/attendances/statistics", methods=["GET"], endpoint="attendance_statistics")
    @identity_required
    def attendance_statistics():
        raw_ids = (request.args.get("sessionIds") or "").strip()
        session_ids: Optional[list[str]] = [s.strip() for s in raw_ids.split(",") if s.strip()] or None
        stats = container.statistics_service.aggregate(
            actor=g.actor,
            session_ids=session_ids,
            class_id=(request.args.get("classId") or "").strip() or None,
            student_id=(request.args.get("studentId") or "").strip() or None,
            start_date=_optional_date("startDate"),
            end_date=_optional_date("endDate"),
        )
        return ok(stats.to_dict())

    @app.route("/api/attendances/<attendance_id>", methods=["GET"], endpoint="get_attendance")
    @identity_required
    def get_attendance(attendance_id: str):
        actor = g.actor
        session = container.session_service.get_session(actor=actor, session_id=attendance_id)
        if actor.role == Role.STUDENT:
            return ok(session.to_dict(include_token=False))
        data = session.to_dict()
        data["statistics"] = summarize(session.records).to_dict()
        return ok(data)

    @app.route("/api/attendances", methods=["GET"], endpoint="list_attendances")
    @identity_required
    def list_attendances():
        actor = g.actor
        sessions = container.session_service.list_sessions(
            actor=actor,
            class_id=(request.args.get("classId") or "").strip() or None,
            start_date=_optional_date("startDate"),
            end_date=_optional_date("endDate"),
            status=(request.args.get("status") or "").strip().upper() or None,
        )
        include_token = actor.role != Role.STUDENT
        return ok([s.to_dict(include_token=include_token) for s in sessions])

    @app.route("/api/attendances/<attendance_id>/close", methods=["PUT"], endpoint="close_attendance")
    @identity_required
    def close_attendance(attendance_id: str):
        container.session_service.close_session(actor=g.actor, session_id=attendance_id)
        return ok(message="Attendance session closed")

    @app.route(
        "/api/attendances/<attendance_id>/records/<student_id>",
        methods=["PUT"],
        endpoint="update_attendance_record",
    )
    @identity_required
    def update_attendance_record(attendance_id: str, student_id: str):
        data = _json_body()
        record = container.session_service.override_record(
            actor=g.actor,
            session_id=attendance_id,
            student_id=student_id,
            new_status=str(data.get("status") or "").upper(),
            reason=data.get("reason"),
            class_id=data.get("classId"),
        )
        return ok(record.to_dict(), message="Record updated")

    @app.route("/api/attendances/<attendance_id>/qrcode", methods=["GET"], endpoint="dynamic_qrcode")
    @identity_required
    def dynamic_qrcode(attendance_id: str):
        token = container.session_service.rotate_qr(actor=g.actor, session_id=attendance_id)
        return ok(
            {
                "code": token.value,
                "expiresAt": token.expires_at.isoformat(),
                "image": render_png(attendance_id, token),
            },
            message="QR code refreshed",
        )

"""Rotating QR credentials for attendance sessions.

A token is an opaque random string; it carries no session data, so a leaked
value is useless once rotated or expired.
"""
from __future__ import annotations

import base64
import io
import json
import logging
import secrets
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

import qrcode

from ..core.constants import DEFAULT_QR_TOKEN_TTL_SECONDS, QR_TOKEN_BYTES
from ..core.exceptions import ValidationError
from ..sessions.model import AttendanceSession, QrToken

logger = logging.getLogger(__name__)


class QrTokenGenerator:
    def __init__(self, *, ttl_seconds: int = DEFAULT_QR_TOKEN_TTL_SECONDS):
        if int(ttl_seconds) <= 0:
            raise ValidationError("QR token TTL must be positive")
        self._ttl_seconds = int(ttl_seconds)

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def issue(
        self,
        session_id: str,
        *,
        now: datetime,
        ttl_seconds: Optional[int] = None,
        not_after: Optional[datetime] = None,
    ) -> QrToken:
        ttl = self._ttl_seconds if ttl_seconds is None else int(ttl_seconds)
        expires_at = now + timedelta(seconds=ttl)
        # Never outlive the session itself.
        if not_after is not None and expires_at > not_after:
            expires_at = not_after

        token = QrToken(value=secrets.token_urlsafe(QR_TOKEN_BYTES), issued_at=now, expires_at=expires_at)
        logger.debug("qr token issued session=%s expires_at=%s", session_id, expires_at.isoformat())
        return token

    def rotate(self, session: AttendanceSession, *, now: datetime) -> AttendanceSession:
        token = self.issue(session.session_id, now=now, not_after=session.expired_at)
        return replace(session, qr_token=token)

    @staticmethod
    def matches(token: QrToken, presented: str) -> bool:
        return secrets.compare_digest(token.value.encode(), (presented or "").encode())


def render_png(session_id: str, token: QrToken) -> str:
    """QR image of the check-in payload as a base64 PNG data URI."""

    payload = json.dumps({"sessionId": session_id, "code": token.value}, separators=(",", ":"))
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffered = io.BytesIO()
    img.save(buffered, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffered.getvalue()).decode()

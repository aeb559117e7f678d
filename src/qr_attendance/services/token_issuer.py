from __future__ import annotations

import io
import logging
import secrets
from datetime import datetime, timedelta
from typing import Callable

import qrcode

from qr_attendance.data import SessionStore, StorageError
from qr_attendance.models import IssuedToken, utcnow
from qr_attendance.services.result import ErrorKind, Result

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24
DEFAULT_TTL_SECONDS = 300


class TokenIssuer:
    """Rotates the single live QR token of a session."""

    def __init__(
        self,
        sessions: SessionStore,
        *,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    def issue(self, session_id: int, ttl_seconds: int | None = None) -> Result[IssuedToken]:
        if ttl_seconds is not None and ttl_seconds <= 0:
            return Result.failure(ErrorKind.INPUT_ERROR, "Token lifetime must be a positive number of seconds.")

        try:
            session = self._sessions.get(session_id)
            if session is None:
                return Result.failure(ErrorKind.NOT_FOUND)

            ttl = ttl_seconds or session.token_ttl_seconds or self._default_ttl_seconds
            token = secrets.token_urlsafe(TOKEN_BYTES)
            now = self._clock()
            self._sessions.set_token(session_id, token, now, ttl)
        except StorageError as exc:
            logger.error("Token rotation failed for session %s: %s", session_id, exc)
            return Result.failure(ErrorKind.STORAGE_ERROR)

        logger.info("Issued token %s… for session %s (ttl=%ss)", token[:6], session_id, ttl)
        return Result.success(IssuedToken(token=token, expires_at=now + timedelta(seconds=ttl)))


def render_qr_image(token: str, *, box_size: int = 10, border: int = 4):
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(token)
    qr.make(fit=True)
    return qr.make_image(fill_color="black", back_color="white")


def render_qr_png(token: str, *, box_size: int = 10) -> bytes:
    buf = io.BytesIO()
    render_qr_image(token, box_size=box_size).save(buf, format="PNG")
    return buf.getvalue()

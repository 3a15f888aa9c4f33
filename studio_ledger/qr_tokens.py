from __future__ import annotations

"""
Check-in codes. Client codes are bound one-to-one to a booking and are
overwritten on reissue. Instructor codes are single-use and short-lived.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .clock import StudioClock
from .config import get_settings
from .errors import ConflictError, ExpiredError, ForbiddenError, NotFoundError
from .models import Booking, ClassSession, InstructorAttendance, InstructorQRToken, QRToken


logger = logging.getLogger(__name__)

# Excludes the look-alikes 0, 1, I and O
QR_TOKEN_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
QR_TOKEN_LENGTH = 10
INSTRUCTOR_TOKEN_PREFIX = "INST"
INSTRUCTOR_TOKEN_LENGTH = 12


def build_code(length: int = QR_TOKEN_LENGTH, alphabet: str = QR_TOKEN_ALPHABET) -> str:
    """Random code where every symbol is equiprobable.

    Bytes at or above the largest multiple of ``len(alphabet)`` are rejected so
    the modulo does not bias the first symbols of the alphabet.
    """
    size = len(alphabet)
    limit = 256 - (256 % size)
    chars: list[str] = []
    while len(chars) < length:
        for byte in secrets.token_bytes(length):
            if byte >= limit:
                continue
            chars.append(alphabet[byte % size])
            if len(chars) >= length:
                break
    return "".join(chars)


def normalize_code(raw: str) -> str:
    return (raw or "").strip().upper()


def is_instructor_code(raw: str) -> bool:
    return normalize_code(raw).startswith(INSTRUCTOR_TOKEN_PREFIX)


def issue_booking_token(db: Session, booking_id: str, session_start: datetime) -> QRToken:
    """Create or replace the code for a booking; the previous code stops resolving."""
    ttl_hours = get_settings().booking_qr_ttl_hours
    expires_at = session_start + timedelta(hours=ttl_hours)
    code = build_code()

    token = db.get(QRToken, booking_id)
    if token is None:
        token = QRToken(booking_id=booking_id, token=code, expires_at=expires_at)
    else:
        token.token = code
        token.expires_at = expires_at
    db.add(token)
    return token


def resolve_booking_token(db: Session, raw: str, clock: StudioClock) -> str:
    """Return the booking id behind a client code."""
    code = normalize_code(raw)
    if not code:
        raise NotFoundError("QR code not found")
    token = db.execute(select(QRToken).where(QRToken.token == code)).scalars().first()
    if token is None:
        raise NotFoundError("QR code not found")
    if token.expires_at is not None and token.expires_at < clock.utcnow():
        raise ExpiredError("QR code has expired")
    return token.booking_id


@dataclass
class BookingTokenInfo:
    booking_id: str
    token: str
    expires_at: Optional[datetime]


def get_booking_token(db: Session, booking_id: str) -> BookingTokenInfo:
    if db.get(Booking, booking_id) is None:
        raise NotFoundError("Booking not found")
    token = db.get(QRToken, booking_id)
    if token is None:
        raise NotFoundError("This booking has no QR code available")
    return BookingTokenInfo(booking_id=booking_id, token=token.token, expires_at=token.expires_at)


def issue_instructor_token(
    db: Session,
    *,
    session_id: str,
    instructor_id: str,
    clock: StudioClock,
    staff_id: Optional[str] = None,
) -> InstructorQRToken:
    session = db.get(ClassSession, session_id)
    if session is None:
        raise NotFoundError("Session not found")
    if session.instructor_id != instructor_id:
        raise ForbiddenError("Instructors can only issue codes for their own sessions")

    ttl = get_settings().instructor_qr_ttl_seconds
    token = InstructorQRToken(
        instructor_id=instructor_id,
        session_id=session.id,
        staff_id=staff_id,
        token=INSTRUCTOR_TOKEN_PREFIX + build_code(INSTRUCTOR_TOKEN_LENGTH),
        expires_at=clock.utcnow() + timedelta(seconds=ttl),
    )
    db.add(token)
    db.commit()
    db.refresh(token)
    return token


def consume_instructor_token(
    db: Session, raw: str, clock: StudioClock, consumed_by: Optional[str] = None
) -> InstructorQRToken:
    """Resolve an instructor code exactly once and record the instructor as present."""
    code = normalize_code(raw)
    token = db.execute(
        select(InstructorQRToken).where(InstructorQRToken.token == code).with_for_update(of=InstructorQRToken)
    ).unique().scalars().first()
    if token is None:
        raise NotFoundError("QR code not found")
    if token.consumed_at is not None:
        raise ConflictError("QR code was already used")
    now = clock.utcnow()
    if token.expires_at < now:
        raise ExpiredError("QR code has expired")

    token.consumed_at = now
    token.consumed_by = consumed_by
    db.add(token)

    attendance = db.execute(
        select(InstructorAttendance).where(
            InstructorAttendance.session_id == token.session_id,
            InstructorAttendance.instructor_id == token.instructor_id,
        )
    ).scalars().first()
    if attendance is None:
        attendance = InstructorAttendance(
            session_id=token.session_id, instructor_id=token.instructor_id, checked_in_at=now, token=token.token
        )
    else:
        attendance.checked_in_at = now
        attendance.token = token.token
    db.add(attendance)
    db.commit()
    db.refresh(token)

    logger.info(
        "instructor check-in instructor=%s session=%s by=%s", token.instructor_id, token.session_id, consumed_by or "?"
    )
    return token

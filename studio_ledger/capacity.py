from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from .errors import NotFoundError, SessionFull
from .models import Booking, BookingStatus, ClassSession


# Statuses that hold a seat for the occupancy map
OCCUPYING_STATUSES = (
    BookingStatus.CONFIRMED,
    BookingStatus.CHECKED_IN,
    BookingStatus.CHECKED_OUT,
    BookingStatus.REBOOKED,
)


def count_occupancy(db: Session, session_id: str) -> int:
    """Number of non-cancelled bookings for a session."""
    return db.execute(
        select(func.count()).select_from(Booking).where(
            and_(Booking.session_id == session_id, Booking.status != BookingStatus.CANCELLED)
        )
    ).scalar_one()


def occupancy_map(db: Session, session_ids: Iterable[str]) -> dict[str, int]:
    ids = list(dict.fromkeys(session_ids))
    if not ids:
        return {}
    counts = {sid: 0 for sid in ids}
    rows = db.execute(
        select(Booking.session_id, func.count())
        .where(and_(Booking.session_id.in_(ids), Booking.status.in_(OCCUPYING_STATUSES)))
        .group_by(Booking.session_id)
    ).all()
    for session_id, count in rows:
        counts[session_id] = count
    return counts


def lock_sessions(db: Session, session_ids: list[str]) -> dict[str, ClassSession]:
    """Load sessions with a row lock held until the surrounding transaction ends.

    SQLite has no FOR UPDATE; its single-writer lock gives the same effect.
    """
    if not session_ids:
        return {}
    rows = db.execute(
        select(ClassSession).where(ClassSession.id.in_(session_ids)).with_for_update(of=ClassSession)
    ).unique().scalars().all()
    return {row.id: row for row in rows}


def lock_session(db: Session, session_id: str) -> ClassSession:
    session = lock_sessions(db, [session_id]).get(session_id)
    if session is None:
        raise NotFoundError("Session not found")
    return session


def find_active_booking(db: Session, session_id: str, client_id: str) -> Optional[Booking]:
    return db.execute(
        select(Booking).where(
            and_(
                Booking.session_id == session_id,
                Booking.client_id == client_id,
                Booking.status != BookingStatus.CANCELLED,
            )
        )
    ).unique().scalars().first()


def ensure_seat_available(db: Session, session: ClassSession) -> int:
    """Raise ``SessionFull`` when the session has no open seat; return current occupancy."""
    occupied = count_occupancy(db, session.id)
    if occupied >= session.capacity:
        raise SessionFull("Session has no seats available", session_id=session.id)
    return occupied

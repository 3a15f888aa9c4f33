from __future__ import annotations

"""
Fixed-plan auto-booking: reserve the next N sessions of a course for a plan
purchase as one block.

The validation pass runs over row-locked sessions and raises before anything
is written, so either every booking is added to the session or none is. The
caller owns the transaction; nothing here commits.
"""

import logging
import uuid
from datetime import datetime

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from .attendance import record_booking_event
from .capacity import ensure_seat_available, find_active_booking, lock_sessions
from .config import get_settings
from .errors import DuplicateBooking, InsufficientSessions, ValidationError
from .models import Booking, BookingEventType, BookingStatus, ClassSession
from .qr_tokens import issue_booking_token


logger = logging.getLogger(__name__)


def select_course_sessions(db: Session, course_id: str, start_at: datetime, class_count: int) -> list[ClassSession]:
    limit = class_count * get_settings().fixed_plan_overfetch_factor
    candidates = db.execute(
        select(ClassSession)
        .where(and_(ClassSession.course_id == course_id, ClassSession.start_time >= start_at))
        .order_by(ClassSession.start_time.asc())
        .limit(limit)
    ).unique().scalars().all()
    return list(candidates[:class_count])


def generate_fixed_plan_bookings(
    db: Session,
    *,
    plan_purchase_id: str,
    client_id: str,
    class_count: int,
    course_id: str,
    start_at: datetime,
) -> list[Booking]:
    if class_count <= 0:
        raise ValidationError("Fixed plans require a positive number of classes")

    eligible = select_course_sessions(db, course_id, start_at, class_count)
    if len(eligible) < class_count:
        raise InsufficientSessions(
            "The course does not have enough upcoming sessions to cover every class in the plan"
        )

    locked = lock_sessions(db, [s.id for s in eligible])

    for candidate in eligible:
        session = locked.get(candidate.id, candidate)
        duplicate = find_active_booking(db, session.id, client_id)
        if duplicate is not None:
            raise DuplicateBooking(
                "The client already has a booking in one of the course sessions", booking_id=duplicate.id
            )
        ensure_seat_available(db, session)

    created: list[Booking] = []
    for session in eligible:
        booking = Booking(
            id=str(uuid.uuid4()),
            session_id=session.id,
            client_id=client_id,
            status=BookingStatus.CONFIRMED,
            plan_purchase_id=plan_purchase_id,
        )
        db.add(booking)
        db.flush()
        issue_booking_token(db, booking.id, session.start_time)
        record_booking_event(
            db,
            booking.id,
            BookingEventType.CREATED,
            actor_client_id=client_id,
            metadata={"planPurchaseId": plan_purchase_id, "autoAssigned": True},
        )
        created.append(booking)

    db.flush()
    logger.info(
        "auto-booked %s sessions course=%s client=%s purchase=%s",
        len(created),
        course_id,
        client_id,
        plan_purchase_id,
    )
    return created

from __future__ import annotations

"""
Attendance ledger: the CONFIRMED <-> CHECKED_IN toggle plus the append-only
booking event trail shared by every booking transition.
"""

import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

from sqlalchemy.orm import Session

from .errors import ConflictError, NotFoundError
from .models import Booking, BookingEvent, BookingEventType, BookingStatus


logger = logging.getLogger(__name__)

TOGGLEABLE_STATUSES = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN, BookingStatus.CHECKED_OUT, BookingStatus.REBOOKED}
)

AttendanceSource = Literal["qr-scan", "manual"]


def record_booking_event(
    db: Session,
    booking_id: str,
    event_type: str,
    *,
    actor_client_id: Optional[str] = None,
    actor_staff_id: Optional[str] = None,
    actor_instructor_id: Optional[str] = None,
    notes: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> BookingEvent:
    event = BookingEvent(
        booking_id=booking_id,
        actor_client_id=actor_client_id,
        actor_staff_id=actor_staff_id,
        actor_instructor_id=actor_instructor_id,
        event_type=event_type,
        notes=notes,
        event_metadata=metadata or {},
    )
    db.add(event)
    return event


@dataclass
class AttendanceResult:
    booking: Booking
    changed: bool
    status: str


def update_attendance(
    db: Session,
    booking_id: str,
    present: bool,
    *,
    source: AttendanceSource = "manual",
    actor_staff_id: Optional[str] = None,
) -> AttendanceResult:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")

    current = (booking.status or "").upper()
    if current not in TOGGLEABLE_STATUSES:
        raise ConflictError("Booking cannot be updated in its current state")

    target = BookingStatus.CHECKED_IN if present else BookingStatus.CONFIRMED
    if current == target:
        return AttendanceResult(booking=booking, changed=False, status=target)

    booking.status = target
    db.add(booking)
    record_booking_event(
        db,
        booking.id,
        BookingEventType.CHECKED_IN if present else BookingEventType.CHECKED_OUT,
        actor_staff_id=actor_staff_id,
        metadata={"source": source},
    )
    db.commit()
    db.refresh(booking)
    logger.info("attendance booking=%s %s -> %s source=%s", booking.id, current, target, source)
    return AttendanceResult(booking=booking, changed=True, status=target)


def attendance_message(result: AttendanceResult, present: bool) -> str:
    if result.changed:
        return "Attendance recorded" if present else "Attendance reverted"
    return "Attendance was already recorded" if present else "Attendance was already cleared"

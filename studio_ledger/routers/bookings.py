from __future__ import annotations

from typing import Union

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..attendance import attendance_message, update_attendance
from ..booking_ops import book_session, cancel_booking, rebook_booking
from ..clock import StudioClock
from ..deps import get_clock, get_db, require_token
from ..errors import ValidationError
from ..models import Booking, ClassSession
from ..qr_tokens import consume_instructor_token, get_booking_token, is_instructor_code, resolve_booking_token
from ..schemas import (
    AttendanceOut,
    AttendanceRequest,
    BookingAction,
    BookingCancelOut,
    BookingCreate,
    BookingCreateOut,
    BookingOut,
    BookingRebook,
    BookingRebookOut,
    InstructorCheckinOut,
    PersonSummary,
    QRTokenOut,
    SessionSummary,
)


router = APIRouter(prefix="/api", tags=["bookings"], dependencies=[Depends(require_token)])


def session_summary(session: ClassSession) -> SessionSummary:
    return SessionSummary(
        id=session.id,
        start_time=session.start_time,
        end_time=session.end_time,
        class_type=session.class_type.name if session.class_type else None,
    )


@router.post("/bookings.create", response_model=BookingCreateOut)
def bookings_create(
    payload: BookingCreate, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> BookingCreateOut:
    result = book_session(
        db,
        payload.session_id,
        payload.client_id,
        clock,
        actor_staff_id=payload.actor_staff_id,
        actor_instructor_id=payload.actor_instructor_id,
    )
    return BookingCreateOut(
        booking=BookingOut.model_validate(result.booking),
        token=result.token.token,
        token_expires_at=result.token.expires_at,
        reactivated=result.reactivated,
    )


@router.post("/bookings.cancel", response_model=BookingCancelOut)
def bookings_cancel(
    payload: BookingAction, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> BookingCancelOut:
    result = cancel_booking(
        db,
        payload.id,
        clock,
        actor_client_id=payload.actor_client_id,
        actor_staff_id=payload.actor_staff_id,
        notes=payload.notes,
    )
    return BookingCancelOut(
        booking_id=result.booking_id,
        already_cancelled=result.already_cancelled,
        promoted_booking_id=result.promoted_booking_id,
    )


@router.post("/bookings.rebook", response_model=BookingRebookOut)
def bookings_rebook(
    payload: BookingRebook, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> BookingRebookOut:
    result = rebook_booking(
        db,
        payload.id,
        payload.new_session_id,
        clock,
        actor_client_id=payload.actor_client_id,
        actor_staff_id=payload.actor_staff_id,
        notes=payload.notes,
    )
    return BookingRebookOut(
        booking=BookingOut.model_validate(result.booking),
        token=result.token.token,
        token_expires_at=result.token.expires_at,
        rebooked_from=result.rebooked_from,
        promoted_booking_id=result.promoted_booking_id,
    )

@router.get("/bookings.qr_token", response_model=QRTokenOut)
def bookings_qr_token(booking_id: str = Query(...), db: Session = Depends(get_db)) -> QRTokenOut:
    info = get_booking_token(db, booking_id)
    return QRTokenOut(booking_id=info.booking_id, token=info.token, expires_at=info.expires_at)


@router.post("/bookings.attendance", response_model=Union[InstructorCheckinOut, AttendanceOut])
def bookings_attendance(
    payload: AttendanceRequest, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
):
    """Check-in surface for scanned codes and manual attendance toggles.

    Codes starting with ``INST`` check the instructor in; any other code resolves
    to a client booking and marks it present unless ``present`` says otherwise.
    """
    token = (payload.token or "").strip()
    if token and is_instructor_code(token):
        consumed = consume_instructor_token(db, token, clock, consumed_by=payload.actor_staff_id)
        instructor = consumed.instructor
        return InstructorCheckinOut(
            instructor=PersonSummary(id=instructor.id, full_name=instructor.full_name),
            session=session_summary(consumed.session),
            checked_in_at=consumed.consumed_at,
            message="Instructor attendance recorded",
        )

    if token:
        booking_id = resolve_booking_token(db, token, clock)
        present = True if payload.present is None else payload.present
        source = "qr-scan"
    elif payload.booking_id:
        if payload.present is None:
            raise ValidationError("Indicate whether the client attended")
        booking_id = payload.booking_id
        present = payload.present
        source = "manual"
    else:
        raise ValidationError("Provide a QR code or a booking id")

    result = update_attendance(db, booking_id, present, source=source, actor_staff_id=payload.actor_staff_id)
    booking: Booking = result.booking
    return AttendanceOut(
        booking_id=booking.id,
        status=result.status,
        present=present,
        changed=result.changed,
        client=PersonSummary(id=booking.client_id, full_name=booking.client.full_name if booking.client else ""),
        session=session_summary(booking.session),
        message=attendance_message(result, present),
    )

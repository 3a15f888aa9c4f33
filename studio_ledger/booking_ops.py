from __future__ import annotations

"""
Single-session bookings, cancellations and rebookings.

Booking locks the session row before the duplicate and capacity checks.
Cancelling frees a seat and hands it to the head of the session waitlist.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .attendance import record_booking_event
from .capacity import ensure_seat_available, find_active_booking, lock_session, lock_sessions
from .clock import StudioClock
from .errors import ConflictError, DuplicateBooking, LedgerError, NotFoundError, SessionFull, ValidationError
from .models import Booking, BookingEventType, BookingStatus, ClassSession, Client, QRToken, WaitlistStatus
from .qr_tokens import issue_booking_token
from .waitlist import next_pending, resequence


logger = logging.getLogger(__name__)


@dataclass
class BookingResult:
    booking: Booking
    token: QRToken
    reactivated: bool = False


@dataclass
class CancellationResult:
    booking_id: str
    already_cancelled: bool
    promoted_booking_id: Optional[str] = None


def _cancelled_row(db: Session, session_id: str, client_id: str) -> Optional[Booking]:
    return db.execute(
        select(Booking)
        .where(
            and_(
                Booking.session_id == session_id,
                Booking.client_id == client_id,
                Booking.status == BookingStatus.CANCELLED,
            )
        )
        .order_by(Booking.updated_at.desc())
        .limit(1)
    ).unique().scalars().first()


def _reserve(
    db: Session,
    session: ClassSession,
    client_id: str,
    clock: StudioClock,
    *,
    actor_client_id: Optional[str] = None,
    actor_staff_id: Optional[str] = None,
    actor_instructor_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> BookingResult:
    # Every check runs before the first write
    if db.get(Client, client_id) is None:
        raise NotFoundError("Client not found")
    duplicate = find_active_booking(db, session.id, client_id)
    if duplicate is not None:
        raise DuplicateBooking("The client already has a booking for this session", booking_id=duplicate.id)
    ensure_seat_available(db, session)

    event_metadata = dict(metadata or {})
    booking = _cancelled_row(db, session.id, client_id)
    reactivated = booking is not None
    if booking is not None:
        booking.status = BookingStatus.CONFIRMED
        booking.reserved_at = clock.utcnow()
        booking.cancelled_at = None
        booking.cancelled_by = None
        event_metadata["reactivatedFromCancelled"] = True
    else:
        booking = Booking(
            id=str(uuid.uuid4()),
            session_id=session.id,
            client_id=client_id,
            status=BookingStatus.CONFIRMED,
            reserved_at=clock.utcnow(),
        )
    db.add(booking)
    db.flush()

    token = issue_booking_token(db, booking.id, session.start_time)
    record_booking_event(
        db,
        booking.id,
        BookingEventType.CREATED,
        actor_client_id=actor_client_id,
        actor_staff_id=actor_staff_id,
        actor_instructor_id=actor_instructor_id,
        metadata=event_metadata,
    )
    db.flush()
    return BookingResult(booking=booking, token=token, reactivated=reactivated)


def book_session(
    db: Session,
    session_id: str,
    client_id: str,
    clock: StudioClock,
    *,
    actor_client_id: Optional[str] = None,
    actor_staff_id: Optional[str] = None,
    actor_instructor_id: Optional[str] = None,
) -> BookingResult:
    try:
        session = lock_session(db, session_id)
        result = _reserve(
            db,
            session,
            client_id,
            clock,
            actor_client_id=actor_client_id or client_id,
            actor_staff_id=actor_staff_id,
            actor_instructor_id=actor_instructor_id,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        # Lost the race against a concurrent booking for the same pair
        existing = find_active_booking(db, session_id, client_id)
        raise DuplicateBooking(
            "The client already has a booking for this session", booking_id=existing.id if existing else None
        ) from None
    except Exception:
        db.rollback()
        raise

    db.refresh(result.booking)
    logger.info(
        "booking created id=%s session=%s client=%s reactivated=%s",
        result.booking.id,
        session_id,
        client_id,
        result.reactivated,
    )
    return result


def _promote_from_waitlist(db: Session, session: ClassSession, clock: StudioClock) -> Optional[str]:
    while True:
        entry = next_pending(db, session.id)
        if entry is None:
            return None

        entry.status = WaitlistStatus.PROMOTED
        entry.notified_at = clock.utcnow()
        db.add(entry)
        db.flush()

        try:
            result = _reserve(
                db,
                session,
                entry.client_id,
                clock,
                actor_client_id=entry.client_id,
                metadata={"promotedFromWaitlist": True, "waitlistEntryId": entry.id},
            )
        except SessionFull:
            entry.status = WaitlistStatus.PENDING
            entry.notified_at = None
            db.add(entry)
            db.flush()
            logger.warning("waitlist promotion skipped session=%s: no seat available", session.id)
            return None
        except LedgerError as exc:
            entry.status = WaitlistStatus.CANCELLED
            db.add(entry)
            db.flush()
            logger.warning(
                "waitlist entry %s dropped during promotion session=%s: %s", entry.id, session.id, exc.message
            )
            continue

        logger.info(
            "waitlist promoted entry=%s session=%s client=%s booking=%s",
            entry.id,
            session.id,
            entry.client_id,
            result.booking.id,
        )
        return result.booking.id


def _mark_cancelled(
    db: Session,
    booking: Booking,
    clock: StudioClock,
    *,
    actor_client_id: Optional[str] = None,
    actor_staff_id: Optional[str] = None,
    actor_instructor_id: Optional[str] = None,
    notes: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    booking.status = BookingStatus.CANCELLED
    booking.cancelled_at = clock.utcnow()
    booking.cancelled_by = actor_client_id or actor_staff_id or actor_instructor_id
    db.add(booking)
    record_booking_event(
        db,
        booking.id,
        BookingEventType.CANCELLED,
        actor_client_id=actor_client_id,
        actor_staff_id=actor_staff_id,
        actor_instructor_id=actor_instructor_id,
        notes=notes,
        metadata=metadata,
    )
    db.flush()


def cancel_booking(
    db: Session,
    booking_id: str,
    clock: StudioClock,
    *,
    actor_client_id: Optional[str] = None,
    actor_staff_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> CancellationResult:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")

    try:
        session = lock_session(db, booking.session_id)
        # Re-read under the lock so a concurrent cancel is seen
        db.refresh(booking)
        if booking.status == BookingStatus.CANCELLED:
            db.rollback()
            return CancellationResult(booking_id=booking_id, already_cancelled=True)

        _mark_cancelled(db, booking, clock, actor_client_id=actor_client_id, actor_staff_id=actor_staff_id, notes=notes)
        promoted_id = _promote_from_waitlist(db, session, clock)
        resequence(db, session.id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("booking cancelled id=%s session=%s promoted=%s", booking_id, session.id, promoted_id or "-")
    return CancellationResult(booking_id=booking_id, already_cancelled=False, promoted_booking_id=promoted_id)


@dataclass
class RebookResult:
    booking: Booking
    token: QRToken
    rebooked_from: str
    promoted_booking_id: Optional[str] = None


def rebook_booking(
    db: Session,
    booking_id: str,
    new_session_id: str,
    clock: StudioClock,
    *,
    actor_client_id: Optional[str] = None,
    actor_staff_id: Optional[str] = None,
    actor_instructor_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> RebookResult:
    """Move a booking to another session.

    The new seat is reserved, the old booking is cancelled (its freed seat goes
    to the waitlist) and both sides get linked audit events, in one transaction.
    """
    original = db.get(Booking, booking_id)
    if original is None:
        raise NotFoundError("Booking not found")
    if original.session_id == new_session_id:
        raise ValidationError("The booking is already in that session")

    try:
        locked = lock_sessions(db, [original.session_id, new_session_id])
        new_session = locked.get(new_session_id)
        if new_session is None:
            raise NotFoundError("Session not found")
        old_session = locked[original.session_id]
        db.refresh(original)
        if original.status == BookingStatus.CANCELLED:
            raise ConflictError("Cancelled bookings cannot be rebooked")

        result = _reserve(
            db,
            new_session,
            original.client_id,
            clock,
            actor_client_id=actor_client_id,
            actor_staff_id=actor_staff_id,
            actor_instructor_id=actor_instructor_id,
        )
        new_booking = result.booking
        new_booking.rebooked_from_booking_id = original.id
        new_booking.plan_purchase_id = original.plan_purchase_id
        db.add(new_booking)

        _mark_cancelled(
            db,
            original,
            clock,
            actor_client_id=actor_client_id,
            actor_staff_id=actor_staff_id,
            actor_instructor_id=actor_instructor_id,
            notes=notes or "Rebooked",
            metadata={"rebookedTo": new_booking.id},
        )
        record_booking_event(
            db,
            new_booking.id,
            BookingEventType.REBOOKED,
            actor_client_id=actor_client_id,
            actor_staff_id=actor_staff_id,
            actor_instructor_id=actor_instructor_id,
            notes=notes,
            metadata={"rebookedFrom": original.id},
        )
        db.flush()

        promoted_id = _promote_from_waitlist(db, old_session, clock)
        resequence(db, old_session.id)
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = find_active_booking(db, new_session_id, original.client_id)
        raise DuplicateBooking(
            "The client already has a booking for this session", booking_id=existing.id if existing else None
        ) from None
    except Exception:
        db.rollback()
        raise

    db.refresh(new_booking)
    logger.info(
        "booking rebooked from=%s to=%s session=%s promoted=%s",
        booking_id,
        new_booking.id,
        new_session_id,
        promoted_id or "-",
    )
    return RebookResult(
        booking=new_booking, token=result.token, rebooked_from=booking_id, promoted_booking_id=promoted_id
    )

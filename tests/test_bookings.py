from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import LedgerFactory
from studio_ledger.booking_ops import book_session, cancel_booking, rebook_booking
from studio_ledger.capacity import count_occupancy, occupancy_map
from studio_ledger.database import SessionLocal
from studio_ledger.errors import ConflictError, DuplicateBooking, NotFoundError, SessionFull, ValidationError
from studio_ledger.models import (
    Booking,
    BookingEvent,
    BookingEventType,
    BookingStatus,
    QRToken,
    WaitlistEntry,
    WaitlistStatus,
)
from studio_ledger.waitlist import join_waitlist


START = datetime(2024, 1, 3, 18, 0)


def _events(db, booking_id: str) -> list[BookingEvent]:
    return db.execute(
        select(BookingEvent).where(BookingEvent.booking_id == booking_id).order_by(BookingEvent.id)
    ).scalars().all()


def test_book_session_issues_token_and_event(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    session = factory.session(START, capacity=2)

    result = book_session(db, session.id, client.id, clock)

    assert result.booking.status == BookingStatus.CONFIRMED
    assert result.reactivated is False
    assert result.token.expires_at == START + timedelta(hours=6)
    assert db.get(QRToken, result.booking.id).token == result.token.token
    assert [e.event_type for e in _events(db, result.booking.id)] == [BookingEventType.CREATED]
    assert count_occupancy(db, session.id) == 1


def test_duplicate_booking_rejected(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    session = factory.session(START, capacity=3)
    first = book_session(db, session.id, client.id, clock)

    with pytest.raises(DuplicateBooking) as exc_info:
        book_session(db, session.id, client.id, clock)
    assert exc_info.value.booking_id == first.booking.id
    assert count_occupancy(db, session.id) == 1


def test_full_session_rejects_and_keeps_occupancy(db, clock, factory: LedgerFactory) -> None:
    session = factory.session(START, capacity=1)
    book_session(db, session.id, factory.client().id, clock)

    with pytest.raises(SessionFull):
        book_session(db, session.id, factory.client().id, clock)
    assert count_occupancy(db, session.id) == 1


def test_unknown_session_or_client(db, clock, factory: LedgerFactory) -> None:
    session = factory.session(START)
    with pytest.raises(NotFoundError):
        book_session(db, "missing", factory.client().id, clock)
    with pytest.raises(NotFoundError):
        book_session(db, session.id, "missing", clock)


def test_rebooking_reactivates_cancelled_row(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    session = factory.session(START)
    first = book_session(db, session.id, client.id, clock)
    first_token = first.token.token

    cancelled = cancel_booking(db, first.booking.id, clock, actor_client_id=client.id)
    assert cancelled.already_cancelled is False
    assert count_occupancy(db, session.id) == 0

    again = book_session(db, session.id, client.id, clock)
    assert again.reactivated is True
    assert again.booking.id == first.booking.id
    assert again.booking.cancelled_at is None
    assert again.token.token != first_token

    events = _events(db, first.booking.id)
    assert [e.event_type for e in events] == [
        BookingEventType.CREATED,
        BookingEventType.CANCELLED,
        BookingEventType.CREATED,
    ]
    assert events[-1].event_metadata == {"reactivatedFromCancelled": True}


def test_cancel_is_idempotent(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    session = factory.session(START)
    booking = book_session(db, session.id, client.id, clock).booking

    first = cancel_booking(db, booking.id, clock, actor_staff_id="staff-1", notes="sick")
    second = cancel_booking(db, booking.id, clock)

    assert first.already_cancelled is False
    assert second.already_cancelled is True
    db.expire_all()
    stored = db.get(Booking, booking.id)
    assert stored.status == BookingStatus.CANCELLED
    assert stored.cancelled_by == "staff-1"
    cancellations = [e for e in _events(db, booking.id) if e.event_type == BookingEventType.CANCELLED]
    assert len(cancellations) == 1
    assert cancellations[0].notes == "sick"


def test_cancel_rereads_booking_under_session_lock(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    session = factory.session(START)
    booking = book_session(db, session.id, client.id, clock).booking
    assert booking.status == BookingStatus.CONFIRMED

    other = SessionLocal()
    try:
        assert cancel_booking(other, booking.id, clock, actor_staff_id="staff-2").already_cancelled is False
    finally:
        other.close()

    # db still holds the confirmed row in its identity map
    result = cancel_booking(db, booking.id, clock, actor_staff_id="staff-1")

    assert result.already_cancelled is True
    db.expire_all()
    assert db.get(Booking, booking.id).cancelled_by == "staff-2"
    cancellations = [e for e in _events(db, booking.id) if e.event_type == BookingEventType.CANCELLED]
    assert len(cancellations) == 1


def test_cancel_promotes_head_of_waitlist(db, clock, factory: LedgerFactory) -> None:
    session = factory.session(START, capacity=1)
    holder = factory.client("Holder")
    waiting = [factory.client(f"Waiting {i}") for i in range(3)]
    booking = book_session(db, session.id, holder.id, clock).booking
    entries = [join_waitlist(db, session.id, c.id) for c in waiting]

    result = cancel_booking(db, booking.id, clock, actor_client_id=holder.id)

    assert result.promoted_booking_id is not None
    promoted = db.get(Booking, result.promoted_booking_id)
    assert promoted.client_id == waiting[0].id
    assert promoted.status == BookingStatus.CONFIRMED
    assert db.get(QRToken, promoted.id) is not None
    assert _events(db, promoted.id)[0].event_metadata["promotedFromWaitlist"] is True
    assert count_occupancy(db, session.id) == 1

    db.expire_all()
    assert db.get(WaitlistEntry, entries[0].id).status == WaitlistStatus.PROMOTED
    pending = db.execute(
        select(WaitlistEntry)
        .where(WaitlistEntry.session_id == session.id, WaitlistEntry.status == WaitlistStatus.PENDING)
        .order_by(WaitlistEntry.position)
    ).scalars().all()
    assert [(e.client_id, e.position) for e in pending] == [(waiting[1].id, 1), (waiting[2].id, 2)]


def test_promotion_skips_clients_already_booked(db, clock, factory: LedgerFactory) -> None:
    session = factory.session(START, capacity=2)
    holder = factory.client("Holder")
    already = factory.client("Already booked")
    next_up = factory.client("Next up")

    first_entry = join_waitlist(db, session.id, already.id)
    join_waitlist(db, session.id, next_up.id)
    booking = book_session(db, session.id, holder.id, clock).booking
    book_session(db, session.id, already.id, clock)

    result = cancel_booking(db, booking.id, clock)

    db.expire_all()
    assert db.get(WaitlistEntry, first_entry.id).status == WaitlistStatus.CANCELLED
    assert db.get(Booking, result.promoted_booking_id).client_id == next_up.id


def test_cancel_without_waitlist(db, clock, factory: LedgerFactory) -> None:
    session = factory.session(START)
    booking = book_session(db, session.id, factory.client().id, clock).booking
    result = cancel_booking(db, booking.id, clock)
    assert result.promoted_booking_id is None


def test_occupancy_map_counts_occupying_statuses(db, clock, factory: LedgerFactory) -> None:
    busy = factory.session(START, capacity=5)
    empty = factory.session(START + timedelta(hours=2))
    factory.booking(busy, factory.client(), BookingStatus.CONFIRMED)
    factory.booking(busy, factory.client(), BookingStatus.CHECKED_IN)
    factory.booking(busy, factory.client(), BookingStatus.REBOOKED)
    factory.booking(busy, factory.client(), BookingStatus.CANCELLED)

    assert occupancy_map(db, [busy.id, empty.id, busy.id]) == {busy.id: 3, empty.id: 0}
    assert occupancy_map(db, []) == {}


def test_rebook_moves_booking_and_links_both_sides(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    old_session = factory.session(START, capacity=1)
    new_session = factory.session(START + timedelta(days=1), capacity=2)
    waiting = factory.client("Waiting")
    original = book_session(db, old_session.id, client.id, clock).booking
    join_waitlist(db, old_session.id, waiting.id)

    result = rebook_booking(db, original.id, new_session.id, clock, actor_staff_id="staff-1")

    moved = result.booking
    assert moved.id != original.id
    assert moved.session_id == new_session.id
    assert moved.status == BookingStatus.CONFIRMED
    assert moved.rebooked_from_booking_id == original.id
    assert result.rebooked_from == original.id
    assert result.token.expires_at == START + timedelta(days=1, hours=6)
    assert [e.event_type for e in _events(db, moved.id)] == [BookingEventType.CREATED, BookingEventType.REBOOKED]
    assert _events(db, moved.id)[-1].event_metadata == {"rebookedFrom": original.id}

    db.expire_all()
    old = db.get(Booking, original.id)
    assert old.status == BookingStatus.CANCELLED
    assert old.cancelled_by == "staff-1"
    cancelled_event = _events(db, original.id)[-1]
    assert cancelled_event.event_type == BookingEventType.CANCELLED
    assert cancelled_event.notes == "Rebooked"
    assert cancelled_event.event_metadata == {"rebookedTo": moved.id}

    # the freed seat goes to the old session's waitlist
    assert db.get(Booking, result.promoted_booking_id).client_id == waiting.id
    assert count_occupancy(db, old_session.id) == 1
    assert count_occupancy(db, new_session.id) == 1


def test_rebook_into_full_session_leaves_original_untouched(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    old_session = factory.session(START)
    full_session = factory.session(START + timedelta(days=1), capacity=1)
    original = book_session(db, old_session.id, client.id, clock).booking
    book_session(db, full_session.id, factory.client("Other").id, clock)

    with pytest.raises(SessionFull):
        rebook_booking(db, original.id, full_session.id, clock)

    db.expire_all()
    assert db.get(Booking, original.id).status == BookingStatus.CONFIRMED
    assert [e.event_type for e in _events(db, original.id)] == [BookingEventType.CREATED]
    assert count_occupancy(db, old_session.id) == 1
    assert count_occupancy(db, full_session.id) == 1


def test_rebook_rejections(db, clock, factory: LedgerFactory) -> None:
    client = factory.client()
    session = factory.session(START)
    other_session = factory.session(START + timedelta(days=1))
    booking = book_session(db, session.id, client.id, clock).booking
    book_session(db, other_session.id, client.id, clock)

    with pytest.raises(NotFoundError):
        rebook_booking(db, "missing", other_session.id, clock)
    with pytest.raises(ValidationError):
        rebook_booking(db, booking.id, session.id, clock)
    with pytest.raises(NotFoundError):
        rebook_booking(db, booking.id, "missing", clock)
    with pytest.raises(DuplicateBooking):
        rebook_booking(db, booking.id, other_session.id, clock)

    cancel_booking(db, booking.id, clock)
    with pytest.raises(ConflictError):
        rebook_booking(db, booking.id, factory.session(START + timedelta(days=2)).id, clock)

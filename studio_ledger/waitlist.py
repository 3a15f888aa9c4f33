from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session

from .clock import utcnow
from .errors import NotFoundError
from .models import ClassSession, Client, WaitlistEntry, WaitlistStatus


def resequence(db: Session, session_id: str) -> list[WaitlistEntry]:
    """Rewrite PENDING positions as a dense 1..N sequence.

    Ordering is (position, created_at). Each entry gets its own UPDATE; the
    caller owns the transaction and commits once.
    """
    entries = db.execute(
        select(WaitlistEntry)
        .where(and_(WaitlistEntry.session_id == session_id, WaitlistEntry.status == WaitlistStatus.PENDING))
        .order_by(WaitlistEntry.position.asc(), WaitlistEntry.created_at.asc())
    ).scalars().all()
    for index, entry in enumerate(entries, start=1):
        if entry.position != index:
            entry.position = index
            db.add(entry)
    db.flush()
    return list(entries)


def count_pending(db: Session, session_id: str) -> int:
    return db.execute(
        select(func.count()).select_from(WaitlistEntry).where(
            and_(WaitlistEntry.session_id == session_id, WaitlistEntry.status == WaitlistStatus.PENDING)
        )
    ).scalar_one()


def next_pending(db: Session, session_id: str) -> Optional[WaitlistEntry]:
    return db.execute(
        select(WaitlistEntry)
        .where(and_(WaitlistEntry.session_id == session_id, WaitlistEntry.status == WaitlistStatus.PENDING))
        .order_by(WaitlistEntry.position.asc(), WaitlistEntry.created_at.asc())
        .limit(1)
    ).scalars().first()


def join_waitlist(db: Session, session_id: str, client_id: str) -> WaitlistEntry:
    if db.get(ClassSession, session_id) is None:
        raise NotFoundError("Session not found")
    if db.get(Client, client_id) is None:
        raise NotFoundError("Client not found")

    existing = db.execute(
        select(WaitlistEntry).where(
            and_(WaitlistEntry.session_id == session_id, WaitlistEntry.client_id == client_id)
        )
    ).scalars().first()
    if existing is not None and existing.status != WaitlistStatus.CANCELLED:
        return existing

    next_position = count_pending(db, session_id) + 1
    if existing is not None:
        existing.status = WaitlistStatus.PENDING
        existing.position = next_position
        existing.created_at = utcnow()
        existing.notified_at = None
        entry = existing
    else:
        entry = WaitlistEntry(
            id=str(uuid.uuid4()),
            session_id=session_id,
            client_id=client_id,
            status=WaitlistStatus.PENDING,
            position=next_position,
        )
    db.add(entry)
    db.flush()
    resequence(db, session_id)
    db.commit()
    db.refresh(entry)
    return entry


def leave_waitlist(db: Session, entry_id: str) -> WaitlistEntry:
    entry = db.get(WaitlistEntry, entry_id)
    if entry is None:
        raise NotFoundError("Waitlist entry not found")
    if entry.status == WaitlistStatus.PENDING:
        entry.status = WaitlistStatus.CANCELLED
        db.add(entry)
        db.flush()
        resequence(db, entry.session_id)
        db.commit()
        db.refresh(entry)
    return entry

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..deps import get_db, require_token
from ..schemas import WaitlistEntryOut, WaitlistJoin, WaitlistLeave, WaitlistOut
from ..waitlist import count_pending, join_waitlist, leave_waitlist


router = APIRouter(prefix="/api", tags=["waitlist"], dependencies=[Depends(require_token)])


@router.post("/waitlist.join", response_model=WaitlistOut)
def waitlist_join(payload: WaitlistJoin, db: Session = Depends(get_db)) -> WaitlistOut:
    entry = join_waitlist(db, payload.session_id, payload.client_id)
    return WaitlistOut(entry=WaitlistEntryOut.model_validate(entry), waitlist_count=count_pending(db, entry.session_id))


@router.post("/waitlist.leave", response_model=WaitlistOut)
def waitlist_leave(payload: WaitlistLeave, db: Session = Depends(get_db)) -> WaitlistOut:
    entry = leave_waitlist(db, payload.id)
    return WaitlistOut(entry=WaitlistEntryOut.model_validate(entry), waitlist_count=count_pending(db, entry.session_id))

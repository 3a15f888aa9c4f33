from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..clock import StudioClock
from ..deps import get_clock, get_db, require_token
from ..qr_tokens import issue_instructor_token
from ..schemas import InstructorQRCreate, InstructorQROut
from .bookings import session_summary


router = APIRouter(prefix="/api", tags=["instructor"], dependencies=[Depends(require_token)])


@router.post("/instructor.qr", response_model=InstructorQROut)
def instructor_qr(
    payload: InstructorQRCreate, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> InstructorQROut:
    token = issue_instructor_token(
        db, session_id=payload.session_id, instructor_id=payload.instructor_id, clock=clock, staff_id=payload.staff_id
    )
    return InstructorQROut(token=token.token, expires_at=token.expires_at, session=session_summary(token.session))

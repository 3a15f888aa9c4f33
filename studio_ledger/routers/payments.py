from __future__ import annotations

"""
Entry point for gateway checkout completions. Signature checks and payload
parsing happen upstream; this route receives the normalized event.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..clock import StudioClock
from ..deps import get_clock, get_db, require_token
from ..payment_events import process_payment_event
from ..schemas import PaymentEvent, PaymentEventOut


router = APIRouter(prefix="/api", tags=["payments"], dependencies=[Depends(require_token)])


@router.post("/payments.event", response_model=PaymentEventOut)
def payments_event(
    payload: PaymentEvent, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> PaymentEventOut:
    return process_payment_event(db, payload, clock)

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..capacity import occupancy_map
from ..deps import get_db, require_token
from ..schemas import OccupancyOut


router = APIRouter(prefix="/api", tags=["sessions"], dependencies=[Depends(require_token)])


@router.get("/sessions.occupancy", response_model=OccupancyOut)
def sessions_occupancy(ids: str = Query(default=""), db: Session = Depends(get_db)) -> OccupancyOut:
    # Comma-separated session ids
    session_ids = [part.strip() for part in ids.split(",") if part.strip()]
    return OccupancyOut(items=occupancy_map(db, session_ids))

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..deps import get_db, get_settings_service, require_token
from ..schemas import TimezoneOut, TimezoneUpdate
from ..studio_settings import StudioSettingsService


router = APIRouter(prefix="/api", tags=["settings"], dependencies=[Depends(require_token)])


@router.get("/settings.timezone", response_model=TimezoneOut)
def settings_timezone(
    db: Session = Depends(get_db), service: StudioSettingsService = Depends(get_settings_service)
) -> TimezoneOut:
    return TimezoneOut(timezone=service.refresh(db).schedule_timezone)


@router.post("/settings.timezone", response_model=TimezoneOut)
def settings_timezone_update(
    payload: TimezoneUpdate,
    db: Session = Depends(get_db),
    service: StudioSettingsService = Depends(get_settings_service),
) -> TimezoneOut:
    current = service.update(db, timezone=payload.timezone, updated_by=payload.updated_by)
    return TimezoneOut(timezone=current.schedule_timezone)

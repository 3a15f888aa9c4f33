from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import get_settings
from ..deps import get_db, get_settings_service
from ..studio_settings import StudioSettingsService


router = APIRouter(tags=["health"])


@router.get("/health")
def health(
    db: Session = Depends(get_db),
    service: StudioSettingsService = Depends(get_settings_service),
) -> dict:
    db.execute(text("SELECT 1"))
    return {
        "ok": True,
        "environment": get_settings().environment,
        "timezone": service.current.schedule_timezone,
    }

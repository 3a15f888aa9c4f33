from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .clock import StudioClock
from .config import get_settings
from .database import get_db_session
from .studio_settings import StudioSettingsService


def get_db() -> Session:
    yield from get_db_session()


def require_token(authorization: Optional[str] = Header(default=None)) -> str:
    settings = get_settings()
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    if token != settings.api_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return token


def get_settings_service(request: Request) -> StudioSettingsService:
    return request.app.state.studio_settings


def get_clock(service: StudioSettingsService = Depends(get_settings_service)) -> StudioClock:
    return service.clock()

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .clock import StudioClock, is_valid_timezone
from .errors import ValidationError
from .models import StudioSettingsRow


logger = logging.getLogger(__name__)

SETTINGS_KEY = "default"


@dataclass(frozen=True)
class StudioSettings:
    schedule_timezone: str


class StudioSettingsService:
    """Holds the studio configuration read from the ``studio_settings`` table.

    One instance lives on the application state and is injected into request
    handlers. Values only change through ``refresh`` or ``update``.
    """

    def __init__(self, default_timezone: str, now_fn: Optional[Callable[[], datetime]] = None) -> None:
        if not is_valid_timezone(default_timezone):
            raise ValueError(f"Invalid default studio timezone: {default_timezone}")
        self._default_timezone = default_timezone
        self._now_fn = now_fn
        self._current = StudioSettings(schedule_timezone=default_timezone)

    @property
    def current(self) -> StudioSettings:
        return self._current

    def clock(self) -> StudioClock:
        return StudioClock(self._current.schedule_timezone, now_fn=self._now_fn)

    def refresh(self, db: Session) -> StudioSettings:
        try:
            row = db.get(StudioSettingsRow, SETTINGS_KEY)
        except SQLAlchemyError:
            logger.exception("studio settings fetch failed; keeping %s", self._current.schedule_timezone)
            return self._current

        candidate = row.schedule_timezone if row else None
        if candidate and not is_valid_timezone(candidate):
            logger.warning("stored studio timezone %r is invalid; using %s", candidate, self._default_timezone)
            candidate = None
        self._current = StudioSettings(schedule_timezone=candidate or self._default_timezone)
        return self._current

    def update(self, db: Session, *, timezone: str, updated_by: Optional[str] = None) -> StudioSettings:
        timezone = (timezone or "").strip()
        if not is_valid_timezone(timezone):
            raise ValidationError("Invalid timezone value")

        row = db.get(StudioSettingsRow, SETTINGS_KEY)
        if row is None:
            row = StudioSettingsRow(key=SETTINGS_KEY, schedule_timezone=timezone, updated_by=updated_by)
        else:
            row.schedule_timezone = timezone
            row.updated_by = updated_by
        db.add(row)
        db.commit()

        self._current = StudioSettings(schedule_timezone=timezone)
        logger.info("studio timezone set to %s by %s", timezone, updated_by or "?")
        return self._current

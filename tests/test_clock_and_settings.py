from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from conftest import fixed_clock
from studio_ledger.clock import StudioClock, add_years, is_valid_timezone, to_naive_utc
from studio_ledger.errors import ErrorKind, ValidationError
from studio_ledger.models import ClassType, MembershipType, PlanType
from studio_ledger.seed import upsert_defaults
from studio_ledger.studio_settings import StudioSettingsService


def test_parse_day_uses_studio_time() -> None:
    clock = fixed_clock(datetime(2024, 1, 1, 23, 30, tzinfo=timezone.utc))
    # 00:30 on Jan 2 in Madrid
    assert clock.today() == date(2024, 1, 2)
    assert clock.parse_day(None) == date(2024, 1, 2)
    assert clock.parse_day("") == date(2024, 1, 2)
    assert clock.parse_day("2024-03-10") == date(2024, 3, 10)
    assert clock.parse_day("2024-03-10T23:30:00Z") == date(2024, 3, 11)
    assert clock.parse_day(date(2024, 5, 1)) == date(2024, 5, 1)
    with pytest.raises(ValidationError):
        clock.parse_day("tomorrow")


def test_day_start_utc_and_conversions() -> None:
    clock = StudioClock("Europe/Madrid")
    assert clock.day_start_utc(date(2024, 1, 1)) == datetime(2023, 12, 31, 23, 0)
    assert clock.day_start_utc(date(2024, 7, 1)) == datetime(2024, 6, 30, 22, 0)
    assert to_naive_utc(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)) == datetime(2024, 1, 1, 12, 0)


def test_add_years_handles_leap_day() -> None:
    assert add_years(date(2024, 2, 29), 1) == date(2025, 2, 28)
    assert add_years(date(2024, 2, 29), 4) == date(2028, 2, 29)


def test_timezone_validation() -> None:
    assert is_valid_timezone("America/Mexico_City")
    assert not is_valid_timezone("Nowhere/Land")
    assert not is_valid_timezone("")
    with pytest.raises(ValueError):
        StudioSettingsService("Nowhere/Land")


def test_settings_service_update_and_refresh(db) -> None:
    service = StudioSettingsService("Europe/Madrid")
    with pytest.raises(ValidationError) as exc_info:
        service.update(db, timezone="Invalid/Zone")
    assert exc_info.value.kind is ErrorKind.VALIDATION

    try:
        service.update(db, timezone="America/Mexico_City", updated_by="staff-1")
        fresh = StudioSettingsService("Europe/Madrid")
        assert fresh.refresh(db).schedule_timezone == "America/Mexico_City"
        assert fresh.clock().timezone_name == "America/Mexico_City"
    finally:
        service.update(db, timezone="Europe/Madrid")


def test_error_kinds_map_to_statuses() -> None:
    assert ErrorKind.NOT_FOUND.status == 404
    assert ErrorKind.EXPIRED.status == 410
    assert ErrorKind.INSUFFICIENT_SESSIONS.status == 422
    assert ErrorKind.PARTIAL_FAILURE.is_client_error is False
    assert ErrorKind.CONFLICT.is_client_error is True


def test_seed_is_idempotent(db) -> None:
    upsert_defaults()
    upsert_defaults()
    assert db.get(ClassType, "reformer") is not None
    assert db.get(PlanType, "pack_4").class_count == 4
    assert db.get(MembershipType, "annual_multi").allow_multi_year is True

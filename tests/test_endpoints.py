from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import FIXED_NOW, STUDIO_TZ, LedgerFactory, auth_headers
from studio_ledger.database import Base, engine
from studio_ledger.main import create_app
from studio_ledger.studio_settings import StudioSettingsService


SESSION_START = datetime(2024, 1, 2, 18, 0)


@pytest.fixture()
def client() -> TestClient:
    # Ensure schema exists when tests run standalone
    Base.metadata.create_all(bind=engine)
    app = create_app(StudioSettingsService(STUDIO_TZ, now_fn=lambda: FIXED_NOW))
    return TestClient(app)


def test_health_open(client: TestClient) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert "X-Process-Time-Ms" in r.headers


def test_auth_required_on_api(client: TestClient) -> None:
    r = client.get("/api/sessions.occupancy")
    assert r.status_code == 401
    body = r.json()
    assert body["ok"] is False
    assert body["error"]["status"] == 401

    bad = client.get("/api/sessions.occupancy", headers=auth_headers("bad-token"))
    assert bad.status_code == 401


def test_plan_purchase_flow(client: TestClient, factory: LedgerFactory) -> None:
    member = factory.client("API Client")
    plan_type = factory.plan_type(class_count=2)
    course, sessions = factory.course_sessions(2, SESSION_START)
    payload = {
        "client_id": member.id,
        "plan_type_id": plan_type.id,
        "modality": "FIXED",
        "course_id": course.id,
        "start_date": "2024-01-01",
        "payment": {"provider_ref": f"api-{member.id}"},
    }

    prepared = client.post("/api/plans.prepare", json=payload, headers=auth_headers())
    assert prepared.status_code == 200
    assert prepared.json()["initial_classes"] == 2

    r = client.post("/api/plans.purchase", json=payload, headers=auth_headers())
    assert r.status_code == 200
    data = r.json()
    assert data["replayed"] is False
    assert data["member"]["id"] == member.id

    again = client.post("/api/plans.purchase", json=payload, headers=auth_headers())
    assert again.json()["plan_purchase_id"] == data["plan_purchase_id"]
    assert again.json()["replayed"] is True

    occupancy = client.get(
        "/api/sessions.occupancy", params={"ids": ",".join(s.id for s in sessions)}, headers=auth_headers()
    )
    assert occupancy.json()["items"] == {s.id: 1 for s in sessions}


def test_not_found_envelope(client: TestClient) -> None:
    r = client.post(
        "/api/plans.purchase", json={"client_id": "nobody", "plan_type_id": "nothing"}, headers=auth_headers()
    )
    assert r.status_code == 404
    error = r.json()["error"]
    assert error["kind"] == "not_found"
    assert error["path"] == "/api/plans.purchase"


def test_insufficient_sessions_is_422(client: TestClient, factory: LedgerFactory) -> None:
    member = factory.client()
    plan_type = factory.plan_type(class_count=3)
    course, _ = factory.course_sessions(1, SESSION_START)
    r = client.post(
        "/api/plans.purchase",
        json={"client_id": member.id, "plan_type_id": plan_type.id, "modality": "FIXED", "course_id": course.id},
        headers=auth_headers(),
    )
    assert r.status_code == 422
    assert r.json()["error"]["kind"] == "insufficient_sessions"


def test_membership_purchase_endpoint(client: TestClient, factory: LedgerFactory) -> None:
    member = factory.client()
    membership_type = factory.membership_type()
    r = client.post(
        "/api/memberships.purchase",
        json={"client_id": member.id, "membership_type_id": membership_type.id, "start_date": "2024-01-15"},
        headers=auth_headers(),
    )
    assert r.status_code == 200
    memberships = r.json()["member"]["memberships"]
    assert memberships[0]["end_date"] == "2025-01-14"


def test_booking_lifecycle(client: TestClient, factory: LedgerFactory) -> None:
    session = factory.session(SESSION_START, capacity=1)
    first, second = factory.client("First"), factory.client("Second")

    created = client.post(
        "/api/bookings.create", json={"session_id": session.id, "client_id": first.id}, headers=auth_headers()
    )
    assert created.status_code == 200
    booking_id = created.json()["booking"]["id"]
    token = created.json()["token"]

    duplicate = client.post(
        "/api/bookings.create", json={"session_id": session.id, "client_id": first.id}, headers=auth_headers()
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["booking_id"] == booking_id

    full = client.post(
        "/api/bookings.create", json={"session_id": session.id, "client_id": second.id}, headers=auth_headers()
    )
    assert full.status_code == 409

    joined = client.post(
        "/api/waitlist.join", json={"session_id": session.id, "client_id": second.id}, headers=auth_headers()
    )
    assert joined.json()["entry"]["position"] == 1
    assert joined.json()["waitlist_count"] == 1

    qr = client.get("/api/bookings.qr_token", params={"booking_id": booking_id}, headers=auth_headers())
    assert qr.json()["token"] == token

    checked = client.post("/api/bookings.attendance", json={"token": token}, headers=auth_headers())
    assert checked.status_code == 200
    assert checked.json()["kind"] == "client"
    assert checked.json()["status"] == "CHECKED_IN"
    assert checked.json()["client"]["full_name"] == "First"

    manual = client.post(
        "/api/bookings.attendance", json={"booking_id": booking_id, "present": False}, headers=auth_headers()
    )
    assert manual.json()["status"] == "CONFIRMED"

    cancelled = client.post("/api/bookings.cancel", json={"id": booking_id}, headers=auth_headers())
    assert cancelled.json()["already_cancelled"] is False
    assert cancelled.json()["promoted_booking_id"] is not None


def test_expired_code_is_410(factory: LedgerFactory) -> None:
    session = factory.session(SESSION_START)
    member = factory.client()
    late = SESSION_START + timedelta(hours=7)
    Base.metadata.create_all(bind=engine)
    app = create_app(StudioSettingsService(STUDIO_TZ, now_fn=lambda: late.replace(tzinfo=FIXED_NOW.tzinfo)))
    client = TestClient(app)

    created = client.post(
        "/api/bookings.create", json={"session_id": session.id, "client_id": member.id}, headers=auth_headers()
    )
    r = client.post("/api/bookings.attendance", json={"token": created.json()["token"]}, headers=auth_headers())
    assert r.status_code == 410
    assert r.json()["error"]["kind"] == "expired"


def test_attendance_requires_token_or_booking(client: TestClient) -> None:
    r = client.post("/api/bookings.attendance", json={}, headers=auth_headers())
    assert r.status_code == 400


def test_instructor_check_in(client: TestClient, factory: LedgerFactory) -> None:
    instructor = factory.instructor("Coach")
    session = factory.session(SESSION_START, instructor=instructor)

    issued = client.post(
        "/api/instructor.qr", json={"session_id": session.id, "instructor_id": instructor.id}, headers=auth_headers()
    )
    assert issued.status_code == 200
    code = issued.json()["token"]

    checked = client.post("/api/bookings.attendance", json={"token": code}, headers=auth_headers())
    assert checked.status_code == 200
    assert checked.json()["kind"] == "instructor"
    assert checked.json()["instructor"]["full_name"] == "Coach"

    reused = client.post("/api/bookings.attendance", json={"token": code}, headers=auth_headers())
    assert reused.status_code == 409

    stranger = factory.instructor("Stranger")
    forbidden = client.post(
        "/api/instructor.qr", json={"session_id": session.id, "instructor_id": stranger.id}, headers=auth_headers()
    )
    assert forbidden.status_code == 403


def test_payment_event_endpoint(client: TestClient, factory: LedgerFactory) -> None:
    member = factory.client()
    plan_type = factory.plan_type()
    r = client.post(
        "/api/payments.event",
        json={
            "provider_event_id": f"cs_api_{member.id}",
            "payment_status": "paid",
            "metadata": {"clientId": member.id, "planTypeId": plan_type.id, "startIso": "2024-01-01"},
        },
        headers=auth_headers(),
    )
    assert r.status_code == 200
    assert r.json()["processed"] is True
    assert r.json()["purchase_kind"] == "plan"


def test_timezone_settings(client: TestClient) -> None:
    invalid = client.post("/api/settings.timezone", json={"timezone": "Mars/Olympus"}, headers=auth_headers())
    assert invalid.status_code == 400

    try:
        updated = client.post(
            "/api/settings.timezone", json={"timezone": "America/Mexico_City"}, headers=auth_headers()
        )
        assert updated.json()["timezone"] == "America/Mexico_City"
        assert client.get("/api/settings.timezone", headers=auth_headers()).json()["timezone"] == "America/Mexico_City"
    finally:
        client.post("/api/settings.timezone", json={"timezone": STUDIO_TZ}, headers=auth_headers())


def test_booking_rebook_endpoint(client: TestClient, factory: LedgerFactory) -> None:
    member = factory.client()
    first = factory.session(SESSION_START)
    second = factory.session(SESSION_START + timedelta(days=1))
    created = client.post(
        "/api/bookings.create", json={"session_id": first.id, "client_id": member.id}, headers=auth_headers()
    )
    booking_id = created.json()["booking"]["id"]

    r = client.post(
        "/api/bookings.rebook", json={"id": booking_id, "new_session_id": second.id}, headers=auth_headers()
    )
    assert r.status_code == 200
    data = r.json()
    assert data["rebooked_from"] == booking_id
    assert data["booking"]["session_id"] == second.id
    assert data["booking"]["rebooked_from_booking_id"] == booking_id
    assert data["token"]

    again = client.post(
        "/api/bookings.rebook", json={"id": booking_id, "new_session_id": second.id}, headers=auth_headers()
    )
    assert again.status_code == 409
    assert again.json()["error"]["kind"] == "conflict"

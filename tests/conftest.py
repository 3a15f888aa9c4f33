from __future__ import annotations

import os
import sys
import tempfile
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Ensure project root is on sys.path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Throwaway database; must be set before the package is imported
_DB_DIR = tempfile.mkdtemp(prefix="studio-ledger-tests-")
os.environ["APP_DATABASE_URL"] = f"sqlite:///{_DB_DIR}/ledger.db"
os.environ["APP_API_TOKEN"] = "dev-token"

from studio_ledger.config import get_settings  # noqa: E402

get_settings.cache_clear()  # type: ignore[attr-defined]

from studio_ledger.clock import StudioClock  # noqa: E402
from studio_ledger.database import Base, SessionLocal, engine  # noqa: E402
from studio_ledger.models import (  # noqa: E402
    Booking,
    BookingStatus,
    ClassSession,
    ClassType,
    Client,
    ClientProfile,
    Course,
    Instructor,
    Membership,
    MembershipStatus,
    MembershipType,
    PlanType,
)


API_TOKEN = "dev-token"
STUDIO_TZ = "Europe/Madrid"
# 10:00 in Madrid
FIXED_NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def auth_headers(token: str = API_TOKEN) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def fixed_clock(now: datetime = FIXED_NOW) -> StudioClock:
    return StudioClock(STUDIO_TZ, now_fn=lambda: now)


def _id() -> str:
    return str(uuid.uuid4())


class LedgerFactory:
    """Creates catalog and client rows with unique ids."""

    def __init__(self, db) -> None:
        self.db = db

    def client(self, name: str = "Test Client", profile_status: str = "INACTIVE") -> Client:
        client = Client(id=_id(), full_name=name, email=f"{uuid.uuid4().hex[:8]}@example.com")
        self.db.add(client)
        self.db.flush()
        self.db.add(ClientProfile(client_id=client.id, status=profile_status))
        self.db.commit()
        return client

    def plan_type(
        self,
        class_count: Optional[int] = 4,
        price: Decimal = Decimal("800"),
        validity_days: Optional[int] = 30,
        requires_membership: bool = False,
        currency: Optional[str] = None,
    ) -> PlanType:
        plan_type = PlanType(
            id=_id(),
            name=f"Plan {class_count}",
            class_count=class_count,
            price=price,
            validity_days=validity_days,
            requires_membership=requires_membership,
            currency=currency,
        )
        self.db.add(plan_type)
        self.db.commit()
        return plan_type

    def membership_type(
        self,
        price: Decimal = Decimal("1200"),
        allow_multi_year: bool = False,
        max_prepaid_years: Optional[int] = None,
        currency: Optional[str] = "mxn",
    ) -> MembershipType:
        membership_type = MembershipType(
            id=_id(),
            name="Annual",
            price=price,
            currency=currency,
            privileges="Studio access",
            allow_multi_year=allow_multi_year,
            max_prepaid_years=max_prepaid_years,
        )
        self.db.add(membership_type)
        self.db.commit()
        return membership_type

    def membership(self, client: Client, start: date, end: date, status: str = MembershipStatus.ACTIVE) -> Membership:
        membership = Membership(id=_id(), client_id=client.id, status=status, start_date=start, end_date=end)
        self.db.add(membership)
        self.db.commit()
        return membership

    def instructor(self, name: str = "Instructor") -> Instructor:
        instructor = Instructor(id=_id(), full_name=name)
        self.db.add(instructor)
        self.db.commit()
        return instructor

    def course(self) -> Course:
        class_type = ClassType(id=_id(), name="Reformer")
        self.db.add(class_type)
        self.db.flush()
        course = Course(id=_id(), name="Morning reformer", class_type_id=class_type.id, default_capacity=5)
        self.db.add(course)
        self.db.commit()
        return course

    def session(
        self,
        start: datetime,
        capacity: int = 5,
        course: Optional[Course] = None,
        instructor: Optional[Instructor] = None,
    ) -> ClassSession:
        session = ClassSession(
            id=_id(),
            course_id=course.id if course else None,
            class_type_id=course.class_type_id if course else None,
            instructor_id=instructor.id if instructor else None,
            start_time=start,
            end_time=start + timedelta(minutes=50),
            capacity=capacity,
        )
        self.db.add(session)
        self.db.commit()
        return session

    def course_sessions(self, count: int, first_start: datetime, capacity: int = 5) -> tuple[Course, List[ClassSession]]:
        course = self.course()
        sessions = [self.session(first_start + timedelta(days=7 * i), capacity=capacity, course=course) for i in range(count)]
        return course, sessions

    def booking(self, session: ClassSession, client: Client, status: str = BookingStatus.CONFIRMED) -> Booking:
        booking = Booking(id=_id(), session_id=session.id, client_id=client.id, status=status)
        self.db.add(booking)
        self.db.commit()
        return booking


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> StudioClock:
    return fixed_clock()


@pytest.fixture()
def factory(db) -> LedgerFactory:
    return LedgerFactory(db)

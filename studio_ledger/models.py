from __future__ import annotations

"""
Core data models for clients, catalog entries, class sessions, bookings and the
purchase ledger (plan purchases, memberships and their payments).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .clock import utcnow
from .database import Base


class BookingStatus:
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"
    REBOOKED = "REBOOKED"


class BookingEventType:
    CREATED = "CREATED"
    CANCELLED = "CANCELLED"
    REBOOKED = "REBOOKED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"


class PlanStatus:
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class MembershipStatus:
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class Modality:
    FLEXIBLE = "FLEXIBLE"
    FIXED = "FIXED"


class PaymentStatus:
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    PENDING = "PENDING"


class WaitlistStatus:
    PENDING = "PENDING"
    PROMOTED = "PROMOTED"
    CANCELLED = "CANCELLED"


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    profile: Mapped[Optional["ClientProfile"]] = relationship(
        "ClientProfile", back_populates="client", uselist=False, lazy="selectin"
    )


class ClientProfile(Base):
    __tablename__ = "client_profiles"

    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), default="INACTIVE", nullable=False)
    birthdate: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    occupation: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    emergency_contact_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    emergency_contact_phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    preferred_apparatus: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    client: Mapped[Client] = relationship(Client, back_populates="profile")


class PlanType(Base):
    __tablename__ = "plan_types"
    """
    Catalog of sellable class packages. A null class_count means unlimited classes.
    """

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    class_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    validity_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    privileges: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requires_membership: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class PlanPurchase(Base):
    __tablename__ = "plan_purchases"
    """
    Credit ledger entry created from one successful payment.
    """

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    plan_type_id: Mapped[str] = mapped_column(String(36), ForeignKey("plan_types.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=PlanStatus.ACTIVE, nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    expires_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    initial_classes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    remaining_classes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    modality: Mapped[str] = mapped_column(String(16), default=Modality.FLEXIBLE, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    plan_type: Mapped[PlanType] = relationship(PlanType, lazy="joined")
    payments: Mapped[list["PlanPayment"]] = relationship(
        "PlanPayment", back_populates="plan_purchase", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint(
            "(initial_classes IS NULL AND remaining_classes IS NULL) OR "
            "(initial_classes IS NOT NULL AND remaining_classes IS NOT NULL AND remaining_classes <= initial_classes)",
            name="ck_plan_purchase_classes",
        ),
        Index("ix_plan_purchases_status", "status"),
    )


class PlanPayment(Base):
    __tablename__ = "plan_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    plan_purchase_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("plan_purchases.id", ondelete="CASCADE"), index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    provider_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    plan_purchase: Mapped[PlanPurchase] = relationship(PlanPurchase, back_populates="payments")


class MembershipType(Base):
    __tablename__ = "membership_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    privileges: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    allow_multi_year: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    max_prepaid_years: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class Membership(Base):
    __tablename__ = "memberships"
    """
    Annual membership period. At most one ACTIVE row per client.
    """

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    membership_type_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("membership_types.id"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(16), default=MembershipStatus.ACTIVE, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    next_billing_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    term_years: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    privileges_snapshot: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    membership_type: Mapped[Optional[MembershipType]] = relationship(MembershipType, lazy="joined")
    payments: Mapped[list["MembershipPayment"]] = relationship(
        "MembershipPayment", back_populates="membership", cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        Index("ix_memberships_client_status", "client_id", "status"),
    )


class MembershipPayment(Base):
    __tablename__ = "membership_payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    membership_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("memberships.id", ondelete="CASCADE"), index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    period_years: Mapped[int] = mapped_column(Integer, nullable=False)
    provider_ref: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    membership: Mapped[Membership] = relationship(Membership, back_populates="payments")


class ClassType(Base):
    __tablename__ = "class_types"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    class_type_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("class_types.id"), nullable=True)
    default_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancellation_window_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class Instructor(Base):
    __tablename__ = "instructors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    staff_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)


class ClassSession(Base):
    __tablename__ = "sessions"
    """
    A scheduled class instance. Times are stored as naive UTC.
    """

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    class_type_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("class_types.id"), nullable=True)
    course_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("courses.id"), nullable=True, index=True)
    instructor_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("instructors.id"), nullable=True)
    room_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("rooms.id"), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    class_type: Mapped[Optional[ClassType]] = relationship(ClassType, lazy="joined")
    instructor: Mapped[Optional[Instructor]] = relationship(Instructor, lazy="joined")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_session_capacity_positive"),
        CheckConstraint("end_time > start_time", name="ck_session_end_after_start"),
    )


class Booking(Base):
    __tablename__ = "bookings"
    """
    A client's seat in a session. At most one non-cancelled booking per (client, session).
    """

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True)
    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    plan_purchase_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("plan_purchases.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(String(16), default=BookingStatus.CONFIRMED, nullable=False)
    reserved_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    rebooked_from_booking_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True
    )

    session: Mapped[ClassSession] = relationship(ClassSession, lazy="joined")
    client: Mapped[Client] = relationship(Client, lazy="joined")
    qr_token: Mapped[Optional["QRToken"]] = relationship(
        "QRToken", uselist=False, cascade="all, delete-orphan", back_populates="booking"
    )
    events: Mapped[list["BookingEvent"]] = relationship(
        "BookingEvent", cascade="all, delete-orphan", order_by="BookingEvent.id"
    )

    __table_args__ = (
        Index(
            "uq_bookings_active_client_session",
            "session_id",
            "client_id",
            unique=True,
            sqlite_where=text("status != 'CANCELLED'"),
            postgresql_where=text("status != 'CANCELLED'"),
        ),
        Index("ix_bookings_status", "status"),
    )


class QRToken(Base):
    __tablename__ = "qr_tokens"

    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), primary_key=True)
    token: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    booking: Mapped[Booking] = relationship(Booking, back_populates="qr_token")


class InstructorQRToken(Base):
    __tablename__ = "instructor_qr_tokens"
    """
    Single-use check-in code shown by an instructor at the start of a session.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.id", ondelete="CASCADE"), index=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True)
    staff_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    token: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    consumed_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    instructor: Mapped[Instructor] = relationship(Instructor, lazy="joined")
    session: Mapped[ClassSession] = relationship(ClassSession, lazy="joined")


class InstructorAttendance(Base):
    __tablename__ = "instructor_attendance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"))
    instructor_id: Mapped[str] = mapped_column(String(36), ForeignKey("instructors.id", ondelete="CASCADE"))
    checked_in_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    token: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "instructor_id", name="uq_instructor_attendance_session"),
    )


class BookingEvent(Base):
    __tablename__ = "booking_events"
    """
    Append-only audit trail of booking transitions.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    booking_id: Mapped[str] = mapped_column(String(36), ForeignKey("bookings.id", ondelete="CASCADE"), index=True)
    actor_client_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    actor_staff_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    actor_instructor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    event_type: Mapped[str] = mapped_column(String(16), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_booking_events_type", "event_type"),
    )


class WaitlistEntry(Base):
    __tablename__ = "session_waitlist"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(36), ForeignKey("sessions.id", ondelete="CASCADE"), index=True)
    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("clients.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(16), default=WaitlistStatus.PENDING, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    notified_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("session_id", "client_id", name="uq_waitlist_session_client"),
        Index("ix_waitlist_session_status", "session_id", "status"),
    )


class StudioSettingsRow(Base):
    __tablename__ = "studio_settings"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    schedule_timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


ModalityLiteral = Literal["FLEXIBLE", "FIXED"]
PaymentStatusLiteral = Literal["SUCCESS", "FAILED", "REFUNDED", "PENDING"]


# Purchases
class PlanPurchaseRequest(BaseModel):
    client_id: str
    plan_type_id: str
    modality: ModalityLiteral = "FLEXIBLE"
    course_id: Optional[str] = None
    start_date: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("modality", mode="before")
    @classmethod
    def _normalize_modality(cls, value: object) -> str:
        if isinstance(value, str) and value.strip().upper() == "FIXED":
            return "FIXED"
        return "FLEXIBLE"


class MembershipPurchaseRequest(BaseModel):
    client_id: str
    membership_type_id: str
    start_date: Optional[str] = None
    term_years: Optional[Union[int, float, str]] = None
    notes: Optional[str] = None


class PaymentDetails(BaseModel):
    status: PaymentStatusLiteral = "SUCCESS"
    provider_ref: Optional[str] = None
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None


class PlanPurchaseCreate(PlanPurchaseRequest):
    payment: PaymentDetails = Field(default_factory=PaymentDetails)


class MembershipPurchaseCreate(MembershipPurchaseRequest):
    payment: PaymentDetails = Field(default_factory=PaymentDetails)
    include_snapshot: bool = True


class PreparedPlanOut(BaseModel):
    client_id: str
    plan_type_id: str
    modality: ModalityLiteral
    course_id: Optional[str]
    start_date: date
    expires_at: Optional[date]
    initial_classes: Optional[int]
    membership_id: Optional[str]


# Member snapshot
class ClientProfileSnapshot(BaseModel):
    status: str
    birthdate: Optional[date] = None
    occupation: Optional[str] = None
    notes: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    preferred_apparatus: Optional[str] = None

    model_config = dict(from_attributes=True)


class MembershipPaymentSnapshot(BaseModel):
    amount: Decimal
    currency: str
    paid_at: datetime
    period_start: date
    period_end: date
    period_years: int

    model_config = dict(from_attributes=True)


class MembershipSnapshot(BaseModel):
    id: str
    status: str
    start_date: date
    end_date: Optional[date]
    next_billing_date: Optional[date]
    notes: Optional[str]
    term_years: int
    privileges_snapshot: Optional[str]
    membership_type_name: Optional[str]
    membership_type_privileges: Optional[str]
    payments: List[MembershipPaymentSnapshot] = []


class PlanPurchaseSnapshot(BaseModel):
    id: str
    status: str
    start_date: date
    expires_at: Optional[date]
    initial_classes: Optional[int]
    remaining_classes: Optional[int]
    modality: str
    plan_type_name: Optional[str]
    plan_type_privileges: Optional[str]


class MemberSnapshot(BaseModel):
    id: str
    full_name: str
    email: Optional[str]
    phone: Optional[str]
    created_at: datetime
    profile: Optional[ClientProfileSnapshot]
    memberships: List[MembershipSnapshot] = []
    plan_purchases: List[PlanPurchaseSnapshot] = []


class PlanPurchaseOut(BaseModel):
    plan_purchase_id: str
    replayed: bool = False
    member: MemberSnapshot


class MembershipPurchaseOut(BaseModel):
    membership_id: str
    replayed: bool = False
    member: Optional[MemberSnapshot] = None


# Payment events
class PaymentEvent(BaseModel):
    """A gateway checkout completion, already verified and normalized by the caller."""

    provider_event_id: str
    payment_status: str
    metadata: dict[str, Optional[str]] = Field(default_factory=dict)
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    payment_intent_ref: Optional[str] = None
    created_at_epoch: Optional[int] = None


class PaymentEventOut(BaseModel):
    processed: bool
    purchase_kind: Optional[Literal["plan", "membership"]] = None
    entity_id: Optional[str] = None
    replayed: bool = False
    reason: Optional[str] = None


# Bookings
class BookingCreate(BaseModel):
    session_id: str
    client_id: str
    actor_staff_id: Optional[str] = None
    actor_instructor_id: Optional[str] = None


class BookingAction(BaseModel):
    id: str
    actor_client_id: Optional[str] = None
    actor_staff_id: Optional[str] = None
    notes: Optional[str] = None


class BookingOut(BaseModel):
    id: str
    session_id: str
    client_id: str
    plan_purchase_id: Optional[str]
    status: str
    reserved_at: datetime
    cancelled_at: Optional[datetime]
    rebooked_from_booking_id: Optional[str] = None

    model_config = dict(from_attributes=True)


class BookingCreateOut(BaseModel):
    booking: BookingOut
    token: str
    token_expires_at: Optional[datetime]
    reactivated: bool = False


class BookingRebook(BaseModel):
    id: str
    new_session_id: str
    actor_client_id: Optional[str] = None
    actor_staff_id: Optional[str] = None
    notes: Optional[str] = None


class BookingRebookOut(BaseModel):
    booking: BookingOut
    token: str
    token_expires_at: Optional[datetime]
    rebooked_from: str
    promoted_booking_id: Optional[str] = None


class BookingCancelOut(BaseModel):
    booking_id: str
    already_cancelled: bool
    promoted_booking_id: Optional[str] = None


class QRTokenOut(BaseModel):
    booking_id: str
    token: str
    expires_at: Optional[datetime]


# Check-in
class AttendanceRequest(BaseModel):
    token: Optional[str] = None
    booking_id: Optional[str] = None
    present: Optional[bool] = None
    actor_staff_id: Optional[str] = None


class PersonSummary(BaseModel):
    id: Optional[str]
    full_name: str


class SessionSummary(BaseModel):
    id: str
    start_time: Optional[datetime]
    end_time: Optional[datetime] = None
    class_type: Optional[str]


class AttendanceOut(BaseModel):
    kind: Literal["client"] = "client"
    booking_id: str
    status: str
    present: bool
    changed: bool
    client: PersonSummary
    session: SessionSummary
    message: str


class InstructorCheckinOut(BaseModel):
    kind: Literal["instructor"] = "instructor"
    instructor: PersonSummary
    session: SessionSummary
    checked_in_at: datetime
    message: str


class InstructorQRCreate(BaseModel):
    session_id: str
    instructor_id: str
    staff_id: Optional[str] = None


class InstructorQROut(BaseModel):
    token: str
    expires_at: datetime
    session: SessionSummary


# Sessions / waitlist
class OccupancyOut(BaseModel):
    items: dict[str, int]


class WaitlistJoin(BaseModel):
    session_id: str
    client_id: str


class WaitlistLeave(BaseModel):
    id: str


class WaitlistEntryOut(BaseModel):
    id: str
    session_id: str
    client_id: str
    position: int
    status: str

    model_config = dict(from_attributes=True)


class WaitlistOut(BaseModel):
    entry: WaitlistEntryOut
    waitlist_count: int


# Settings
class TimezoneOut(BaseModel):
    timezone: str


class TimezoneUpdate(BaseModel):
    timezone: str
    updated_by: Optional[str] = None

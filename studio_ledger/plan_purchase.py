from __future__ import annotations

"""
Plan purchases in two steps.

``prepare_plan_purchase`` validates a request and derives dates and class
counts without writing anything. It returns a ``PreparedPlanPurchase``, which
is the only input ``commit_plan_purchase`` accepts. The intent cannot be built
by hand: its constructor requires a module-private seal.

``commit_plan_purchase`` persists the entitlement in two stages:

1. the plan purchase plus, for FIXED plans, its auto-assigned bookings, in one
   transaction (a failed auto-booking rolls the purchase back);
2. the payment record. When this stage fails the entitlement is already
   durable and the caller gets a ``PartialFailure`` carrying its id.

A ``provider_ref`` that already has a payment short-circuits both stages, so
redelivered gateway events never create a second purchase.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .clock import StudioClock, to_naive_utc
from .config import get_settings
from .errors import NotFoundError, PartialFailure, ValidationError
from .fixed_booking import generate_fixed_plan_bookings
from .models import (
    Booking,
    Client,
    Membership,
    MembershipStatus,
    Modality,
    PlanPayment,
    PlanPurchase,
    PlanStatus,
    PlanType,
)
from .schemas import MemberSnapshot, PaymentDetails, PlanPurchaseRequest
from .snapshots import fetch_member_snapshot


logger = logging.getLogger(__name__)

_SEAL = object()


@dataclass(frozen=True)
class PreparedPlanPurchase:
    client_id: str
    client_name: str
    plan_type_id: str
    plan_type_name: str
    price: Decimal
    currency: str
    modality: str
    course_id: Optional[str]
    notes: Optional[str]
    start_date: date
    expires_at: Optional[date]
    initial_classes: Optional[int]
    membership_id: Optional[str]
    _seal: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._seal is not _SEAL:
            raise TypeError("PreparedPlanPurchase is only created by prepare_plan_purchase()")


@dataclass
class PlanPurchaseResult:
    plan_purchase_id: str
    member: MemberSnapshot
    replayed: bool = False
    bookings: list[str] = field(default_factory=list)


def _active_membership(db: Session, client_id: str) -> Optional[Membership]:
    return db.execute(
        select(Membership)
        .where(Membership.client_id == client_id, Membership.status == MembershipStatus.ACTIVE)
        .order_by(Membership.end_date.desc())
        .limit(1)
    ).unique().scalars().first()


def _initial_classes(plan_type: PlanType, modality: str) -> Optional[int]:
    if plan_type.class_count is None:
        if modality == Modality.FIXED:
            raise ValidationError("Fixed plans require a class count")
        return None
    if plan_type.class_count <= 0:
        raise ValidationError("The selected plan has no classes configured")
    return int(plan_type.class_count)


def prepare_plan_purchase(db: Session, payload: PlanPurchaseRequest, clock: StudioClock) -> PreparedPlanPurchase:
    client = db.get(Client, payload.client_id)
    if client is None:
        raise NotFoundError("Client not found")

    plan_type = db.get(PlanType, payload.plan_type_id)
    if plan_type is None:
        raise NotFoundError("The selected plan does not exist")

    membership = None
    if plan_type.requires_membership:
        membership = _active_membership(db, client.id)
        if membership is None:
            raise ValidationError("The client has no active membership")
        if membership.end_date is not None and membership.end_date < clock.today():
            raise ValidationError("The client's membership has expired")

    modality = payload.modality
    course_id = (payload.course_id or "").strip() or None
    if modality == Modality.FIXED and not course_id:
        raise ValidationError("Select the course to assign to the fixed plan")

    start_date = clock.parse_day(payload.start_date)

    expires_at = None
    if modality == Modality.FLEXIBLE and plan_type.validity_days and plan_type.validity_days > 0:
        expires_at = start_date + timedelta(days=plan_type.validity_days)

    initial_classes = _initial_classes(plan_type, modality)

    return PreparedPlanPurchase(
        client_id=client.id,
        client_name=client.full_name,
        plan_type_id=plan_type.id,
        plan_type_name=plan_type.name,
        price=plan_type.price if plan_type.price is not None else Decimal("0"),
        currency=(plan_type.currency or get_settings().default_currency).upper(),
        modality=modality,
        course_id=course_id if modality == Modality.FIXED else None,
        notes=payload.notes,
        start_date=start_date,
        expires_at=expires_at,
        initial_classes=initial_classes,
        membership_id=membership.id if membership else None,
        _seal=_SEAL,
    )


def _find_payment(db: Session, provider_ref: str) -> Optional[PlanPayment]:
    return db.execute(select(PlanPayment).where(PlanPayment.provider_ref == provider_ref)).scalars().first()


def _discard_purchase(db: Session, plan_purchase_id: str) -> None:
    purchase = db.get(PlanPurchase, plan_purchase_id)
    if purchase is None:
        return
    bookings = db.execute(select(Booking).where(Booking.plan_purchase_id == plan_purchase_id)).unique().scalars().all()
    for booking in bookings:
        db.delete(booking)
    db.delete(purchase)
    db.commit()


def _payment_amount(prepared: PreparedPlanPurchase) -> Optional[Decimal]:
    try:
        amount = Decimal(prepared.price)
    except (InvalidOperation, TypeError):
        return None
    if not amount.is_finite() or amount < 0:
        return None
    return amount


def _paid_at(value: Optional[datetime], clock: StudioClock) -> datetime:
    return to_naive_utc(value) if value is not None else clock.utcnow()


def commit_plan_purchase(
    db: Session,
    prepared: PreparedPlanPurchase,
    payment: PaymentDetails,
    clock: StudioClock,
) -> PlanPurchaseResult:
    if not isinstance(prepared, PreparedPlanPurchase):
        raise TypeError("commit_plan_purchase() requires a PreparedPlanPurchase")

    provider_ref = (payment.provider_ref or "").strip() or None

    if provider_ref:
        existing = _find_payment(db, provider_ref)
        if existing is not None:
            logger.info("plan payment replay provider_ref=%s purchase=%s", provider_ref, existing.plan_purchase_id)
            return PlanPurchaseResult(
                plan_purchase_id=existing.plan_purchase_id,
                member=fetch_member_snapshot(db, prepared.client_id),
                replayed=True,
            )

    # Stage 1: entitlement and its bookings
    purchase = PlanPurchase(
        id=str(uuid.uuid4()),
        client_id=prepared.client_id,
        plan_type_id=prepared.plan_type_id,
        status=PlanStatus.ACTIVE,
        purchased_at=clock.utcnow(),
        start_date=prepared.start_date,
        expires_at=prepared.expires_at,
        initial_classes=prepared.initial_classes,
        remaining_classes=prepared.initial_classes,
        modality=prepared.modality,
        notes=prepared.notes,
    )
    booking_ids: list[str] = []
    try:
        db.add(purchase)
        db.flush()
        if prepared.modality == Modality.FIXED and prepared.course_id and prepared.initial_classes is not None:
            bookings = generate_fixed_plan_bookings(
                db,
                plan_purchase_id=purchase.id,
                client_id=prepared.client_id,
                class_count=prepared.initial_classes,
                course_id=prepared.course_id,
                start_at=clock.day_start_utc(prepared.start_date),
            )
            booking_ids = [b.id for b in bookings]
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "plan purchase committed id=%s client=%s plan_type=%s modality=%s classes=%s",
        purchase.id,
        prepared.client_id,
        prepared.plan_type_id,
        prepared.modality,
        prepared.initial_classes,
    )

    # Stage 2: payment record
    amount = _payment_amount(prepared)
    if amount is not None:
        db.add(
            PlanPayment(
                id=str(uuid.uuid4()),
                plan_purchase_id=purchase.id,
                amount=amount,
                currency=prepared.currency,
                status=payment.status,
                provider_ref=provider_ref,
                notes=payment.notes,
                paid_at=_paid_at(payment.paid_at, clock),
            )
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            winner = _find_payment(db, provider_ref) if provider_ref else None
            if winner is None or winner.plan_purchase_id == purchase.id:
                logger.exception("plan payment insert failed purchase=%s", purchase.id)
                raise PartialFailure(
                    "The plan was created, but the payment was not recorded", entity_id=purchase.id
                ) from None
            # A concurrent delivery of the same event recorded its payment first
            logger.warning(
                "plan payment race provider_ref=%s; discarding purchase=%s in favour of %s",
                provider_ref,
                purchase.id,
                winner.plan_purchase_id,
            )
            _discard_purchase(db, purchase.id)
            return PlanPurchaseResult(
                plan_purchase_id=winner.plan_purchase_id,
                member=fetch_member_snapshot(db, prepared.client_id),
                replayed=True,
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("plan payment insert failed purchase=%s", purchase.id)
            raise PartialFailure(
                "The plan was created, but the payment was not recorded", entity_id=purchase.id
            ) from None

    try:
        member = fetch_member_snapshot(db, prepared.client_id)
    except SQLAlchemyError:
        logger.exception("member snapshot refresh failed purchase=%s", purchase.id)
        raise PartialFailure(
            "The plan was recorded, but the client information could not be refreshed", entity_id=purchase.id
        ) from None

    return PlanPurchaseResult(plan_purchase_id=purchase.id, member=member, bookings=booking_ids)
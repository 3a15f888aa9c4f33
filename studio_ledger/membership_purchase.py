from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .clock import StudioClock, add_years, to_naive_utc
from .config import get_settings
from .errors import NotFoundError, PartialFailure, ValidationError
from .models import (
    Client,
    ClientProfile,
    Membership,
    MembershipPayment,
    MembershipStatus,
    MembershipType,
    PaymentStatus,
)
from .schemas import MemberSnapshot, MembershipPurchaseRequest, PaymentDetails
from .snapshots import fetch_member_snapshot


logger = logging.getLogger(__name__)

_SEAL = object()


@dataclass(frozen=True)
class PreparedMembershipPurchase:
    client_id: str
    membership_type_id: str
    membership_type_name: str
    privileges: Optional[str]
    start_date: date
    end_date: date
    term_years: int
    amount: Decimal
    currency: str
    notes: Optional[str]
    _seal: object = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self._seal is not _SEAL:
            raise TypeError("PreparedMembershipPurchase is only created by prepare_membership_purchase()")


@dataclass
class MembershipPurchaseResult:
    membership_id: str
    member: Optional[MemberSnapshot] = None
    replayed: bool = False


def parse_term_years(value: Union[int, float, str, None]) -> int:
    """Requested term in whole years; anything unusable means one year."""
    try:
        parsed = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(parsed) or parsed <= 0:
        return 1
    return max(1, int(Decimal(str(parsed)).quantize(Decimal("1"), rounding="ROUND_HALF_UP")))


def prepare_membership_purchase(
    db: Session, payload: MembershipPurchaseRequest, clock: StudioClock
) -> PreparedMembershipPurchase:
    if not payload.client_id or not payload.membership_type_id:
        raise ValidationError("Client and membership type are required")

    membership_type = db.get(MembershipType, payload.membership_type_id)
    if membership_type is None:
        raise NotFoundError("The selected membership type does not exist")
    client = db.get(Client, payload.client_id)
    if client is None:
        raise NotFoundError("Client not found")

    price_per_year = membership_type.price if membership_type.price is not None else Decimal("0")
    if price_per_year < 0:
        raise ValidationError("The membership type has no valid price")

    term_years = parse_term_years(payload.term_years)
    if membership_type.max_prepaid_years and term_years > membership_type.max_prepaid_years:
        raise ValidationError(
            f"This membership allows up to {membership_type.max_prepaid_years} years per payment"
        )
    if not membership_type.allow_multi_year and term_years > 1:
        raise ValidationError("This membership can only be paid one year at a time")

    start_date = clock.parse_day(payload.start_date)
    end_date = add_years(start_date, term_years) - timedelta(days=1)

    notes = (payload.notes or "").strip() or None

    return PreparedMembershipPurchase(
        client_id=client.id,
        membership_type_id=membership_type.id,
        membership_type_name=membership_type.name,
        privileges=membership_type.privileges,
        start_date=start_date,
        end_date=end_date,
        term_years=term_years,
        amount=Decimal(price_per_year) * term_years,
        currency=(membership_type.currency or get_settings().default_currency).upper(),
        notes=notes,
        _seal=_SEAL,
    )


def _find_payment(db: Session, provider_ref: str) -> Optional[MembershipPayment]:
    return db.execute(
        select(MembershipPayment).where(MembershipPayment.provider_ref == provider_ref)
    ).scalars().first()


def _replay(db: Session, existing: MembershipPayment, include_snapshot: bool) -> MembershipPurchaseResult:
    member = None
    if include_snapshot:
        membership = db.get(Membership, existing.membership_id)
        if membership is not None:
            member = fetch_member_snapshot(db, membership.client_id)
    return MembershipPurchaseResult(membership_id=existing.membership_id, member=member, replayed=True)


def commit_membership_purchase(
    db: Session,
    prepared: PreparedMembershipPurchase,
    payment: PaymentDetails,
    clock: StudioClock,
    *,
    include_snapshot: bool = False,
) -> MembershipPurchaseResult:
    if not isinstance(prepared, PreparedMembershipPurchase):
        raise TypeError("commit_membership_purchase() requires a PreparedMembershipPurchase")

    provider_ref = (payment.provider_ref or "").strip() or None
    if provider_ref:
        existing = _find_payment(db, provider_ref)
        if existing is not None:
            logger.info("membership payment replay provider_ref=%s membership=%s", provider_ref, existing.membership_id)
            return _replay(db, existing, include_snapshot)

    membership = Membership(
        id=str(uuid.uuid4()),
        client_id=prepared.client_id,
        membership_type_id=prepared.membership_type_id,
        status=MembershipStatus.ACTIVE if payment.status == PaymentStatus.SUCCESS else payment.status,
        start_date=prepared.start_date,
        end_date=prepared.end_date,
        next_billing_date=prepared.end_date,
        auto_renew=False,
        term_years=prepared.term_years,
        privileges_snapshot=prepared.privileges,
        notes=prepared.notes,
    )
    try:
        db.execute(
            update(Membership)
            .where(Membership.client_id == prepared.client_id, Membership.status == MembershipStatus.ACTIVE)
            .values(status=MembershipStatus.INACTIVE)
        )
        db.add(membership)
        db.commit()
    except Exception:
        db.rollback()
        raise
    membership_id = membership.id

    logger.info(
        "membership committed id=%s client=%s type=%s years=%s",
        membership_id,
        prepared.client_id,
        prepared.membership_type_id,
        prepared.term_years,
    )

    db.add(
        MembershipPayment(
            id=str(uuid.uuid4()),
            membership_id=membership_id,
            amount=prepared.amount,
            currency=prepared.currency,
            status=payment.status,
            period_start=prepared.start_date,
            period_end=prepared.end_date,
            period_years=prepared.term_years,
            provider_ref=provider_ref,
            notes=payment.notes,
            paid_at=to_naive_utc(payment.paid_at) if payment.paid_at else clock.utcnow(),
        )
    )
    profile = db.get(ClientProfile, prepared.client_id)
    if profile is not None:
        profile.status = "ACTIVE"
        db.add(profile)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        winner = _find_payment(db, provider_ref) if provider_ref else None
        if winner is None or winner.membership_id == membership_id:
            logger.exception("membership payment insert failed membership=%s", membership_id)
            raise PartialFailure(
                "The membership was created, but the payment was not recorded", entity_id=membership_id
            ) from None
        logger.warning(
            "membership payment race provider_ref=%s; discarding membership=%s in favour of %s",
            provider_ref,
            membership_id,
            winner.membership_id,
        )
        orphan = db.get(Membership, membership_id)
        if orphan is not None:
            db.delete(orphan)
        # Our stage 1 deactivated the winner's row
        survivor = db.get(Membership, winner.membership_id)
        if survivor is not None and survivor.status == MembershipStatus.INACTIVE:
            survivor.status = MembershipStatus.ACTIVE
            db.add(survivor)
        db.commit()
        return _replay(db, winner, include_snapshot)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("membership payment insert failed membership=%s", membership_id)
        raise PartialFailure(
            "The membership was created, but the payment was not recorded", entity_id=membership_id
        ) from None

    member = None
    if include_snapshot:
        try:
            member = fetch_member_snapshot(db, prepared.client_id)
        except SQLAlchemyError:
            logger.exception("member snapshot refresh failed membership=%s", membership_id)
            raise PartialFailure(
                "The membership was recorded, but the client information could not be refreshed",
                entity_id=membership_id,
            ) from None
    return MembershipPurchaseResult(membership_id=membership_id, member=member)

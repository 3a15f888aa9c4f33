from __future__ import annotations

"""
Turns a completed gateway checkout into a plan purchase or a membership.

The event is expected to be verified and normalized already. The gateway event id
becomes the payment ``provider_ref``, so a redelivered event replays the first
purchase instead of creating another one.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from .clock import StudioClock
from .config import get_settings
from .errors import LedgerError, PaymentMismatch
from .membership_purchase import commit_membership_purchase, prepare_membership_purchase
from .models import PaymentStatus
from .plan_purchase import commit_plan_purchase, prepare_plan_purchase
from .schemas import (
    MembershipPurchaseRequest,
    PaymentDetails,
    PaymentEvent,
    PaymentEventOut,
    PlanPurchaseRequest,
)


logger = logging.getLogger(__name__)


def _meta(event: PaymentEvent, key: str) -> Optional[str]:
    value = event.metadata.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def to_minor_units(amount: Decimal, currency: Optional[str]) -> int:
    if (currency or "").upper() in get_settings().zero_decimal_currency_set:
        return int(amount.quantize(Decimal("1")))
    return int((amount * 100).quantize(Decimal("1")))


def verify_expected_amount(event: PaymentEvent) -> None:
    """Raise ``PaymentMismatch`` when the charged total differs from ``expectedAmount``."""
    raw = _meta(event, "expectedAmount")
    if raw is None or event.amount_total is None:
        return
    try:
        expected = Decimal(raw)
    except InvalidOperation:
        raise PaymentMismatch(f"Checkout {event.provider_event_id} carries an unreadable expected amount") from None
    if not expected.is_finite():
        raise PaymentMismatch(f"Checkout {event.provider_event_id} carries an unreadable expected amount")
    currency = (event.currency or _meta(event, "currency") or "").upper()
    expected_minor = to_minor_units(expected, currency)
    if expected_minor != event.amount_total:
        raise PaymentMismatch(
            f"Checkout {event.provider_event_id} charged {event.amount_total} {currency} "
            f"but {expected_minor} was expected"
        )


def _payment_details(event: PaymentEvent) -> PaymentDetails:
    paid_at = None
    if event.created_at_epoch:
        paid_at = datetime.fromtimestamp(event.created_at_epoch, tz=timezone.utc)
    return PaymentDetails(
        status=PaymentStatus.SUCCESS,
        provider_ref=event.provider_event_id,
        notes=f"Checkout {event.provider_event_id} / PI {event.payment_intent_ref or '-'}",
        paid_at=paid_at,
    )


def process_payment_event(db: Session, event: PaymentEvent, clock: StudioClock) -> PaymentEventOut:
    if event.payment_status != "paid":
        logger.warning("payment event %s ignored: status=%s", event.provider_event_id, event.payment_status)
        return PaymentEventOut(processed=False, reason="Checkout is not paid")

    client_id = _meta(event, "clientId")
    plan_type_id = _meta(event, "planTypeId")
    membership_type_id = _meta(event, "membershipTypeId")
    start_iso = _meta(event, "startIso")
    if not client_id or not (plan_type_id or membership_type_id) or not start_iso:
        logger.warning("payment event %s ignored: incomplete metadata %s", event.provider_event_id, event.metadata)
        return PaymentEventOut(processed=False, reason="Checkout metadata is incomplete")

    verify_expected_amount(event)
    payment = _payment_details(event)

    try:
        if plan_type_id:
            request = PlanPurchaseRequest(
                client_id=client_id,
                plan_type_id=plan_type_id,
                modality=_meta(event, "modality"),
                course_id=_meta(event, "courseId"),
                start_date=start_iso,
                notes=_meta(event, "notes"),
            )
            prepared = prepare_plan_purchase(db, request, clock)
            result = commit_plan_purchase(db, prepared, payment, clock)
            return PaymentEventOut(
                processed=True, purchase_kind="plan", entity_id=result.plan_purchase_id, replayed=result.replayed
            )

        request = MembershipPurchaseRequest(
            client_id=client_id,
            membership_type_id=membership_type_id,
            start_date=start_iso,
            term_years=_meta(event, "termYears"),
            notes=_meta(event, "notes"),
        )
        prepared_membership = prepare_membership_purchase(db, request, clock)
        outcome = commit_membership_purchase(db, prepared_membership, payment, clock)
        return PaymentEventOut(
            processed=True, purchase_kind="membership", entity_id=outcome.membership_id, replayed=outcome.replayed
        )
    except LedgerError as exc:
        if not exc.kind.is_client_error:
            raise
        logger.warning(
            "payment event %s not applied (%s): %s", event.provider_event_id, exc.kind.value, exc.message
        )
        return PaymentEventOut(processed=False, reason=exc.message)

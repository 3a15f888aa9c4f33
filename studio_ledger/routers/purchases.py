from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..clock import StudioClock
from ..deps import get_clock, get_db, require_token
from ..membership_purchase import commit_membership_purchase, prepare_membership_purchase
from ..plan_purchase import commit_plan_purchase, prepare_plan_purchase
from ..schemas import (
    MembershipPurchaseCreate,
    MembershipPurchaseOut,
    PlanPurchaseCreate,
    PlanPurchaseOut,
    PlanPurchaseRequest,
    PreparedPlanOut,
)


router = APIRouter(prefix="/api", tags=["purchases"], dependencies=[Depends(require_token)])


@router.post("/plans.prepare", response_model=PreparedPlanOut)
def plans_prepare(
    payload: PlanPurchaseRequest, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> PreparedPlanOut:
    prepared = prepare_plan_purchase(db, payload, clock)
    return PreparedPlanOut(
        client_id=prepared.client_id,
        plan_type_id=prepared.plan_type_id,
        modality=prepared.modality,
        course_id=prepared.course_id,
        start_date=prepared.start_date,
        expires_at=prepared.expires_at,
        initial_classes=prepared.initial_classes,
        membership_id=prepared.membership_id,
    )


@router.post("/plans.purchase", response_model=PlanPurchaseOut)
def plans_purchase(
    payload: PlanPurchaseCreate, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> PlanPurchaseOut:
    prepared = prepare_plan_purchase(db, payload, clock)
    result = commit_plan_purchase(db, prepared, payload.payment, clock)
    return PlanPurchaseOut(plan_purchase_id=result.plan_purchase_id, replayed=result.replayed, member=result.member)


@router.post("/memberships.purchase", response_model=MembershipPurchaseOut)
def memberships_purchase(
    payload: MembershipPurchaseCreate, db: Session = Depends(get_db), clock: StudioClock = Depends(get_clock)
) -> MembershipPurchaseOut:
    prepared = prepare_membership_purchase(db, payload, clock)
    result = commit_membership_purchase(
        db, prepared, payload.payment, clock, include_snapshot=payload.include_snapshot
    )
    return MembershipPurchaseOut(membership_id=result.membership_id, replayed=result.replayed, member=result.member)

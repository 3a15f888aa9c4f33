from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import Client, Membership, PlanPurchase
from .schemas import (
    ClientProfileSnapshot,
    MemberSnapshot,
    MembershipPaymentSnapshot,
    MembershipSnapshot,
    PlanPurchaseSnapshot,
)


def _membership_snapshot(m: Membership) -> MembershipSnapshot:
    return MembershipSnapshot(
        id=m.id,
        status=m.status,
        start_date=m.start_date,
        end_date=m.end_date,
        next_billing_date=m.next_billing_date,
        notes=m.notes,
        term_years=m.term_years,
        privileges_snapshot=m.privileges_snapshot,
        membership_type_name=m.membership_type.name if m.membership_type else None,
        membership_type_privileges=m.membership_type.privileges if m.membership_type else None,
        payments=[MembershipPaymentSnapshot.model_validate(p) for p in m.payments],
    )


def _plan_purchase_snapshot(p: PlanPurchase) -> PlanPurchaseSnapshot:
    return PlanPurchaseSnapshot(
        id=p.id,
        status=p.status,
        start_date=p.start_date,
        expires_at=p.expires_at,
        initial_classes=p.initial_classes,
        remaining_classes=p.remaining_classes,
        modality=p.modality,
        plan_type_name=p.plan_type.name if p.plan_type else None,
        plan_type_privileges=p.plan_type.privileges if p.plan_type else None,
    )


def fetch_member_snapshot(db: Session, client_id: str) -> MemberSnapshot:
    """Denormalized view of a client with memberships and plan purchases."""
    client: Optional[Client] = db.get(Client, client_id)
    if client is None:
        raise NotFoundError("Client not found")

    memberships = db.execute(
        select(Membership).where(Membership.client_id == client_id).order_by(Membership.start_date.desc())
    ).unique().scalars().all()
    purchases = db.execute(
        select(PlanPurchase).where(PlanPurchase.client_id == client_id).order_by(PlanPurchase.purchased_at.desc())
    ).unique().scalars().all()

    return MemberSnapshot(
        id=client.id,
        full_name=client.full_name,
        email=client.email,
        phone=client.phone,
        created_at=client.created_at,
        profile=ClientProfileSnapshot.model_validate(client.profile) if client.profile else None,
        memberships=[_membership_snapshot(m) for m in memberships],
        plan_purchases=[_plan_purchase_snapshot(p) for p in purchases],
    )

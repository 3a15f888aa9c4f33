from __future__ import annotations

from decimal import Decimal

from .database import Base, SessionLocal, engine
from .models import ClassType, MembershipType, PlanType, Room


def upsert_defaults() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        # ClassTypes
        defaults_class_types = [
            ("reformer", "Reformer", "Machine-based session"),
            ("mat", "Mat", "Floor work"),
            ("tower", "Tower", "Tower apparatus"),
        ]
        for id_, name, description in defaults_class_types:
            if not db.get(ClassType, id_):
                db.add(ClassType(id=id_, name=name, description=description))

        # Membership types
        defaults_memberships = [
            ("annual", "Annual membership", Decimal("1200"), False, 1),
            ("annual_multi", "Annual membership (prepaid)", Decimal("1100"), True, 3),
        ]
        for id_, name, price, multi, max_years in defaults_memberships:
            if not db.get(MembershipType, id_):
                db.add(
                    MembershipType(
                        id=id_, name=name, price=price, allow_multi_year=multi, max_prepaid_years=max_years
                    )
                )

        # Plan types: (id, name, classes, price, validity_days)
        defaults_plans = [
            ("pack_4", "4 classes", 4, Decimal("800"), 30),
            ("pack_8", "8 classes", 8, Decimal("1500"), 30),
            ("unlimited_month", "Unlimited month", None, Decimal("2400"), 30),
        ]
        for id_, name, classes, price, validity in defaults_plans:
            if not db.get(PlanType, id_):
                db.add(PlanType(id=id_, name=name, class_count=classes, price=price, validity_days=validity))

        # Rooms
        for id_, name, capacity in [("main", "Main studio", 10), ("small", "Small studio", 4)]:
            if not db.get(Room, id_):
                db.add(Room(id=id_, name=name, capacity=capacity))

        db.commit()
    finally:
        db.close()


def main() -> None:
    upsert_defaults()
    print("Seed complete.")


if __name__ == "__main__":
    main()

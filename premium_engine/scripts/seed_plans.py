import copy
from decimal import Decimal

from sqlalchemy import select

from premium_engine.core.config import settings
from premium_engine.core.db import SessionLocal, configure_engine, transaction
from premium_engine.models import Plan

BASIC_FEATURES = {
    "unlimited_messages": True,
    "profile_boost": True,
    "hide_ads": True,
    "unlimited_swipes": True,
}
GOLD_FEATURES = {**BASIC_FEATURES, "see_who_liked": True, "rewind": True, "boost_per_month": 3}
PLATINUM_FEATURES = {**GOLD_FEATURES, "passport": True, "boost_per_month": 10}

DEFAULT_PLANS = [
    {
        "code": "BASIC_1M",
        "name": "Basic",
        "description": "Unlimited messages and swipes, no ads",
        "price": Decimal("49.90"),
        "duration_days": 30,
        "features": BASIC_FEATURES,
        "is_popular": False,
        "display_order": 1,
    },
    {
        "code": "GOLD_1M",
        "name": "Gold",
        "description": "See who liked you, rewind and 3 boosts a month",
        "price": Decimal("99.90"),
        "duration_days": 30,
        "features": GOLD_FEATURES,
        "is_popular": True,
        "display_order": 2,
    },
    {
        "code": "PLATINUM_1M",
        "name": "Platinum",
        "description": "Everything in Gold, passport and 10 boosts a month",
        "price": Decimal("149.90"),
        "duration_days": 30,
        "features": PLATINUM_FEATURES,
        "is_popular": False,
        "display_order": 3,
    },
]


PLAN_FIELDS = ("name", "description", "price", "duration_days", "features", "is_popular", "display_order")


def seed_plans(session_factory=SessionLocal, currency: str = "TRY") -> list[Plan]:
    """Insert the default plans whose code is missing. Existing plans are never modified."""
    seeded = []
    with transaction(session_factory) as db:
        for definition in DEFAULT_PLANS:
            plan = db.scalar(select(Plan).where(Plan.code == definition["code"]))
            if plan is None:
                plan = Plan(code=definition["code"], currency=currency, is_active=True)
                for field in PLAN_FIELDS:
                    setattr(plan, field, copy.deepcopy(definition[field]))
                db.add(plan)
                print(f"[OK] Plan created: {definition['code']}")
            else:
                drifted = [f for f in PLAN_FIELDS if getattr(plan, f) != definition[f]]
                if drifted:
                    print(f"[WARN] Plan {definition['code']} differs from its definition ({', '.join(drifted)}), left as is")
                else:
                    print(f"[OK] Plan exists: {definition['code']}")
            seeded.append(plan)
    return seeded


def main() -> None:
    configure_engine()
    plans = seed_plans(currency=settings.default_currency)
    print(f"[DONE] {len(plans)} plan(s) in catalog")


if __name__ == "__main__":
    main()

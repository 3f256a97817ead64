from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from premium_engine.core.db import SessionLocal, transaction
from premium_engine.core.errors import PlanInactive, PlanNotFound
from premium_engine.models import Plan

logger = logging.getLogger(__name__)


def load_plan(db: Session, plan_id: UUID, *, require_active: bool) -> Plan:
    """Plan lookup inside a caller's transaction."""
    plan = db.get(Plan, plan_id)
    if plan is None:
        raise PlanNotFound(plan_id)
    if require_active and not plan.is_active:
        raise PlanInactive(plan_id)
    return plan


class PlanCatalog:
    """Read-mostly catalog of purchasable plans.

    Plans are seed data: once created they are only switched on or off, so a
    subscription's frozen feature copy never drifts from what was sold.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal):
        self.session_factory = session_factory

    def get_plans(self, active_only: bool = True, *, timeout: float | None = None) -> list[Plan]:
        stmt = select(Plan).order_by(Plan.display_order.asc(), Plan.price.asc())
        if active_only:
            stmt = stmt.where(Plan.is_active == True)  # noqa: E712

        with transaction(self.session_factory, timeout) as db:
            return list(db.scalars(stmt).all())

    def get_plan_by_id(self, plan_id: UUID, *, timeout: float | None = None) -> Plan:
        with transaction(self.session_factory, timeout) as db:
            return load_plan(db, plan_id, require_active=False)

    def get_plan_by_code(self, code: str, *, timeout: float | None = None) -> Plan:
        with transaction(self.session_factory, timeout) as db:
            plan = db.scalar(select(Plan).where(Plan.code == code))
            if plan is None:
                raise PlanNotFound(code)
            return plan

    def set_plan_active(self, plan_id: UUID, is_active: bool, *, timeout: float | None = None) -> Plan:
        with transaction(self.session_factory, timeout) as db:
            plan = load_plan(db, plan_id, require_active=False)
            plan.is_active = is_active
            logger.info("plan %s (%s) is_active=%s", plan.code, plan.id, is_active)
            return plan

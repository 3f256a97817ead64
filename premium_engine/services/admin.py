from __future__ import annotations

import logging
import uuid
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from premium_engine.core.clock import Clock, utcnow
from premium_engine.core.db import SessionLocal, transaction
from premium_engine.core.errors import InvalidDuration
from premium_engine.models import Subscription
from premium_engine.schemas.billing import RevokeResult
from premium_engine.services.ledger import SubscriptionLedger
from premium_engine.services.plans import load_plan
from premium_engine.services.snapshot import clear_snapshot, lock_user

logger = logging.getLogger(__name__)

ADMIN_PAYMENT_METHOD = "admin"
SUPERSEDED_BY_ADMIN = "superseded by admin grant"
DEFAULT_GRANT_REASON = "granted by admin"
DEFAULT_REVOKE_REASON = "revoked by admin"


class AdminOverride:
    """Grant or revoke premium outside the payment flow.

    Grants go through the ledger's grant() so they supersede, pay (zero,
    flagged as admin) and snapshot exactly like a purchase. Revokes clear the
    snapshot in the same transaction instead of waiting for expiry.

    Only active rows are touched by a revoke: the engine never creates
    pending rows, and failed/cancelled/expired rows are already terminal.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        ledger: SubscriptionLedger | None = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.ledger = ledger or SubscriptionLedger(session_factory, clock=clock)

    def give_admin_premium(
        self,
        user_id: UUID,
        plan_id: UUID,
        duration_days: int,
        reason: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Subscription:
        if duration_days <= 0:
            raise InvalidDuration(duration_days)

        with transaction(self.session_factory, timeout) as db:
            user = lock_user(db, user_id)
            # admins may grant retired plans
            plan = load_plan(db, plan_id, require_active=False)
            sub = self.ledger.grant(
                db,
                user,
                plan,
                duration_days=duration_days,
                payment_method=ADMIN_PAYMENT_METHOD,
                external_tx_id=f"admin-{user_id}-{uuid.uuid4().hex}",
                amount=Decimal("0.00"),
                supersede_reason=SUPERSEDED_BY_ADMIN,
                is_admin_given=True,
                admin_reason=reason or DEFAULT_GRANT_REASON,
            )

        logger.info("admin premium granted: user=%s plan=%s days=%d", user_id, plan_id, duration_days)
        return sub

    def revoke_admin_premium(
        self,
        user_id: UUID,
        reason: str | None = None,
        *,
        timeout: float | None = None,
    ) -> RevokeResult:
        with transaction(self.session_factory, timeout) as db:
            user = lock_user(db, user_id)
            cancelled = self.ledger.supersede_live(db, user.id, reason or DEFAULT_REVOKE_REASON)
            clear_snapshot(user)

        logger.info("admin premium revoked: user=%s cancelled=%d", user_id, len(cancelled))
        return RevokeResult(cancelled_count=len(cancelled))

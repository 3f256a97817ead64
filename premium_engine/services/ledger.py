from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import distinct, func, select
from sqlalchemy.orm import Session, sessionmaker

from premium_engine.core.clock import Clock, utcnow
from premium_engine.core.db import SessionLocal, transaction
from premium_engine.core.errors import SubscriptionNotFound
from premium_engine.core.features import FeatureMap
from premium_engine.models import Payment, PaymentStatus, Plan, Subscription, SubscriptionStatus, User
from premium_engine.schemas.billing import SubscriptionOut, SubscriptionPage, SubscriptionStats
from premium_engine.services.payments import PaymentRecorder
from premium_engine.services.plans import load_plan
from premium_engine.services.snapshot import live_subscriptions, lock_user, write_snapshot

logger = logging.getLogger(__name__)

SUPERSEDED_BY_PURCHASE = "superseded by new subscription"

_CENTS = Decimal("0.01")


def _money(value: Decimal | float | int | str) -> Decimal:
    return Decimal(str(value)).quantize(_CENTS)


class SubscriptionLedger:
    """Creates, cancels and lists subscription rows.

    create_subscription is the one place a paid subscription comes to life, in
    a single transaction:

        lock user -> check plan -> cancel live rows -> insert row
        -> insert payment -> overwrite the user's entitlement snapshot

    If any step fails nothing is written. AdminOverride reuses grant() for the
    same shape with admin bookkeeping.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        payments: PaymentRecorder | None = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.payments = payments or PaymentRecorder(session_factory, clock)

    # ---- writes ----

    def create_subscription(
        self,
        user_id: UUID,
        plan_id: UUID,
        payment_method: str,
        external_tx_id: str,
        amount_paid: Decimal | float | str,
        *,
        timeout: float | None = None,
    ) -> Subscription:
        with transaction(self.session_factory, timeout) as db:
            user = lock_user(db, user_id)
            plan = load_plan(db, plan_id, require_active=True)
            sub = self.grant(
                db,
                user,
                plan,
                duration_days=plan.duration_days,
                payment_method=payment_method,
                external_tx_id=external_tx_id,
                amount=_money(amount_paid),
                supersede_reason=SUPERSEDED_BY_PURCHASE,
            )

        logger.info(
            "subscription %s created: user=%s plan=%s until=%s",
            sub.id, user_id, plan_id, sub.end_at.isoformat(),
        )
        return sub

    def grant(
        self,
        db: Session,
        user: User,
        plan: Plan,
        *,
        duration_days: int,
        payment_method: str,
        external_tx_id: str,
        amount: Decimal,
        supersede_reason: str,
        is_admin_given: bool = False,
        admin_reason: str | None = None,
    ) -> Subscription:
        """Supersede, insert, pay, snapshot. The caller owns the transaction and the user lock."""
        now = self.clock()
        end_at = now + timedelta(days=duration_days)

        superseded = self.supersede_live(db, user.id, supersede_reason)

        # deep copy: later plan edits must not leak into what was sold
        features = FeatureMap.from_flags(plan.features)

        sub = Subscription(
            user_id=user.id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE.value,
            start_at=now,
            end_at=end_at,
            payment_method=payment_method,
            external_tx_id=external_tx_id,
            amount_paid=amount,
            currency=plan.currency,
            auto_renew=not is_admin_given,
            is_admin_given=is_admin_given,
            admin_reason=admin_reason,
            features=features.to_storage(),
            created_at=now,
        )
        db.add(sub)
        db.flush()

        self.payments.record_payment(
            db,
            user_id=user.id,
            plan_id=plan.id,
            subscription_id=sub.id,
            amount=amount,
            currency=plan.currency,
            payment_method=payment_method,
            external_tx_id=external_tx_id,
            status=PaymentStatus.COMPLETED,
            is_admin_given=is_admin_given,
        )

        write_snapshot(user, end_at, features)

        if superseded:
            logger.info("user %s: %d subscription(s) superseded by %s", user.id, len(superseded), sub.id)
        return sub

    def supersede_live(self, db: Session, user_id: UUID, reason: str) -> list[Subscription]:
        now = self.clock()
        live = list(db.scalars(live_subscriptions(user_id, now).with_for_update()).all())
        for sub in live:
            sub.cancel(now, reason)
        db.flush()
        return live

    def cancel_subscription(
        self,
        user_id: UUID,
        subscription_id: UUID,
        reason: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Subscription:
        """
        User-initiated cancel. The entitlement snapshot is left alone: the
        sweeper (or the lazy check once premium_until passes) reconciles it.
        """
        with transaction(self.session_factory, timeout) as db:
            sub = db.scalar(
                select(Subscription)
                .where(Subscription.id == subscription_id)
                .where(Subscription.user_id == user_id)
                .with_for_update()
            )
            if sub is None:
                raise SubscriptionNotFound(subscription_id)
            sub.cancel(self.clock(), reason)

        logger.info("subscription %s cancelled by user %s", subscription_id, user_id)
        return sub

    # ---- reads ----

    def get_active_subscription(self, user_id: UUID, *, timeout: float | None = None) -> Subscription | None:
        with transaction(self.session_factory, timeout) as db:
            return db.scalars(live_subscriptions(user_id, self.clock()).limit(1)).first()

    def get_user_subscriptions(
        self, user_id: UUID, limit: int = 10, *, timeout: float | None = None
    ) -> list[Subscription]:
        with transaction(self.session_factory, timeout) as db:
            return list(
                db.scalars(
                    select(Subscription)
                    .where(Subscription.user_id == user_id)
                    .order_by(Subscription.created_at.desc())
                    .limit(limit)
                ).all()
            )

    def get_all_subscriptions(
        self,
        status: SubscriptionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
        *,
        timeout: float | None = None,
    ) -> SubscriptionPage:
        stmt = select(Subscription)
        count_stmt = select(func.count()).select_from(Subscription)
        if status is not None:
            stmt = stmt.where(Subscription.status == status.value)
            count_stmt = count_stmt.where(Subscription.status == status.value)

        with transaction(self.session_factory, timeout) as db:
            total = db.scalar(count_stmt) or 0
            rows = db.scalars(
                stmt.order_by(Subscription.created_at.desc()).limit(limit).offset(offset)
            ).all()
            return SubscriptionPage(
                items=[SubscriptionOut.model_validate(r) for r in rows],
                total=total,
            )

    def get_stats(self, *, timeout: float | None = None) -> SubscriptionStats:
        now = self.clock()
        live = (Subscription.status == SubscriptionStatus.ACTIVE.value) & (Subscription.end_at > now)
        completed = Payment.status == PaymentStatus.COMPLETED.value
        refunded = Payment.status == PaymentStatus.REFUNDED.value
        recent = Payment.created_at >= now - timedelta(days=30)

        with transaction(self.session_factory, timeout) as db:
            subs = db.execute(
                select(
                    func.count(distinct(Subscription.user_id)).filter(live),
                    func.count().filter(live),
                    func.count().filter(Subscription.status == SubscriptionStatus.EXPIRED.value),
                    func.count().filter(Subscription.status == SubscriptionStatus.CANCELLED.value),
                ).select_from(Subscription)
            ).one()
            money = db.execute(
                select(
                    func.sum(Payment.amount).filter(completed & recent),
                    func.sum(Payment.amount).filter(refunded & recent),
                    func.sum(Payment.amount).filter(completed),
                    func.sum(Payment.amount).filter(refunded),
                ).select_from(Payment)
            ).one()

        recent_in, recent_out, total_in, total_out = (_money(v or 0) for v in money)
        return SubscriptionStats(
            active_subscribers=subs[0] or 0,
            active_subscriptions=subs[1] or 0,
            expired_subscriptions=subs[2] or 0,
            cancelled_subscriptions=subs[3] or 0,
            revenue_last_30_days=recent_in - recent_out,
            total_revenue=total_in - total_out,
        )

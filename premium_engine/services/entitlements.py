from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from premium_engine.core.clock import Clock, utcnow
from premium_engine.core.db import SessionLocal, transaction
from premium_engine.core.errors import EngineError
from premium_engine.core.features import FeatureMap
from premium_engine.models import User
from premium_engine.schemas.billing import GateDecision, PremiumStatus
from premium_engine.services.usage import FeatureUsageTracker

logger = logging.getLogger(__name__)

PREMIUM_REQUIRED = "premium_required"
FEATURE_NOT_IN_PLAN = "feature_not_in_plan"


class EntitlementResolver:
    """Answers "is this user premium right now, and with which features".

    Reads the snapshot on the user row and nothing else, every call; nothing
    is cached. A snapshot whose premium_until already passed is cleared on the
    spot, so callers never see an expired premium state even when the sweeper
    is behind.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        usage: FeatureUsageTracker | None = None,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.usage = usage or FeatureUsageTracker(session_factory, clock)

    def check_user_premium_status(self, user_id: UUID, *, timeout: float | None = None) -> PremiumStatus:
        with transaction(self.session_factory, timeout) as db:
            user = db.scalar(select(User).where(User.id == user_id))
            if user is None or not user.is_premium:
                return PremiumStatus.not_premium()

            now = self.clock()
            if user.premium_until is None or user.premium_until <= now:
                self._clear_lapsed(db, user_id, now)
                logger.info("user %s: premium lapsed at %s, snapshot cleared", user_id, user.premium_until)
                return PremiumStatus.not_premium()

            features = FeatureMap.parse(user.premium_features)
            return PremiumStatus(is_premium=True, premium_until=user.premium_until, features=features.flags)

    def _clear_lapsed(self, db: Session, user_id: UUID, now: datetime) -> None:
        # conditional: a purchase committed since our read keeps its fresh snapshot
        db.execute(
            update(User)
            .where(User.id == user_id)
            .where(User.is_premium == True)  # noqa: E712
            .where(or_(User.premium_until.is_(None), User.premium_until <= now))
            .values(is_premium=False, premium_until=None, premium_features=FeatureMap.empty().to_storage())
            .execution_options(synchronize_session=False)
        )

    def require_premium(self, user_id: UUID, *, timeout: float | None = None) -> GateDecision:
        status = self.check_user_premium_status(user_id, timeout=timeout)
        if not status.is_premium:
            return GateDecision.deny(PREMIUM_REQUIRED, status)
        return GateDecision.allow(status)

    def require_premium_or_admin(self, user: User, *, timeout: float | None = None) -> GateDecision:
        if user.is_admin:
            return GateDecision.allow(PremiumStatus.not_premium())
        return self.require_premium(user.id, timeout=timeout)

    def require_feature(self, user_id: UUID, feature_name: str, *, timeout: float | None = None) -> GateDecision:
        status = self.check_user_premium_status(user_id, timeout=timeout)
        if not status.is_premium:
            return GateDecision.deny(PREMIUM_REQUIRED, status, feature_name)

        if status.features.get(feature_name) is not True:
            return GateDecision.deny(FEATURE_NOT_IN_PLAN, status, feature_name)

        try:
            self.usage.track_usage(user_id, feature_name, timeout=timeout)
        except EngineError as exc:
            # usage counters never block a paying user
            logger.warning("usage tracking failed for user %s feature %s: %s", user_id, feature_name, exc)

        return GateDecision.allow(status, feature_name)

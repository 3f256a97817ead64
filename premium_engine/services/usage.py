from __future__ import annotations

import logging
import uuid
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from premium_engine.core.clock import Clock, utcnow
from premium_engine.core.db import SessionLocal, transaction
from premium_engine.core.errors import UnsupportedDialect
from premium_engine.models import FeatureUsage

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class FeatureUsageTracker:
    """Per-user, per-feature usage counters for gated features."""

    def __init__(self, session_factory: sessionmaker = SessionLocal, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def track_usage(self, user_id: UUID, feature_name: str, *, timeout: float | None = None) -> None:
        with transaction(self.session_factory, timeout) as db:
            self.upsert(db, user_id, feature_name)

    def upsert(self, db: Session, user_id: UUID, feature_name: str) -> None:
        # single INSERT .. ON CONFLICT statement, never read-then-write
        dialect = db.get_bind().dialect.name
        insert = _UPSERT_INSERTS.get(dialect)
        if insert is None:
            raise UnsupportedDialect(dialect, "feature usage upsert")

        now = self.clock()
        stmt = insert(FeatureUsage).values(
            id=uuid.uuid4(),
            user_id=user_id,
            feature_name=feature_name,
            usage_count=1,
            last_used_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[FeatureUsage.user_id, FeatureUsage.feature_name],
            set_={
                "usage_count": FeatureUsage.usage_count + 1,
                "last_used_at": stmt.excluded.last_used_at,
            },
        )
        db.execute(stmt)

    def get_usage(self, user_id: UUID, feature_name: str, *, timeout: float | None = None) -> FeatureUsage | None:
        with transaction(self.session_factory, timeout) as db:
            return db.scalar(
                select(FeatureUsage)
                .where(FeatureUsage.user_id == user_id)
                .where(FeatureUsage.feature_name == feature_name)
            )

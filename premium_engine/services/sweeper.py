from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator
from uuid import UUID

from sqlalchemy import exists, func, select
from sqlalchemy.orm import sessionmaker

from premium_engine.core.clock import Clock, utcnow
from premium_engine.core.config import settings
from premium_engine.core.db import SessionLocal, transaction
from premium_engine.core.errors import ReconciliationFailure
from premium_engine.core.features import FeatureMap
from premium_engine.models import Subscription, SubscriptionStatus, User
from premium_engine.schemas.billing import SweepFailure, SweepResult
from premium_engine.services.snapshot import (
    clear_snapshot,
    live_subscriptions,
    lock_user,
    snapshot_matches,
    write_snapshot,
)

logger = logging.getLogger(__name__)

# one sweep per process on dialects without advisory locks
_local_sweep_lock = threading.Lock()


class ExpirationSweeper:
    """
    Moves overdue subscriptions to "expired" and brings user snapshots back in
    line with the subscription rows.

    A run has two phases:
      1) one transaction expiring every active row whose end_at has passed
      2) one transaction per user, rewriting or clearing the snapshot

    A user that fails in phase 2 is logged and reported in failed_users; the
    rest of the batch still runs. Running twice in a row changes nothing the
    second time.
    """

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        clock: Clock = utcnow,
        advisory_lock_key: int | None = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.advisory_lock_key = settings.sweep_advisory_lock_key if advisory_lock_key is None else advisory_lock_key

    def run_once(self) -> SweepResult:
        with self._sweep_lock() as acquired:
            if not acquired:
                logger.info("sweep skipped: another sweeper holds the lock")
                return SweepResult(skipped=True)
            return self._sweep()

    def _sweep(self) -> SweepResult:
        now = self.clock()

        with transaction(self.session_factory) as db:
            overdue = db.scalars(
                select(Subscription)
                .where(Subscription.status == SubscriptionStatus.ACTIVE.value)
                .where(Subscription.end_at <= now)
                .with_for_update()
            ).all()
            for sub in overdue:
                sub.transition(SubscriptionStatus.EXPIRED)
            affected = {sub.user_id for sub in overdue}
            expired_count = len(overdue)

        candidates = affected | self._orphaned_snapshots(now)

        result = SweepResult(expired_count=expired_count)
        for user_id in sorted(candidates, key=str):
            try:
                if self._reconcile_user(user_id):
                    result.reconciled_count += 1
            except Exception as exc:
                failure = ReconciliationFailure(user_id, exc)
                logger.exception("%s", failure)
                result.failed_users.append(SweepFailure(user_id=user_id, error=str(exc)))

        if result.expired_count or result.reconciled_count or result.failed_users:
            logger.info(
                "sweep done: expired=%d reconciled=%d failed=%d",
                result.expired_count, result.reconciled_count, len(result.failed_users),
            )
        return result

    def _orphaned_snapshots(self, now: datetime) -> set[UUID]:
        """Users whose snapshot says premium with no live subscription behind it (e.g. after a cancel)."""
        has_live = exists().where(
            Subscription.user_id == User.id,
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_at > now,
        )
        with transaction(self.session_factory) as db:
            return set(
                db.scalars(
                    select(User.id).where(User.is_premium == True).where(~has_live)  # noqa: E712
                ).all()
            )

    def _reconcile_user(self, user_id: UUID) -> bool:
        """True when the snapshot had to change."""
        with transaction(self.session_factory) as db:
            user = lock_user(db, user_id)
            latest = db.scalars(live_subscriptions(user_id, self.clock()).limit(1)).first()
            if snapshot_matches(user, latest):
                return False

            if latest is None:
                clear_snapshot(user)
                logger.info("user %s: no live subscription, snapshot cleared", user_id)
            else:
                write_snapshot(user, latest.end_at, FeatureMap.parse(latest.features))
                logger.info("user %s: snapshot moved to subscription %s", user_id, latest.id)
            return True

    @contextmanager
    def _sweep_lock(self) -> Iterator[bool]:
        with self.session_factory() as db:
            engine = db.get_bind()

        if engine.dialect.name != "postgresql":
            acquired = _local_sweep_lock.acquire(blocking=False)
            try:
                yield acquired
            finally:
                if acquired:
                    _local_sweep_lock.release()
            return

        # session-level lock: held by this connection until unlocked or closed
        with engine.connect() as conn:
            acquired = bool(conn.scalar(select(func.pg_try_advisory_lock(self.advisory_lock_key))))
            conn.commit()
            try:
                yield acquired
            finally:
                if acquired:
                    conn.scalar(select(func.pg_advisory_unlock(self.advisory_lock_key)))
                    conn.commit()


class SweepScheduler:
    """Runs ExpirationSweeper.run_once() every `interval` seconds on a daemon thread."""

    def __init__(self, sweeper: ExpirationSweeper, interval: float | None = None):
        self.sweeper = sweeper
        self.interval = settings.sweep_interval_seconds if interval is None else interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="premium-sweeper", daemon=True)
        self._thread.start()
        logger.info("sweep scheduler started, interval=%ss", self.interval)

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("sweep scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.sweeper.run_once()
            except Exception:
                # the next pass retries
                logger.exception("sweep pass failed")
            self._stop.wait(self.interval)

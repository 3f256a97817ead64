"""
Tests for ExpirationSweeper and SweepScheduler.
"""
import threading
import time
from datetime import timedelta
from decimal import Decimal

from premium_engine.core.features import FeatureMap
from premium_engine.models import Subscription, SubscriptionStatus, User
from premium_engine.services import sweeper as sweeper_module
from premium_engine.services.sweeper import ExpirationSweeper, SweepScheduler


def test_expires_overdue_rows_and_clears_snapshot(sweeper, ledger, plans, user, load, clock):
    sub = ledger.create_subscription(user.id, plans["Gold"].id, "card", "tx-1", "99.90")
    clock.advance(days=31)

    result = sweeper.run_once()

    assert result.expired_count == 1
    assert result.reconciled_count == 1
    assert result.failed_users == []
    assert result.skipped is False
    assert load(Subscription, sub.id).status == SubscriptionStatus.EXPIRED.value

    fresh = load(User, user.id)
    assert fresh.is_premium is False
    assert fresh.premium_until is None


def test_second_run_changes_nothing(sweeper, ledger, plans, user, clock):
    ledger.create_subscription(user.id, plans["Gold"].id, "card", "tx-1", "99.90")
    clock.advance(days=31)

    sweeper.run_once()
    again = sweeper.run_once()

    assert again.expired_count == 0
    assert again.reconciled_count == 0
    assert again.failed_users == []


def test_nothing_to_do_before_expiry(sweeper, ledger, plans, user, load, clock):
    sub = ledger.create_subscription(user.id, plans["Gold"].id, "card", "tx-1", "99.90")
    clock.advance(days=29)

    result = sweeper.run_once()

    assert result.expired_count == 0
    assert result.reconciled_count == 0
    assert load(Subscription, sub.id).status == SubscriptionStatus.ACTIVE.value
    assert load(User, user.id).is_premium is True


def test_cancelled_subscription_snapshot_is_cleared(sweeper, ledger, plans, user, load):
    sub = ledger.create_subscription(user.id, plans["Basic"].id, "card", "tx-1", "49.90")
    ledger.cancel_subscription(user.id, sub.id)

    result = sweeper.run_once()

    assert result.expired_count == 0
    assert result.reconciled_count == 1
    assert load(User, user.id).is_premium is False


def test_snapshot_moves_to_remaining_live_subscription(sweeper, ledger, plans, user, load, session_factory, clock):
    ledger.create_subscription(user.id, plans["Basic"].id, "card", "tx-1", "49.90")

    # a second live row the snapshot doesn't know about yet
    platinum = FeatureMap.from_flags(plans["Platinum"].features)
    with session_factory() as db:
        extra = Subscription(
            user_id=user.id,
            plan_id=plans["Platinum"].id,
            status=SubscriptionStatus.ACTIVE.value,
            start_at=clock.now,
            end_at=clock.now + timedelta(days=60),
            amount_paid=Decimal("0"),
            currency="TRY",
            features=platinum.to_storage(),
            created_at=clock.now,
        )
        db.add(extra)
        db.commit()

    clock.advance(days=31)
    result = sweeper.run_once()

    assert result.expired_count == 1
    assert result.reconciled_count == 1
    fresh = load(User, user.id)
    assert fresh.is_premium is True
    assert fresh.premium_until == extra.end_at
    assert FeatureMap.parse(fresh.premium_features) == platinum


def test_one_failing_user_does_not_stop_the_batch(session_factory, ledger, plans, make_user, load, clock):
    broken_user = make_user()
    healthy_user = make_user()
    ledger.create_subscription(broken_user.id, plans["Gold"].id, "card", "tx-1", "99.90")
    ledger.create_subscription(healthy_user.id, plans["Gold"].id, "card", "tx-2", "99.90")
    clock.advance(days=31)

    class FlakySweeper(ExpirationSweeper):
        def _reconcile_user(self, user_id):
            if user_id == broken_user.id:
                raise RuntimeError("row lock lost")
            return super()._reconcile_user(user_id)

    result = FlakySweeper(session_factory, clock).run_once()

    assert result.expired_count == 2
    assert result.reconciled_count == 1
    assert [f.user_id for f in result.failed_users] == [broken_user.id]
    assert "row lock lost" in result.failed_users[0].error
    assert load(User, healthy_user.id).is_premium is False

    # the next run picks the broken user up again
    retry = ExpirationSweeper(session_factory, clock).run_once()
    assert retry.expired_count == 0
    assert retry.reconciled_count == 1
    assert load(User, broken_user.id).is_premium is False


def test_run_is_skipped_while_another_sweep_holds_the_lock(sweeper):
    assert sweeper_module._local_sweep_lock.acquire(blocking=False)
    try:
        result = sweeper.run_once()
    finally:
        sweeper_module._local_sweep_lock.release()

    assert result.skipped is True
    assert result.expired_count == 0


def test_scheduler_runs_passes_until_stopped():
    ran = threading.Event()
    calls = []

    class CountingSweeper:
        def run_once(self):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first pass blows up")
            ran.set()

    scheduler = SweepScheduler(CountingSweeper(), interval=0.01)
    scheduler.start()
    try:
        assert ran.wait(timeout=5)
    finally:
        scheduler.stop()

    seen = len(calls)
    assert seen >= 2
    time.sleep(0.05)
    assert len(calls) == seen

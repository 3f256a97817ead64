"""
Tests for FeatureUsageTracker upserts.
"""
import threading
from datetime import timedelta

from sqlalchemy import func, select

from premium_engine.models import FeatureUsage


def test_repeated_tracking_keeps_one_row(usage, user, session_factory, clock):
    start = clock.now
    for _ in range(3):
        usage.track_usage(user.id, "rewind")
        clock.advance(seconds=30)

    with session_factory() as db:
        rows = db.scalars(select(FeatureUsage).where(FeatureUsage.user_id == user.id)).all()

    assert len(rows) == 1
    assert rows[0].usage_count == 3
    assert rows[0].feature_name == "rewind"
    assert rows[0].created_at == start
    assert rows[0].last_used_at == start + timedelta(seconds=60)


def test_features_are_counted_separately(usage, user):
    usage.track_usage(user.id, "rewind")
    usage.track_usage(user.id, "passport")
    usage.track_usage(user.id, "passport")

    assert usage.get_usage(user.id, "rewind").usage_count == 1
    assert usage.get_usage(user.id, "passport").usage_count == 2
    assert usage.get_usage(user.id, "hide_ads") is None


def test_concurrent_tracking_loses_no_increments(usage, user, session_factory):
    threads = [threading.Thread(target=usage.track_usage, args=(user.id, "see_who_liked")) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    with session_factory() as db:
        count = db.scalar(select(func.count()).select_from(FeatureUsage))
    assert count == 1
    assert usage.get_usage(user.id, "see_who_liked").usage_count == 8

"""Helpers for the denormalized entitlement snapshot on ``users``.

All of them run inside a transaction owned by the caller.
"""
from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from premium_engine.core.errors import UserNotFound
from premium_engine.core.features import FeatureMap
from premium_engine.models import Subscription, SubscriptionStatus, User


def lock_user(db: Session, user_id: UUID) -> User:
    # row lock on postgres serialises writers per user; sqlite runs BEGIN IMMEDIATE instead
    user = db.scalar(select(User).where(User.id == user_id).with_for_update())
    if user is None:
        raise UserNotFound(user_id)
    return user


def live_subscriptions(user_id: UUID, now: datetime) -> Select[tuple[Subscription]]:
    """status = active AND end_at > now, latest-ending first."""
    return (
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .where(Subscription.status == SubscriptionStatus.ACTIVE.value)
        .where(Subscription.end_at > now)
        .order_by(Subscription.end_at.desc())
    )


def write_snapshot(user: User, premium_until: datetime, features: FeatureMap) -> None:
    user.is_premium = True
    user.premium_until = premium_until
    user.premium_features = features.to_storage()


def clear_snapshot(user: User) -> None:
    user.is_premium = False
    user.premium_until = None
    user.premium_features = FeatureMap.empty().to_storage()


def snapshot_matches(user: User, subscription: Subscription | None) -> bool:
    if subscription is None:
        return not user.is_premium and user.premium_until is None
    return (
        user.is_premium
        and user.premium_until == subscription.end_at
        and FeatureMap.parse(user.premium_features) == FeatureMap.parse(subscription.features)
    )

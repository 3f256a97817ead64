from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from premium_engine.core.features import FlagValue


class PlanOut(BaseModel):
    id: uuid.UUID
    code: str
    name: str
    description: str | None = None
    price: Decimal
    currency: str
    duration_days: int
    features: dict[str, FlagValue]
    is_active: bool
    is_popular: bool
    display_order: int

    model_config = ConfigDict(from_attributes=True)


class SubscriptionOut(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    plan_id: uuid.UUID
    status: str
    start_at: datetime
    end_at: datetime
    payment_method: str | None
    external_tx_id: str | None
    amount_paid: Decimal
    currency: str
    auto_renew: bool
    cancelled_at: datetime | None
    cancelled_reason: str | None
    is_admin_given: bool

    model_config = ConfigDict(from_attributes=True)


class PremiumStatus(BaseModel):
    is_premium: bool = False
    premium_until: datetime | None = None
    features: dict[str, FlagValue] = Field(default_factory=dict)

    @classmethod
    def not_premium(cls) -> "PremiumStatus":
        return cls()


class GateDecision(BaseModel):
    allowed: bool
    reason: str | None = None  # premium_required / feature_not_in_plan
    feature: str | None = None
    status: PremiumStatus

    @classmethod
    def allow(cls, status: PremiumStatus, feature: str | None = None) -> "GateDecision":
        return cls(allowed=True, feature=feature, status=status)

    @classmethod
    def deny(cls, reason: str, status: PremiumStatus, feature: str | None = None) -> "GateDecision":
        return cls(allowed=False, reason=reason, feature=feature, status=status)


class RevokeResult(BaseModel):
    cancelled_count: int


class SweepFailure(BaseModel):
    user_id: uuid.UUID
    error: str


class SweepResult(BaseModel):
    expired_count: int = 0
    reconciled_count: int = 0
    failed_users: list[SweepFailure] = Field(default_factory=list)
    # another instance holds the sweep lock
    skipped: bool = False


class SubscriptionPage(BaseModel):
    items: list[SubscriptionOut]
    total: int


class SubscriptionStats(BaseModel):
    active_subscribers: int = 0
    active_subscriptions: int = 0
    expired_subscriptions: int = 0
    cancelled_subscriptions: int = 0
    revenue_last_30_days: Decimal = Decimal("0")
    total_revenue: Decimal = Decimal("0")

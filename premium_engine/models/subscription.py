import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, ForeignKey, Index, Numeric, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from premium_engine.core.clock import utcnow
from premium_engine.core.db import Base
from premium_engine.core.errors import InvalidSubscriptionTransition
from premium_engine.models.types import JSONDocument, UTCDateTime


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"


# nothing ever re-enters ACTIVE from a terminal state: a new purchase is a new row
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    SubscriptionStatus.PENDING.value: frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.FAILED.value}),
    SubscriptionStatus.ACTIVE.value: frozenset({SubscriptionStatus.CANCELLED.value, SubscriptionStatus.EXPIRED.value}),
    SubscriptionStatus.CANCELLED.value: frozenset(),
    SubscriptionStatus.EXPIRED.value: frozenset(),
    SubscriptionStatus.FAILED.value: frozenset(),
}


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("plans.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=SubscriptionStatus.ACTIVE.value, index=True)
    start_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)

    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_tx_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="TRY")
    auto_renew: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_admin_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    admin_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # frozen FeatureMap, copied from the plan at creation time
    features: Mapped[dict] = mapped_column(JSONDocument, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("Plan", back_populates="subscriptions")
    payments = relationship("Payment", back_populates="subscription")

    __table_args__ = (
        Index("ix_subscriptions_user_status_end", "user_id", "status", "end_at"),
    )

    def transition(self, target: SubscriptionStatus) -> None:
        if target.value not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidSubscriptionTransition(self.status, target.value)
        self.status = target.value

    def cancel(self, now: datetime, reason: str | None) -> None:
        self.transition(SubscriptionStatus.CANCELLED)
        self.cancelled_at = now
        self.cancelled_reason = reason
        self.auto_renew = False

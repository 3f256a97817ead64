import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, ForeignKey, Numeric, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from premium_engine.core.clock import utcnow
from premium_engine.core.db import Base
from premium_engine.models.types import JSONDocument, UTCDateTime


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("subscriptions.id"), nullable=True, index=True
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("plans.id"), nullable=False, index=True)
    # set on refund rows only
    refund_of_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("payments.id"), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PaymentStatus.PENDING.value)
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_tx_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    gateway_response: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    is_admin_given: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="payments")
    plan = relationship("Plan", back_populates="payments")
    subscription = relationship("Subscription", back_populates="payments")

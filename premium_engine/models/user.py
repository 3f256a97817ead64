import uuid
from datetime import datetime

from sqlalchemy import String, Boolean, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from premium_engine.core.clock import utcnow
from premium_engine.core.db import Base
from premium_engine.models.types import JSONDocument, UTCDateTime


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True, nullable=False)

    role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")  # user/admin/super_admin

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

    # entitlement snapshot: a cache of "does an active, unexpired subscription exist"
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    premium_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    premium_features: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)

    payments = relationship("Payment", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user")

    @property
    def is_admin(self) -> bool:
        return self.role in ("admin", "super_admin")

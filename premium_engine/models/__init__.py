from premium_engine.core.db import Base

from .user import User
from .plan import Plan
from .payment import Payment, PaymentStatus
from .subscription import Subscription, SubscriptionStatus
from .feature_usage import FeatureUsage

__all__ = [
    "Base",
    "User",
    "Plan",
    "Payment",
    "PaymentStatus",
    "Subscription",
    "SubscriptionStatus",
    "FeatureUsage",
]

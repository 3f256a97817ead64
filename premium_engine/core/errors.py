from __future__ import annotations

from uuid import UUID


class EngineError(Exception):
    """Base class for everything the premium engine raises on purpose."""


class PlanNotFound(EngineError):
    def __init__(self, plan_id: UUID | str):
        super().__init__(f"Plan {plan_id} not found")
        self.plan_id = plan_id


class PlanInactive(EngineError):
    def __init__(self, plan_id: UUID | str):
        super().__init__(f"Plan {plan_id} is not available for purchase")
        self.plan_id = plan_id


class UserNotFound(EngineError):
    def __init__(self, user_id: UUID | str):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class SubscriptionNotFound(EngineError):
    """Missing subscription, or one that belongs to another user."""

    def __init__(self, subscription_id: UUID | str):
        super().__init__(f"Subscription {subscription_id} not found")
        self.subscription_id = subscription_id


class InvalidSubscriptionTransition(EngineError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Subscription cannot move from '{current}' to '{target}'")
        self.current = current
        self.target = target


class InvalidDuration(EngineError):
    def __init__(self, duration_days: int):
        super().__init__(f"Duration must be a positive number of days, got {duration_days}")
        self.duration_days = duration_days


class PaymentNotRefundable(EngineError):
    def __init__(self, payment_id: UUID | str, reason: str):
        super().__init__(f"Payment {payment_id} cannot be refunded: {reason}")
        self.payment_id = payment_id


class TransactionFailure(EngineError):
    """A database error aborted the transaction; nothing was persisted."""


class TransactionTimeout(TransactionFailure):
    pass


class ReconciliationFailure(EngineError):
    """One user's snapshot could not be reconciled during a sweep."""

    def __init__(self, user_id: UUID, cause: BaseException):
        super().__init__(f"Reconciliation failed for user {user_id}: {cause}")
        self.user_id = user_id
        self.cause = cause


class SchemaVersionMismatch(EngineError):
    pass


class UnsupportedDialect(EngineError):
    def __init__(self, dialect: str, operation: str):
        super().__init__(f"{operation} is not supported on '{dialect}'")
        self.dialect = dialect

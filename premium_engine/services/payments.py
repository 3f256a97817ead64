from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from premium_engine.core.clock import Clock, utcnow
from premium_engine.core.db import SessionLocal, transaction
from premium_engine.core.errors import PaymentNotRefundable
from premium_engine.models import Payment, PaymentStatus

logger = logging.getLogger(__name__)


class PaymentRecorder:
    """Append-only ledger of payment attempts.

    Rows are never updated. A refund is a new row with status "refunded" that
    points at the payment it reverses.
    """

    def __init__(self, session_factory: sessionmaker = SessionLocal, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def record_payment(
        self,
        db: Session,
        *,
        user_id: UUID,
        plan_id: UUID,
        subscription_id: UUID | None,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        external_tx_id: str,
        status: PaymentStatus = PaymentStatus.COMPLETED,
        is_admin_given: bool = False,
        gateway_response: dict[str, Any] | None = None,
        refund_of_id: UUID | None = None,
    ) -> Payment:
        """Insert inside the caller's transaction; the caller commits."""
        payment = Payment(
            user_id=user_id,
            plan_id=plan_id,
            subscription_id=subscription_id,
            amount=amount,
            currency=currency,
            status=status.value,
            payment_method=payment_method,
            external_tx_id=external_tx_id,
            gateway_response=gateway_response,
            is_admin_given=is_admin_given,
            refund_of_id=refund_of_id,
            created_at=self.clock(),
        )
        db.add(payment)
        # surface unique violations (duplicate external_tx_id) here, not at commit
        db.flush()
        return payment

    def record_refund(
        self,
        payment_id: UUID,
        external_tx_id: str,
        reason: str | None = None,
        *,
        timeout: float | None = None,
    ) -> Payment:
        with transaction(self.session_factory, timeout) as db:
            original = db.get(Payment, payment_id, with_for_update=True)
            if original is None:
                raise PaymentNotRefundable(payment_id, "payment not found")
            if original.status != PaymentStatus.COMPLETED.value:
                raise PaymentNotRefundable(payment_id, f"status is '{original.status}'")

            already = db.scalar(
                select(Payment.id)
                .where(Payment.refund_of_id == original.id)
                .where(Payment.status == PaymentStatus.REFUNDED.value)
            )
            if already is not None:
                raise PaymentNotRefundable(payment_id, "already refunded")

            refund = self.record_payment(
                db,
                user_id=original.user_id,
                plan_id=original.plan_id,
                subscription_id=original.subscription_id,
                amount=original.amount,
                currency=original.currency,
                payment_method=original.payment_method,
                external_tx_id=external_tx_id,
                status=PaymentStatus.REFUNDED,
                is_admin_given=original.is_admin_given,
                gateway_response={"reason": reason} if reason else None,
                refund_of_id=original.id,
            )
            logger.info("refund %s recorded for payment %s", refund.id, original.id)
            return refund

    def get_payment_history(self, user_id: UUID, limit: int = 20, *, timeout: float | None = None) -> list[Payment]:
        with transaction(self.session_factory, timeout) as db:
            return list(
                db.scalars(
                    select(Payment)
                    .where(Payment.user_id == user_id)
                    .order_by(Payment.created_at.desc())
                    .limit(limit)
                ).all()
            )

"""Payment status transitions and the derived ``Booking.paid_amount``."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import Booking, Invoice, Notification, Payment, PaymentStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.COMPLETED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def transition_payment(payment: Payment, target: PaymentStatus) -> bool:
    """Move ``payment`` to ``target``; returns False for replays and disallowed moves."""
    if payment.status == target:
        return False
    if not can_transition(payment.status, target):
        logger.warning(
            "Ignoring payment %s transition %s -> %s",
            payment.moyasar_payment_id or payment.id,
            payment.status.value,
            target.value,
        )
        return False
    payment.status = target
    return True


def refresh_booking_paid_amount(db: Session, booking_id: int) -> float:
    """Recompute ``paid_amount`` from completed payments in one UPDATE statement."""
    completed_sum = (
        select(func.coalesce(func.sum(Payment.amount), 0))
        .where(Payment.booking_id == booking_id, Payment.status == PaymentStatus.COMPLETED)
        .scalar_subquery()
    )
    db.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values(paid_amount=completed_sum, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    db.flush()
    paid = db.execute(select(Booking.paid_amount).where(Booking.id == booking_id)).scalar_one_or_none()
    return float(paid or 0)


def next_invoice_number(db: Session, hotel_id: int, now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    count = db.query(func.count(Invoice.id)).filter(Invoice.hotel_id == hotel_id).scalar() or 0
    return f"INV-{hotel_id}-{now:%Y%m}-{count + 1:05d}"


def notify(
    db: Session,
    hotel_id: int,
    title: str,
    message: str,
    kind: str = "info",
    user_id: Optional[int] = None,
    data: Optional[dict] = None,
) -> Notification:
    notification = Notification(
        hotel_id=hotel_id,
        user_id=user_id,
        title=title,
        message=message,
        type=kind,
        data=data,
    )
    db.add(notification)
    return notification

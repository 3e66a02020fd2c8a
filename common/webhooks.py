"""Signed gateway webhooks: HMAC verification and idempotent local updates."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Union

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from .billing import notify, refresh_booking_paid_amount, transition_payment
from .models import (
    Booking,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PlanEnum,
    Subscription,
    SubscriptionStatus,
    User,
    WebhookLog,
    WebhookLogStatus,
)

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Moyasar-Signature"
TIMESTAMP_HEADERS = ("X-Moyasar-Timestamp", "X-Timestamp")

EVENT_TARGETS: Dict[str, PaymentStatus] = {
    "payment.succeeded": PaymentStatus.COMPLETED,
    "payment.captured": PaymentStatus.COMPLETED,
    "payment.failed": PaymentStatus.FAILED,
    "payment.refunded": PaymentStatus.REFUNDED,
}

PLAN_PERIODS: Dict[PlanEnum, relativedelta] = {
    PlanEnum.MONTHLY: relativedelta(months=1),
    PlanEnum.YEARLY: relativedelta(years=1),
}


class WebhookError(Exception):
    status_code = 400


class WebhookConfigurationError(WebhookError):
    status_code = 500


@dataclass
class WebhookOutcome:
    event: Optional[str]
    processed: bool


def compute_signature(secret: str, payload: Union[bytes, str], timestamp: str) -> str:
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(secret.encode("utf-8"), body + timestamp.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(
    secret: str,
    payload: Union[bytes, str],
    signature: Optional[str],
    timestamp: Optional[str],
) -> None:
    """Raise unless ``signature`` is HMAC-SHA256(secret, payload + timestamp), bare or ``sha256=``-prefixed."""
    if not secret:
        logger.error("Webhook secret is not configured")
        raise WebhookConfigurationError("Webhook secret is not configured")
    if not signature:
        raise WebhookError("Missing signature header")
    if not timestamp:
        raise WebhookError("Missing timestamp header")
    expected = compute_signature(secret, payload, timestamp)
    provided = signature[len("sha256="):] if signature.startswith("sha256=") else signature
    if not hmac.compare_digest(expected, provided):
        logger.warning("Invalid webhook signature")
        raise WebhookError("Invalid webhook signature")


def parse_event(payload: Union[bytes, str]) -> Dict[str, Any]:
    try:
        data = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise WebhookError("Invalid JSON payload") from exc
    if not isinstance(data, dict) or not data.get("event"):
        raise WebhookError("Missing event type")
    return data


def process_event(db: Session, data: Dict[str, Any]) -> WebhookOutcome:
    """Apply a verified event. The caller commits."""
    event = data["event"]
    payment = data.get("payment") or {}
    if not isinstance(payment, dict):
        raise WebhookError("Invalid payment object")
    log = WebhookLog(
        provider="moyasar",
        event_type=event,
        external_id=payment.get("id"),
        payload=data,
        status=WebhookLogStatus.RECEIVED,
    )
    db.add(log)

    target = EVENT_TARGETS.get(event)
    if target is None:
        logger.info("Webhook event %s for payment %s needs no action", event, payment.get("id"))
        return _finish(log, WebhookLogStatus.IGNORED, event, processed=False)
    if not payment.get("id"):
        raise WebhookError("Missing payment object")

    metadata = payment.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise WebhookError("Invalid payment metadata")
    if metadata.get("booking_id"):
        return _apply_booking_event(db, log, event, payment, metadata["booking_id"], target)
    if metadata.get("user_id") and metadata.get("plan_id"):
        return _apply_subscription_event(db, log, event, payment, metadata, target)

    logger.info("Payment %s has no booking or subscription metadata", payment["id"])
    return _finish(log, WebhookLogStatus.IGNORED, event, processed=False)


def _finish(log: WebhookLog, status: WebhookLogStatus, event: str, processed: bool, error: Optional[str] = None) -> WebhookOutcome:
    log.status = status
    log.error_message = error
    log.processed_at = datetime.utcnow()
    return WebhookOutcome(event=event, processed=processed)


def _major_units(minor: Any) -> float:
    return round(float(minor or 0) / 100, 2)


def _apply_booking_event(
    db: Session,
    log: WebhookLog,
    event: str,
    payment_data: Dict[str, Any],
    raw_booking_id: Any,
    target: PaymentStatus,
) -> WebhookOutcome:
    try:
        booking = db.get(Booking, int(raw_booking_id))
    except (TypeError, ValueError):
        booking = None
    if booking is None:
        logger.warning("Webhook for payment %s references unknown booking %s", payment_data["id"], raw_booking_id)
        return _finish(log, WebhookLogStatus.FAILED, event, processed=False, error=f"Unknown booking {raw_booking_id}")

    payment = db.query(Payment).filter(Payment.moyasar_payment_id == payment_data["id"]).first()
    if payment is None:
        if target == PaymentStatus.REFUNDED:
            logger.warning("Refund for unrecorded payment %s", payment_data["id"])
            return _finish(log, WebhookLogStatus.IGNORED, event, processed=False)
        payment = Payment(
            hotel_id=booking.hotel_id,
            booking_id=booking.id,
            amount=_major_units(payment_data.get("amount")),
            currency=payment_data.get("currency", "SAR"),
            method=PaymentMethod.MOYASAR,
            status=target,
            moyasar_payment_id=payment_data["id"],
            reference=payment_data["id"],
            notes=_payment_note(event, booking.id, payment_data),
        )
        db.add(payment)
        changed = True
    else:
        changed = transition_payment(payment, target)

    if not changed:
        logger.info("Payment %s already %s", payment.moyasar_payment_id, payment.status.value)
        return _finish(log, WebhookLogStatus.PROCESSED, event, processed=False)

    db.flush()
    paid = refresh_booking_paid_amount(db, booking.id)
    if target == PaymentStatus.COMPLETED:
        notify(
            db,
            booking.hotel_id,
            "Payment received",
            f"Payment of {payment.amount:.2f} {payment.currency} received for booking #{booking.id}",
            kind="payment",
            data={"booking_id": booking.id, "paid_amount": paid},
        )
    logger.info("Booking %s payment %s is now %s", booking.id, payment.moyasar_payment_id, target.value)
    return _finish(log, WebhookLogStatus.PROCESSED, event, processed=True)


def _payment_note(event: str, booking_id: int, payment_data: Dict[str, Any]) -> str:
    if event == "payment.failed":
        return f"Payment failed: {payment_data.get('failure_reason') or 'Unknown reason'}"
    return f"Payment via Moyasar for booking {booking_id}"


def _apply_subscription_event(
    db: Session,
    log: WebhookLog,
    event: str,
    payment_data: Dict[str, Any],
    metadata: Dict[str, Any],
    target: PaymentStatus,
) -> WebhookOutcome:
    try:
        plan = PlanEnum(metadata["plan_id"])
    except ValueError as exc:
        raise WebhookError(f"Invalid plan_id: {metadata['plan_id']}") from exc
    try:
        user = db.get(User, int(metadata["user_id"]))
    except (TypeError, ValueError):
        user = None
    if user is None:
        return _finish(log, WebhookLogStatus.FAILED, event, processed=False, error=f"Unknown user {metadata['user_id']}")

    subscription = db.query(Subscription).filter(Subscription.user_id == user.id).first()
    if target == PaymentStatus.COMPLETED:
        if (
            subscription is not None
            and subscription.moyasar_payment_id == payment_data["id"]
            and subscription.status == SubscriptionStatus.ACTIVE
        ):
            return _finish(log, WebhookLogStatus.PROCESSED, event, processed=False)
        now = datetime.utcnow()
        expires_at = now + PLAN_PERIODS[plan]
        if subscription is None:
            subscription = Subscription(user_id=user.id, plan=plan)
            db.add(subscription)
        subscription.plan = plan
        subscription.status = SubscriptionStatus.ACTIVE
        subscription.moyasar_payment_id = payment_data["id"]
        subscription.amount = _major_units(payment_data.get("amount"))
        subscription.currency = payment_data.get("currency", "SAR")
        subscription.current_period_start = now
        subscription.current_period_end = expires_at
        user.is_premium = True
        user.premium_expires_at = expires_at
        logger.info("Premium %s plan active for user %s until %s", plan.value, user.id, expires_at)
        return _finish(log, WebhookLogStatus.PROCESSED, event, processed=True)

    if target == PaymentStatus.REFUNDED:
        if subscription is None or subscription.status == SubscriptionStatus.REFUNDED:
            return _finish(log, WebhookLogStatus.PROCESSED, event, processed=False)
        subscription.status = SubscriptionStatus.REFUNDED
        user.is_premium = False
        user.premium_expires_at = None
        logger.info("Premium removed after refund for user %s", user.id)
        return _finish(log, WebhookLogStatus.PROCESSED, event, processed=True)

    return _finish(log, WebhookLogStatus.IGNORED, event, processed=False)

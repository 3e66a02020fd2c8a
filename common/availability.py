"""Booking overlap checks and derived unit occupancy."""
from __future__ import annotations

from datetime import date, datetime
from typing import Iterable, List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from .models import Booking, BookingStatus, Unit, UnitStatus

ACTIVE_STAY_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN)


def overlapping_bookings(
    db: Session,
    unit_id: int,
    check_in: date,
    check_out: date,
    exclude_booking_id: Optional[int] = None,
) -> List[Booking]:
    """Non-cancelled bookings of ``unit_id`` whose inclusive date range meets ``[check_in, check_out]``."""
    query = db.query(Booking).filter(
        Booking.unit_id == unit_id,
        Booking.status != BookingStatus.CANCELLED,
        Booking.check_in <= check_out,
        Booking.check_out >= check_in,
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query.all()


def ensure_unit_available(
    db: Session,
    unit_id: int,
    check_in: date,
    check_out: date,
    exclude_booking_id: Optional[int] = None,
) -> None:
    if overlapping_bookings(db, unit_id, check_in, check_out, exclude_booking_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Unit is not available for the selected dates",
        )


def unit_has_other_stay(
    db: Session,
    unit_id: int,
    exclude_booking_id: Optional[int] = None,
    today: Optional[date] = None,
) -> bool:
    """True when another confirmed or checked-in booking holds ``unit_id`` from ``today`` onwards."""
    today = today or datetime.utcnow().date()
    query = db.query(Booking.id).filter(
        Booking.unit_id == unit_id,
        Booking.status.in_(ACTIVE_STAY_STATUSES),
        Booking.check_out >= today,
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query.first() is not None


def ensure_valid_stay(check_in: date, check_out: date) -> None:
    if check_out <= check_in:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Check-out must be after check-in")


def occupancy_label(unit: Unit, bookings: Iterable[Booking], today: date) -> str:
    """Dashboard label for a unit given its bookings on ``today``.

    Maintenance and blocked units are ``out-of-service`` regardless of bookings.
    Otherwise the first matching rule wins: a stay covering today is
    ``occupied``, a stay starting today is ``arrival-today`` and one ending
    today is ``departure-today``.
    """
    if unit.status in {UnitStatus.MAINTENANCE, UnitStatus.BLOCKED}:
        return "out-of-service"
    label = "vacant"
    for booking in bookings:
        if booking.status not in ACTIVE_STAY_STATUSES:
            continue
        if booking.check_in < today < booking.check_out:
            return "occupied"
        if booking.check_in == today:
            label = "arrival-today"
        elif booking.check_out == today and label == "vacant":
            label = "departure-today"
    return label


def unit_occupancy(db: Session, unit: Unit, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    today = now.date()
    bookings = (
        db.query(Booking)
        .filter(
            Booking.unit_id == unit.id,
            Booking.status.in_(ACTIVE_STAY_STATUSES),
            Booking.check_in <= today,
            Booking.check_out >= today,
        )
        .all()
    )
    return {
        "unit_id": unit.id,
        "status": occupancy_label(unit, bookings, today),
        "checked_at": now.isoformat(),
    }

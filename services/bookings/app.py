from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from common.availability import ensure_unit_available, ensure_valid_stay, unit_has_other_stay
from common.billing import notify, refresh_booking_paid_amount
from common.cache import invalidate_unit_status
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import ensure_hotel_access, get_current_user, owned_hotel_ids, require_owned_hotel
from common.errors import add_error_handlers
from common.events import publish_event
from common.logging_middleware import add_audit_middleware
from common.models import (
    Booking,
    BookingStatus,
    Guest,
    Hotel,
    Invoice,
    Payment,
    PaymentStatus,
    Unit,
    UnitStatus,
    User,
)
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    BookingCreate,
    BookingRead,
    BookingUpdate,
    DashboardStats,
    DataResponse,
    PaymentRead,
    PaymentRecordCreate,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


def _booking_event(event: str, booking: Booking) -> None:
    publish_event(
        event,
        {
            "booking_id": booking.id,
            "hotel_id": booking.hotel_id,
            "unit_id": booking.unit_id,
            "status": booking.status.value,
            "check_in": booking.check_in,
            "check_out": booking.check_out,
        },
    )


def _get_booking(db: Session, current_user: User, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    ensure_hotel_access(db, current_user, booking.hotel_id)
    return booking


def _check_unit(db: Session, hotel_id: int, unit_id: int) -> Unit:
    unit = db.get(Unit, unit_id)
    if not unit or unit.hotel_id != hotel_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unit does not belong to this hotel")
    return unit


def _check_guest(db: Session, hotel_id: int, guest_id: Optional[int]) -> None:
    if guest_id is None:
        return
    guest = db.get(Guest, guest_id)
    if not guest or guest.hotel_id != hotel_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Guest does not belong to this hotel")


def _sync_unit_status(
    db: Session,
    unit: Optional[Unit],
    booking_status: BookingStatus,
    booking_id: Optional[int] = None,
) -> None:
    if unit is None or unit.status in {UnitStatus.MAINTENANCE, UnitStatus.BLOCKED}:
        return
    if booking_status in {BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN}:
        unit.status = UnitStatus.OCCUPIED
    elif booking_status in {BookingStatus.CANCELLED, BookingStatus.CHECKED_OUT, BookingStatus.NO_SHOW}:
        if unit.status == UnitStatus.OCCUPIED and not unit_has_other_stay(db, unit.id, exclude_booking_id=booking_id):
            unit.status = UnitStatus.AVAILABLE


@app.get("/bookings", response_model=DataResponse[List[BookingRead]])
@limiter.limit("60/minute")
def list_bookings(
    request: Request,
    hotel_id: Optional[int] = None,
    status_filter: Optional[BookingStatus] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    if hotel_id is not None:
        require_owned_hotel(db, current_user, hotel_id)
        hotel_ids = [hotel_id]
    else:
        hotel_ids = owned_hotel_ids(db, current_user)
    if not hotel_ids:
        return {"data": []}
    query = (
        db.query(Booking)
        .options(selectinload(Booking.guest), selectinload(Booking.unit))
        .filter(Booking.hotel_id.in_(hotel_ids))
    )
    if status_filter is not None:
        query = query.filter(Booking.status == status_filter)
    return {"data": query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()}


@app.post("/bookings", response_model=DataResponse[BookingRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_hotel(db, current_user, booking_in.hotel_id)
    unit = _check_unit(db, booking_in.hotel_id, booking_in.unit_id)
    _check_guest(db, booking_in.hotel_id, booking_in.guest_id)
    ensure_valid_stay(booking_in.check_in, booking_in.check_out)
    ensure_unit_available(db, booking_in.unit_id, booking_in.check_in, booking_in.check_out)

    booking = Booking(**booking_in.model_dump(), paid_amount=0)
    db.add(booking)
    _sync_unit_status(db, unit, booking.status)
    db.flush()
    notify(
        db,
        booking.hotel_id,
        "New booking",
        f"Booking #{booking.id} for {unit.name} from {booking.check_in} to {booking.check_out}",
        kind="booking",
        user_id=current_user.id,
        data={"booking_id": booking.id},
    )
    db.commit()
    db.refresh(booking)
    invalidate_unit_status(booking.unit_id)
    _booking_event("booking_created", booking)
    return {"data": booking}


@app.get("/bookings/{booking_id}", response_model=DataResponse[BookingRead])
@limiter.limit("60/minute")
def get_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": _get_booking(db, current_user, booking_id)}


@app.put("/bookings/{booking_id}", response_model=DataResponse[BookingRead])
@limiter.limit("20/minute")
def update_booking(
    request: Request,
    booking_id: int,
    booking_update: BookingUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking = _get_booking(db, current_user, booking_id)
    data = booking_update.model_dump(exclude_unset=True)
    previous_unit_id = booking.unit_id

    unit_id = data.get("unit_id", booking.unit_id)
    check_in = data.get("check_in", booking.check_in)
    check_out = data.get("check_out", booking.check_out)
    target_status = data.get("status", booking.status)
    if data.get("unit_id") is not None:
        _check_unit(db, booking.hotel_id, unit_id)
    if "guest_id" in data:
        _check_guest(db, booking.hotel_id, data["guest_id"])
    if {"unit_id", "check_in", "check_out"} & data.keys():
        ensure_valid_stay(check_in, check_out)
    if unit_id is not None and target_status != BookingStatus.CANCELLED:
        ensure_unit_available(db, unit_id, check_in, check_out, exclude_booking_id=booking.id)

    for key, value in data.items():
        setattr(booking, key, value)
    if previous_unit_id != booking.unit_id and previous_unit_id is not None:
        _sync_unit_status(db, db.get(Unit, previous_unit_id), BookingStatus.CANCELLED, booking.id)
    if booking.unit_id is not None:
        _sync_unit_status(db, db.get(Unit, booking.unit_id), booking.status, booking.id)
    db.commit()
    db.refresh(booking)
    invalidate_unit_status(previous_unit_id, booking.unit_id)
    _booking_event("booking_updated", booking)
    return {"data": booking}


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
def delete_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    booking = _get_booking(db, current_user, booking_id)
    unit_id = booking.unit_id
    if unit_id is not None:
        _sync_unit_status(db, db.get(Unit, unit_id), BookingStatus.CANCELLED, booking.id)
    db.query(Payment).filter(Payment.booking_id == booking.id).update(
        {Payment.booking_id: None}, synchronize_session=False
    )
    db.query(Invoice).filter(Invoice.booking_id == booking.id).update(
        {Invoice.booking_id: None}, synchronize_session=False
    )
    db.delete(booking)
    db.commit()
    invalidate_unit_status(unit_id)
    publish_event("booking_deleted", {"booking_id": booking_id, "unit_id": unit_id})


def _change_status(
    db: Session,
    booking: Booking,
    target: BookingStatus,
    allowed_from: set,
    event: str,
) -> Booking:
    if booking.status not in allowed_from:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot change booking from {booking.status.value} to {target.value}",
        )
    booking.status = target
    now = datetime.utcnow()
    if target == BookingStatus.CHECKED_IN:
        booking.checked_in_at = now
    elif target == BookingStatus.CHECKED_OUT:
        booking.checked_out_at = now
    if booking.unit_id is not None:
        _sync_unit_status(db, db.get(Unit, booking.unit_id), target, booking.id)
    db.commit()
    db.refresh(booking)
    invalidate_unit_status(booking.unit_id)
    _booking_event(event, booking)
    return booking


@app.post("/bookings/{booking_id}/cancel", response_model=DataResponse[BookingRead])
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking = _get_booking(db, current_user, booking_id)
    booking = _change_status(
        db,
        booking,
        BookingStatus.CANCELLED,
        {BookingStatus.PENDING, BookingStatus.CONFIRMED},
        "booking_cancelled",
    )
    return {"data": booking}


@app.post("/bookings/{booking_id}/check-in", response_model=DataResponse[BookingRead])
@limiter.limit("20/minute")
def check_in_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking = _get_booking(db, current_user, booking_id)
    booking = _change_status(
        db,
        booking,
        BookingStatus.CHECKED_IN,
        {BookingStatus.PENDING, BookingStatus.CONFIRMED},
        "booking_checked_in",
    )
    return {"data": booking}


@app.post("/bookings/{booking_id}/check-out", response_model=DataResponse[BookingRead])
@limiter.limit("20/minute")
def check_out_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking = _get_booking(db, current_user, booking_id)
    booking = _change_status(db, booking, BookingStatus.CHECKED_OUT, {BookingStatus.CHECKED_IN}, "booking_checked_out")
    return {"data": booking}


@app.get("/bookings/{booking_id}/payments", response_model=DataResponse[List[PaymentRead]])
@limiter.limit("60/minute")
def list_booking_payments(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking = _get_booking(db, current_user, booking_id)
    payments = (
        db.query(Payment)
        .filter(Payment.booking_id == booking.id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
    return {"data": payments}


@app.post(
    "/bookings/{booking_id}/payments",
    response_model=DataResponse[PaymentRead],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit("20/minute")
def record_booking_payment(
    request: Request,
    booking_id: int,
    payment_in: PaymentRecordCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    booking = _get_booking(db, current_user, booking_id)
    if payment_in.invoice_id is not None:
        invoice = db.get(Invoice, payment_in.invoice_id)
        if not invoice or invoice.hotel_id != booking.hotel_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invoice does not belong to this hotel")
    payment = Payment(
        hotel_id=booking.hotel_id,
        booking_id=booking.id,
        currency=db.get(Hotel, booking.hotel_id).currency,
        **payment_in.model_dump(),
    )
    db.add(payment)
    db.flush()
    paid = refresh_booking_paid_amount(db, booking.id)
    if payment.status == PaymentStatus.COMPLETED:
        notify(
            db,
            booking.hotel_id,
            "Payment recorded",
            f"Payment of {payment.amount:.2f} {payment.currency} recorded for booking #{booking.id}",
            kind="payment",
            user_id=current_user.id,
            data={"booking_id": booking.id, "paid_amount": paid},
        )
    db.commit()
    db.refresh(payment)
    publish_event(
        "payment_recorded",
        {"payment_id": payment.id, "booking_id": booking.id, "amount": payment.amount, "status": payment.status.value},
    )
    return {"data": payment}


@app.get("/dashboard/stats", response_model=DataResponse[DashboardStats])
@limiter.limit("30/minute")
def dashboard_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    hotel_ids = owned_hotel_ids(db, current_user)
    if not hotel_ids:
        return {"data": DashboardStats(hotels=0, units=0, bookings=0, guests=0, revenue=0)}
    since = datetime.utcnow() - timedelta(days=30)
    revenue = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(
            Payment.hotel_id.in_(hotel_ids),
            Payment.status == PaymentStatus.COMPLETED,
            Payment.created_at >= since,
        )
        .scalar()
    )
    stats = DashboardStats(
        hotels=len(hotel_ids),
        units=db.query(func.count(Unit.id)).filter(Unit.hotel_id.in_(hotel_ids)).scalar() or 0,
        bookings=db.query(func.count(Booking.id)).filter(Booking.hotel_id.in_(hotel_ids)).scalar() or 0,
        guests=db.query(func.count(Guest.id)).filter(Guest.hotel_id.in_(hotel_ids)).scalar() or 0,
        revenue=round(float(revenue or 0), 2),
    )
    return {"data": stats}

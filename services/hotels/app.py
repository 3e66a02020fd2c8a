from contextlib import asynccontextmanager
from datetime import date
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from common.availability import ensure_valid_stay, overlapping_bookings, unit_occupancy
from common.cache import invalidate_unit_status, unit_status_cache, unit_status_key
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import (
    ensure_hotel_access,
    find_owned_hotel,
    get_current_user,
    owned_hotel_ids,
    require_owned_hotel,
)
from common.errors import add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import BookingRule, Hotel, RoomType, Unit, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import (
    AvailabilityRead,
    BookingRuleCreate,
    BookingRuleRead,
    BookingRuleUpdate,
    DataResponse,
    HotelCreate,
    HotelRead,
    HotelUpdate,
    MessageResponse,
    RoomTypeCreate,
    RoomTypeRead,
    UnitCreate,
    UnitOccupancy,
    UnitRead,
    UnitUpdate,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Hotels Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "hotels")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "hotels"}


def _get_hotel(db: Session, current_user: User, hotel_id: int) -> Hotel:
    hotel = db.get(Hotel, hotel_id)
    if not hotel:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hotel not found")
    if hotel.owner_id != current_user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return hotel


def _get_unit(db: Session, current_user: User, unit_id: int) -> Unit:
    unit = db.get(Unit, unit_id)
    if not unit:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unit not found")
    ensure_hotel_access(db, current_user, unit.hotel_id)
    return unit


def _check_room_type(db: Session, hotel_id: int, room_type_id: Optional[int]) -> None:
    if room_type_id is None:
        return
    room_type = db.get(RoomType, room_type_id)
    if not room_type or room_type.hotel_id != hotel_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room type does not belong to this hotel")


@app.get("/hotels", response_model=DataResponse[List[HotelRead]])
@limiter.limit("60/minute")
def list_hotels(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    hotels = (
        db.query(Hotel)
        .options(selectinload(Hotel.units).selectinload(Unit.room_type), selectinload(Hotel.room_types))
        .filter(Hotel.owner_id == current_user.id)
        .order_by(Hotel.created_at)
        .all()
    )
    return {"data": hotels}


@app.post("/hotels", response_model=DataResponse[HotelRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def create_hotel(
    request: Request,
    hotel_in: HotelCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    hotel = Hotel(owner_id=current_user.id, **hotel_in.model_dump())
    db.add(hotel)
    db.commit()
    db.refresh(hotel)
    return {"data": hotel}


@app.get("/hotels/{hotel_id}", response_model=DataResponse[HotelRead])
@limiter.limit("60/minute")
def get_hotel(
    request: Request,
    hotel_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": _get_hotel(db, current_user, hotel_id)}


@app.put("/hotels/{hotel_id}", response_model=DataResponse[HotelRead])
@limiter.limit("15/minute")
def update_hotel(
    request: Request,
    hotel_id: int,
    hotel_update: HotelUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    hotel = _get_hotel(db, current_user, hotel_id)
    for key, value in hotel_update.model_dump(exclude_unset=True).items():
        setattr(hotel, key, value)
    db.commit()
    db.refresh(hotel)
    return {"data": hotel}


@app.delete("/hotels/{hotel_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("5/minute")
def delete_hotel(
    request: Request,
    hotel_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    hotel = _get_hotel(db, current_user, hotel_id)
    db.delete(hotel)
    db.commit()


@app.get("/room-types", response_model=DataResponse[List[RoomTypeRead]])
@limiter.limit("60/minute")
def list_room_types(
    request: Request,
    hotel_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_hotel(db, current_user, hotel_id)
    return {"data": db.query(RoomType).filter(RoomType.hotel_id == hotel_id).order_by(RoomType.name).all()}


@app.post("/room-types", response_model=DataResponse[RoomTypeRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("15/minute")
def create_room_type(
    request: Request,
    room_type_in: RoomTypeCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_hotel(db, current_user, room_type_in.hotel_id)
    room_type = RoomType(**room_type_in.model_dump())
    db.add(room_type)
    db.commit()
    db.refresh(room_type)
    return {"data": room_type}


@app.delete("/room-types/{room_type_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_room_type(
    request: Request,
    room_type_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    room_type = db.get(RoomType, room_type_id)
    if not room_type:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room type not found")
    ensure_hotel_access(db, current_user, room_type.hotel_id)
    db.delete(room_type)
    db.commit()


@app.get("/units", response_model=DataResponse[List[UnitRead]])
@circuit(failure_threshold=5, recovery_timeout=60, expected_exception=SQLAlchemyError)
def list_units(
    request: Request,
    hotel_id: Optional[int] = None,
    visible_only: bool = False,
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
    query = db.query(Unit).options(selectinload(Unit.room_type)).filter(Unit.hotel_id.in_(hotel_ids))
    if visible_only:
        query = query.filter(Unit.is_visible.is_(True))
    return {"data": query.order_by(Unit.hotel_id, Unit.name).all()}


@app.post("/units", response_model=DataResponse[UnitRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_unit(
    request: Request,
    unit_in: UnitCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_hotel(db, current_user, unit_in.hotel_id)
    _check_room_type(db, unit_in.hotel_id, unit_in.room_type_id)
    unit = Unit(**unit_in.model_dump())
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return {"data": unit}


@app.get("/units/{unit_id}", response_model=DataResponse[UnitRead])
@limiter.limit("60/minute")
def get_unit(
    request: Request,
    unit_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": _get_unit(db, current_user, unit_id)}


@app.put("/units/{unit_id}", response_model=DataResponse[UnitRead])
@limiter.limit("30/minute")
def update_unit(
    request: Request,
    unit_id: int,
    unit_update: UnitUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    unit = _get_unit(db, current_user, unit_id)
    data = unit_update.model_dump(exclude_unset=True)
    if "room_type_id" in data:
        _check_room_type(db, unit.hotel_id, data["room_type_id"])
    for key, value in data.items():
        setattr(unit, key, value)
    db.commit()
    db.refresh(unit)
    invalidate_unit_status(unit.id)
    return {"data": unit}


@app.delete("/units/{unit_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_unit(
    request: Request,
    unit_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    unit = _get_unit(db, current_user, unit_id)
    db.delete(unit)
    db.commit()
    invalidate_unit_status(unit_id)


@app.get("/units/{unit_id}/status", response_model=DataResponse[UnitOccupancy])
@limiter.limit("60/minute")
def unit_status(
    request: Request,
    unit_id: int,
    force_refresh: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    unit = _get_unit(db, current_user, unit_id)
    cache_key = unit_status_key(unit_id)
    if not force_refresh:
        cached = unit_status_cache.get(cache_key)
        if cached:
            return {"data": cached}
    payload = unit_occupancy(db, unit)
    unit_status_cache.set(cache_key, payload)
    return {"data": payload}


@app.get("/units/{unit_id}/availability", response_model=DataResponse[AvailabilityRead])
@limiter.limit("60/minute")
def unit_availability(
    request: Request,
    unit_id: int,
    check_in: date = Query(...),
    check_out: date = Query(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    _get_unit(db, current_user, unit_id)
    ensure_valid_stay(check_in, check_out)
    conflicts = overlapping_bookings(db, unit_id, check_in, check_out)
    return {
        "data": {
            "unit_id": unit_id,
            "check_in": check_in,
            "check_out": check_out,
            "available": not conflicts,
            "conflicting_booking_ids": [booking.id for booking in conflicts],
        }
    }


def _owned_rule(db: Session, current_user: User, rule_id: int, action: str) -> BookingRule:
    rule = db.get(BookingRule, rule_id)
    if not rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking rule not found")
    if find_owned_hotel(db, current_user, rule.hotel_id) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Unauthorized to {action} this rule")
    return rule


@app.get("/booking-rules", response_model=DataResponse[List[BookingRuleRead]])
@limiter.limit("60/minute")
def list_booking_rules(
    request: Request,
    hotel_id: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    if hotel_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Hotel ID is required")
    if find_owned_hotel(db, current_user, hotel_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hotel not found")
    rules = (
        db.query(BookingRule)
        .filter(BookingRule.hotel_id == hotel_id)
        .order_by(BookingRule.created_at.desc(), BookingRule.id.desc())
        .all()
    )
    return {"data": rules}


@app.post("/booking-rules", response_model=DataResponse[BookingRuleRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking_rule(
    request: Request,
    rule_in: BookingRuleCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    if find_owned_hotel(db, current_user, rule_in.hotel_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hotel not found")
    rule = BookingRule(**rule_in.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return {"data": rule}


@app.put("/booking-rules/{rule_id}", response_model=DataResponse[BookingRuleRead])
@limiter.limit("20/minute")
def update_booking_rule(
    request: Request,
    rule_id: int,
    rule_update: BookingRuleUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    rule = _owned_rule(db, current_user, rule_id, "update")
    for key, value in rule_update.model_dump(exclude_unset=True).items():
        setattr(rule, key, value)
    db.commit()
    db.refresh(rule)
    return {"data": rule}


@app.delete("/booking-rules/{rule_id}", response_model=MessageResponse)
@limiter.limit("20/minute")
def delete_booking_rule(
    request: Request,
    rule_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MessageResponse:
    rule = _owned_rule(db, current_user, rule_id, "delete")
    db.delete(rule)
    db.commit()
    return MessageResponse(message="Booking rule deleted successfully")

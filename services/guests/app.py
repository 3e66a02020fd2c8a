import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import ensure_hotel_access, get_current_user, owned_hotel_ids, require_owned_hotel
from common.errors import add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Booking, Guest, Invoice, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import DataResponse, GuestCreate, GuestRead, GuestUpdate

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Guests Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "guests")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "guests"}


def _get_guest(db: Session, current_user: User, guest_id: int) -> Guest:
    guest = db.get(Guest, guest_id)
    if not guest:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Guest not found")
    ensure_hotel_access(db, current_user, guest.hotel_id)
    return guest


def _find_by_email(db: Session, hotel_id: int, email: str, exclude_id: Optional[int] = None) -> Optional[Guest]:
    query = db.query(Guest).filter(Guest.hotel_id == hotel_id, func.lower(Guest.email) == email.lower())
    if exclude_id is not None:
        query = query.filter(Guest.id != exclude_id)
    return query.first()


@app.get("/guests", response_model=DataResponse[List[GuestRead]])
@limiter.limit("60/minute")
def list_guests(
    request: Request,
    hotel_id: Optional[int] = None,
    search: Optional[str] = None,
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
    query = db.query(Guest).filter(Guest.hotel_id.in_(hotel_ids))
    if search:
        pattern = f"%{search.lower()}%"
        query = query.filter(
            or_(
                func.lower(Guest.first_name).like(pattern),
                func.lower(Guest.last_name).like(pattern),
                func.lower(Guest.email).like(pattern),
                Guest.phone.like(f"%{search}%"),
            )
        )
    return {"data": query.order_by(Guest.created_at.desc(), Guest.id.desc()).all()}


@app.post("/guests", response_model=DataResponse[GuestRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_guest(
    request: Request,
    response: Response,
    guest_in: GuestCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    require_owned_hotel(db, current_user, guest_in.hotel_id)
    if guest_in.email:
        existing = _find_by_email(db, guest_in.hotel_id, guest_in.email)
        if existing:
            logger.info("Guest %s already exists in hotel %s", existing.id, guest_in.hotel_id)
            response.status_code = status.HTTP_200_OK
            return {"data": existing}

    guest = Guest(**guest_in.model_dump())
    db.add(guest)
    db.commit()
    db.refresh(guest)
    return {"data": guest}


@app.get("/guests/{guest_id}", response_model=DataResponse[GuestRead])
@limiter.limit("60/minute")
def get_guest(
    request: Request,
    guest_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    return {"data": _get_guest(db, current_user, guest_id)}


@app.put("/guests/{guest_id}", response_model=DataResponse[GuestRead])
@limiter.limit("30/minute")
def update_guest(
    request: Request,
    guest_id: int,
    guest_update: GuestUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    guest = _get_guest(db, current_user, guest_id)
    data = guest_update.model_dump(exclude_unset=True)
    if data.get("email") and _find_by_email(db, guest.hotel_id, data["email"], exclude_id=guest.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Another guest already uses this email")
    for key, value in data.items():
        setattr(guest, key, value)
    db.commit()
    db.refresh(guest)
    return {"data": guest}


@app.delete("/guests/{guest_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_guest(
    request: Request,
    guest_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> None:
    guest = _get_guest(db, current_user, guest_id)
    db.query(Booking).filter(Booking.guest_id == guest.id).update({Booking.guest_id: None}, synchronize_session=False)
    db.query(Invoice).filter(Invoice.guest_id == guest.id).update({Invoice.guest_id: None}, synchronize_session=False)
    db.delete(guest)
    db.commit()

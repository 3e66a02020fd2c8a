from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session

from common import auth
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import get_current_user, owned_hotel_ids
from common.errors import add_error_handlers
from common.logging_middleware import add_audit_middleware
from common.models import Notification, RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import DataResponse, NotificationRead, ProfileRead, ProfileUpdate, Token, UserCreate

settings = get_settings()

SELF_SERVICE_ROLES = {RoleEnum.GUEST, RoleEnum.STAFF, RoleEnum.OWNER}


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Users Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "users")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "users"}


@app.post("/auth/register", response_model=DataResponse[ProfileRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register_user(request: Request, user_in: UserCreate, db: Session = Depends(get_db)) -> dict:
    email = user_in.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    if user_in.role not in SELF_SERVICE_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only administrators can assign elevated roles")

    user = User(
        email=email,
        full_name=user_in.full_name or email.split("@")[0],
        role=user_in.role,
        hashed_password=auth.get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return {"data": user}


@app.post("/auth/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = auth.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")

    access_token = auth.create_access_token({"sub": user.email, "role": user.role.value})
    return Token(access_token=access_token)


@app.get("/profile", response_model=DataResponse[ProfileRead])
@limiter.limit("60/minute")
def get_profile(request: Request, current_user: User = Depends(get_current_user)) -> dict:
    return {"data": current_user}


@app.put("/profile", response_model=DataResponse[ProfileRead])
@limiter.limit("10/minute")
def update_profile(
    request: Request,
    profile_update: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    data = profile_update.model_dump(exclude_unset=True)
    password = data.pop("password", None)
    for key, value in data.items():
        setattr(current_user, key, value)
    if password:
        current_user.hashed_password = auth.get_password_hash(password)
    db.commit()
    db.refresh(current_user)
    return {"data": current_user}


@app.get("/notifications", response_model=DataResponse[List[NotificationRead]])
@limiter.limit("60/minute")
def list_notifications(
    request: Request,
    unread_only: bool = False,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    hotel_ids = owned_hotel_ids(db, current_user)
    if not hotel_ids:
        return {"data": []}
    query = db.query(Notification).filter(Notification.hotel_id.in_(hotel_ids))
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return {"data": query.order_by(Notification.created_at.desc()).limit(100).all()}


@app.post("/notifications/{notification_id}/read", response_model=DataResponse[NotificationRead])
@limiter.limit("60/minute")
def mark_notification_read(
    request: Request,
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict:
    notification = db.get(Notification, notification_id)
    if not notification or notification.hotel_id not in owned_hotel_ids(db, current_user):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return {"data": notification}

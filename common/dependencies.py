"""Reusable FastAPI dependencies for auth, database access and hotel scoping."""
from typing import List, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_token
from .database import get_db
from .models import Hotel, User

oauth_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    payload = decode_token(token)
    email: str | None = payload.get("sub")
    if email is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject in token")
    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def owned_hotel_ids(db: Session, user: User) -> List[int]:
    return [hotel_id for (hotel_id,) in db.query(Hotel.id).filter(Hotel.owner_id == user.id).all()]


def find_owned_hotel(db: Session, user: User, hotel_id: int) -> Optional[Hotel]:
    return db.query(Hotel).filter(Hotel.id == hotel_id, Hotel.owner_id == user.id).first()


def require_owned_hotel(db: Session, user: User, hotel_id: int) -> Hotel:
    """Return the hotel or reject the caller with 403 when they do not own it."""
    hotel = find_owned_hotel(db, user, hotel_id)
    if hotel is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized: You do not own this hotel")
    return hotel


def ensure_hotel_access(db: Session, user: User, hotel_id: int, detail: str = "Access denied") -> None:
    """Ownership check for a row that has already been found (403 otherwise)."""
    if find_owned_hotel(db, user, hotel_id) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

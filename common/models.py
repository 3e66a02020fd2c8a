"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _enum_column(enum_cls: type[Enum]) -> SqlEnum:
    return SqlEnum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        length=32,
    )


def _money(default: float | None = 0) -> Mapped[float]:
    return mapped_column(Numeric(10, 2, asdecimal=False), default=default)


class RoleEnum(str, Enum):
    GUEST = "guest"
    STAFF = "staff"
    ADMIN = "admin"
    OWNER = "owner"
    SUPER_ADMIN = "super_admin"


class UnitStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    BLOCKED = "blocked"


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class BookingSource(str, Enum):
    DIRECT = "direct"
    BOOKING_COM = "booking_com"
    AIRBNB = "airbnb"
    EXPEDIA = "expedia"
    CHANNEX = "channex"
    OTHER = "other"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    MOYASAR = "moyasar"
    OTHER = "other"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PlanEnum(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class WebhookLogStatus(str, Enum):
    RECEIVED = "received"
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


class User(Base):
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(150), default=None)
    hashed_password: Mapped[str] = mapped_column(String(255))
    role: Mapped[RoleEnum] = mapped_column(_enum_column(RoleEnum), default=RoleEnum.OWNER)
    phone: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    location: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    id_type: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    id_number: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False)
    premium_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    hotels: Mapped[List["Hotel"]] = relationship(back_populates="owner", cascade="all, delete-orphan")


class Hotel(Base):
    __tablename__ = "hotels"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, default=None)
    address: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    city: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    country: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    phone: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    email: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    currency: Mapped[str] = mapped_column(String(3), default="SAR")
    timezone: Mapped[str] = mapped_column(String(64), default="Asia/Riyadh")
    check_in_time: Mapped[str] = mapped_column(String(5), default="15:00")
    check_out_time: Mapped[str] = mapped_column(String(5), default="12:00")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner: Mapped[User] = relationship(back_populates="hotels")
    units: Mapped[List["Unit"]] = relationship(back_populates="hotel", cascade="all, delete-orphan")
    room_types: Mapped[List["RoomType"]] = relationship(back_populates="hotel", cascade="all, delete-orphan")


class RoomType(Base):
    __tablename__ = "room_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text, default=None)
    base_price: Mapped[float] = _money()
    max_occupancy: Mapped[int] = mapped_column(Integer, default=2)

    hotel: Mapped[Hotel] = relationship(back_populates="room_types")


class Unit(Base):
    __tablename__ = "units"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    room_type_id: Mapped[Optional[int]] = mapped_column(ForeignKey("room_types.id", ondelete="SET NULL"), default=None)
    name: Mapped[str] = mapped_column(String(100))
    floor: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    status: Mapped[UnitStatus] = mapped_column(_enum_column(UnitStatus), default=UnitStatus.AVAILABLE)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    hotel: Mapped[Hotel] = relationship(back_populates="units")
    room_type: Mapped[Optional[RoomType]] = relationship()
    bookings: Mapped[List["Booking"]] = relationship(back_populates="unit")


class Guest(Base):
    __tablename__ = "guests"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    email: Mapped[Optional[str]] = mapped_column(String(255), default=None, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    id_type: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    id_number: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    nationality: Mapped[Optional[str]] = mapped_column(String(100), default=None)
    address: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="guest")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_unit_dates", "unit_id", "check_in", "check_out"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    unit_id: Mapped[Optional[int]] = mapped_column(ForeignKey("units.id", ondelete="SET NULL"), index=True)
    guest_id: Mapped[Optional[int]] = mapped_column(ForeignKey("guests.id", ondelete="SET NULL"), index=True)
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(_enum_column(BookingStatus), default=BookingStatus.PENDING)
    source: Mapped[BookingSource] = mapped_column(_enum_column(BookingSource), default=BookingSource.DIRECT)
    adults: Mapped[int] = mapped_column(Integer, default=1)
    children: Mapped[int] = mapped_column(Integer, default=0)
    total_amount: Mapped[float] = _money()
    paid_amount: Mapped[float] = _money()
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    special_requests: Mapped[Optional[str]] = mapped_column(Text, default=None)
    external_id: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    checked_out_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    unit: Mapped[Optional[Unit]] = relationship(back_populates="bookings")
    guest: Mapped[Optional[Guest]] = relationship(back_populates="bookings")
    payments: Mapped[List["Payment"]] = relationship(back_populates="booking")


class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    booking_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bookings.id", ondelete="SET NULL"), default=None)
    guest_id: Mapped[Optional[int]] = mapped_column(ForeignKey("guests.id", ondelete="SET NULL"), default=None)
    invoice_number: Mapped[str] = mapped_column(String(50), unique=True)
    status: Mapped[InvoiceStatus] = mapped_column(_enum_column(InvoiceStatus), default=InvoiceStatus.DRAFT)
    subtotal: Mapped[float] = _money()
    tax_amount: Mapped[float] = _money()
    total_amount: Mapped[float] = _money()
    due_date: Mapped[Optional[date]] = mapped_column(Date, default=None)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    booking_id: Mapped[Optional[int]] = mapped_column(ForeignKey("bookings.id", ondelete="SET NULL"), index=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(ForeignKey("invoices.id", ondelete="SET NULL"), default=None)
    amount: Mapped[float] = _money()
    currency: Mapped[str] = mapped_column(String(3), default="SAR")
    method: Mapped[PaymentMethod] = mapped_column(_enum_column(PaymentMethod), default=PaymentMethod.CASH)
    status: Mapped[PaymentStatus] = mapped_column(_enum_column(PaymentStatus), default=PaymentStatus.PENDING)
    moyasar_payment_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, default=None)
    reference: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    notes: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    booking: Mapped[Optional[Booking]] = relationship(back_populates="payments")


class BookingRule(Base):
    __tablename__ = "booking_rules"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(150))
    rule: Mapped[str] = mapped_column(Text)
    applies_to_all_units: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True)
    plan: Mapped[PlanEnum] = mapped_column(_enum_column(PlanEnum))
    status: Mapped[SubscriptionStatus] = mapped_column(_enum_column(SubscriptionStatus), default=SubscriptionStatus.ACTIVE)
    moyasar_payment_id: Mapped[Optional[str]] = mapped_column(String(100), default=None, index=True)
    amount: Mapped[float] = _money()
    currency: Mapped[str] = mapped_column(String(3), default="SAR")
    current_period_start: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    current_period_end: Mapped[datetime] = mapped_column(DateTime)


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    hotel_id: Mapped[int] = mapped_column(ForeignKey("hotels.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), default=None)
    title: Mapped[str] = mapped_column(String(200))
    message: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), default="info")
    data: Mapped[Optional[dict]] = mapped_column(JSON, default=None)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class WebhookLog(Base):
    __tablename__ = "webhook_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    provider: Mapped[str] = mapped_column(String(50), default="moyasar")
    event_type: Mapped[str] = mapped_column(String(100))
    external_id: Mapped[Optional[str]] = mapped_column(String(100), default=None, index=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[WebhookLogStatus] = mapped_column(_enum_column(WebhookLogStatus), default=WebhookLogStatus.RECEIVED)
    error_message: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

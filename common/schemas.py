"""Pydantic schemas shared across the services."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, EmailStr, Field

from .models import (
    BookingSource,
    BookingStatus,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    RoleEnum,
    UnitStatus,
)

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    data: T


class MessageResponse(BaseModel):
    message: str


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    full_name: Optional[str] = Field(None, max_length=150)
    role: RoleEnum = RoleEnum.OWNER


class ProfileRead(BaseModel):
    id: int
    email: EmailStr
    full_name: Optional[str] = None
    role: RoleEnum
    phone: Optional[str] = None
    location: Optional[str] = None
    id_type: Optional[str] = None
    id_number: Optional[str] = None
    is_premium: bool = False
    premium_expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(None, max_length=150)
    phone: Optional[str] = None
    location: Optional[str] = None
    id_type: Optional[str] = None
    id_number: Optional[str] = None
    password: Optional[str] = Field(None, min_length=8)


class HotelBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    currency: str = Field("SAR", min_length=3, max_length=3)
    timezone: str = "Asia/Riyadh"
    check_in_time: str = "15:00"
    check_out_time: str = "12:00"


class HotelCreate(HotelBase):
    pass


class HotelUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    timezone: Optional[str] = None
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None


class RoomTypeCreate(BaseModel):
    hotel_id: int
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    base_price: float = Field(0, ge=0)
    max_occupancy: int = Field(2, ge=1)


class RoomTypeRead(BaseModel):
    id: int
    hotel_id: int
    name: str
    description: Optional[str] = None
    base_price: float
    max_occupancy: int

    model_config = {"from_attributes": True}


class UnitBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    room_type_id: Optional[int] = None
    floor: Optional[int] = None
    status: UnitStatus = UnitStatus.AVAILABLE
    notes: Optional[str] = None
    is_visible: bool = True


class UnitCreate(UnitBase):
    hotel_id: int


class UnitUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    room_type_id: Optional[int] = None
    floor: Optional[int] = None
    status: Optional[UnitStatus] = None
    notes: Optional[str] = None
    is_visible: Optional[bool] = None


class UnitRead(UnitBase):
    id: int
    hotel_id: int
    room_type: Optional[RoomTypeRead] = None

    model_config = {"from_attributes": True}


class HotelRead(HotelBase):
    id: int
    owner_id: int
    created_at: datetime
    units: List[UnitRead] = []
    room_types: List[RoomTypeRead] = []

    model_config = {"from_attributes": True}


class UnitOccupancy(BaseModel):
    unit_id: int
    status: str
    checked_at: datetime


class AvailabilityRead(BaseModel):
    unit_id: int
    check_in: date
    check_out: date
    available: bool
    conflicting_booking_ids: List[int] = []


class GuestBase(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    id_type: Optional[str] = None
    id_number: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class GuestCreate(GuestBase):
    hotel_id: int


class GuestUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    id_type: Optional[str] = None
    id_number: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    notes: Optional[str] = None


class GuestRead(GuestBase):
    id: int
    hotel_id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class GuestSummary(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    model_config = {"from_attributes": True}


class UnitSummary(BaseModel):
    name: str
    hotel_id: int

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    hotel_id: int
    unit_id: int
    guest_id: Optional[int] = None
    check_in: date
    check_out: date
    status: BookingStatus = BookingStatus.PENDING
    source: BookingSource = BookingSource.DIRECT
    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)
    total_amount: float = Field(0, ge=0)
    notes: Optional[str] = None
    special_requests: Optional[str] = None
    external_id: Optional[str] = None


class BookingUpdate(BaseModel):
    unit_id: Optional[int] = None
    guest_id: Optional[int] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    status: Optional[BookingStatus] = None
    source: Optional[BookingSource] = None
    adults: Optional[int] = Field(None, ge=1)
    children: Optional[int] = Field(None, ge=0)
    total_amount: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    special_requests: Optional[str] = None


class BookingRead(BaseModel):
    id: int
    hotel_id: int
    unit_id: Optional[int] = None
    guest_id: Optional[int] = None
    check_in: date
    check_out: date
    status: BookingStatus
    source: BookingSource
    adults: int
    children: int
    total_amount: float
    paid_amount: float
    notes: Optional[str] = None
    special_requests: Optional[str] = None
    external_id: Optional[str] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
    created_at: datetime
    guest: Optional[GuestSummary] = None
    unit: Optional[UnitSummary] = None

    model_config = {"from_attributes": True}


class BookingRuleCreate(BaseModel):
    hotel_id: int
    name: str = Field(..., min_length=1, max_length=150)
    rule: str = Field(..., min_length=1)
    applies_to_all_units: bool = True


class BookingRuleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    rule: Optional[str] = Field(None, min_length=1)
    applies_to_all_units: Optional[bool] = None


class BookingRuleRead(BaseModel):
    id: int
    hotel_id: int
    name: str
    rule: str
    applies_to_all_units: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentRecordCreate(BaseModel):
    amount: float = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.CASH
    status: PaymentStatus = PaymentStatus.COMPLETED
    invoice_id: Optional[int] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class PaymentRead(BaseModel):
    id: int
    hotel_id: int
    booking_id: Optional[int] = None
    invoice_id: Optional[int] = None
    amount: float
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    moyasar_payment_id: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class InvoiceCreate(BaseModel):
    hotel_id: int
    booking_id: Optional[int] = None
    guest_id: Optional[int] = None
    subtotal: float = Field(..., ge=0)
    tax_amount: float = Field(0, ge=0)
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceUpdate(BaseModel):
    status: Optional[InvoiceStatus] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceRead(BaseModel):
    id: int
    hotel_id: int
    booking_id: Optional[int] = None
    guest_id: Optional[int] = None
    invoice_number: str
    status: InvoiceStatus
    subtotal: float
    tax_amount: float
    total_amount: float
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CheckoutRequest(BaseModel):
    amount: float = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    description: str = "Hotel Booking Payment"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    callback_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutSession(BaseModel):
    checkout_url: str
    payment_id: str
    amount: int
    currency: str
    status: str


class CardDetails(BaseModel):
    name: str = Field(..., min_length=1)
    number: str = Field(..., min_length=1)
    month: int
    year: int
    cvc: str = Field(..., min_length=1)


class DirectPaymentRequest(BaseModel):
    amount: float = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    description: str = "Hotel Booking Payment"
    callback_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    source: CardDetails


class CreditCardSource(BaseModel):
    type: Literal["creditcard"] = "creditcard"
    name: str
    number: str
    cvc: str
    month: int
    year: int


class StcPaySource(BaseModel):
    type: Literal["stcpay"] = "stcpay"
    phone: str


class UrlSource(BaseModel):
    type: Literal["url"] = "url"


PaymentSource = Union[CreditCardSource, StcPaySource, UrlSource]


class PaymentCreateRequest(BaseModel):
    amount: float = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    source: PaymentSource = Field(..., discriminator="type")
    description: str = "Hotel Booking Payment"
    metadata: Dict[str, Any] = Field(default_factory=dict)
    callback_url: Optional[str] = None
    return_url: Optional[str] = None
    installments: Optional[int] = Field(None, ge=1)


class CaptureRequest(BaseModel):
    amount: Optional[float] = Field(None, gt=0)


class RefundRequest(BaseModel):
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = None


class WebhookAck(BaseModel):
    success: bool = True
    processed: bool
    event: Optional[str] = None


class BillingSummary(BaseModel):
    hotel_id: int
    start: Optional[date] = None
    end: Optional[date] = None
    payments_count: int
    total_collected: float
    total_refunded: float
    by_method: Dict[str, float]
    bookings_total: float
    outstanding: float


class DashboardStats(BaseModel):
    hotels: int
    units: int
    bookings: int
    guests: int
    revenue: float


class NotificationRead(BaseModel):
    id: int
    hotel_id: int
    title: str
    message: str
    type: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    created_at: datetime

    model_config = {"from_attributes": True}

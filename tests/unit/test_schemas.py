"""Unit tests for schema validation."""
from datetime import date

import pytest
from pydantic import ValidationError

from common.models import BookingSource, BookingStatus, PaymentMethod, PaymentStatus, RoleEnum
from common.schemas import (
    BookingCreate,
    BookingRuleUpdate,
    PaymentCreateRequest,
    PaymentRecordCreate,
    UserCreate,
)


class TestUserSchemas:
    def test_user_create_defaults_to_owner(self):
        user = UserCreate(email="owner@example.com", password="SecurePass123!")

        assert user.role == RoleEnum.OWNER

    def test_user_create_invalid_email(self):
        with pytest.raises(ValidationError):
            UserCreate(email="invalid-email", password="SecurePass123!")

    def test_user_create_short_password(self):
        with pytest.raises(ValidationError):
            UserCreate(email="owner@example.com", password="short")


class TestBookingSchemas:
    def test_booking_create_defaults(self):
        booking = BookingCreate(hotel_id=1, unit_id=2, check_in=date(2030, 1, 1), check_out=date(2030, 1, 3))

        assert booking.status == BookingStatus.PENDING
        assert booking.source == BookingSource.DIRECT
        assert booking.adults == 1
        assert booking.children == 0
        assert booking.guest_id is None

    def test_booking_create_rejects_bad_counts(self):
        with pytest.raises(ValidationError):
            BookingCreate(hotel_id=1, unit_id=2, check_in=date(2030, 1, 1), check_out=date(2030, 1, 3), adults=0)
        with pytest.raises(ValidationError):
            BookingCreate(hotel_id=1, unit_id=2, check_in=date(2030, 1, 1), check_out=date(2030, 1, 3), total_amount=-5)

    def test_booking_rule_update_is_partial(self):
        update = BookingRuleUpdate(name="Quiet hours")

        assert update.model_dump(exclude_unset=True) == {"name": "Quiet hours"}


class TestPaymentSchemas:
    def test_payment_record_defaults(self):
        record = PaymentRecordCreate(amount=100)

        assert record.method == PaymentMethod.CASH
        assert record.status == PaymentStatus.COMPLETED

    def test_payment_record_requires_positive_amount(self):
        with pytest.raises(ValidationError):
            PaymentRecordCreate(amount=0)

    def test_payment_source_discriminator(self):
        request = PaymentCreateRequest(amount=10, source={"type": "stcpay", "phone": "966512345678"})

        assert request.source.model_dump() == {"type": "stcpay", "phone": "966512345678"}

    def test_payment_source_unknown_type(self):
        with pytest.raises(ValidationError):
            PaymentCreateRequest(amount=10, source={"type": "applepay"})

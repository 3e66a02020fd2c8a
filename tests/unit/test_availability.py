"""Unit tests for overlap checks and unit occupancy labels."""
from datetime import date, datetime

import pytest
from fastapi import HTTPException

from common.availability import (
    ensure_unit_available,
    ensure_valid_stay,
    occupancy_label,
    overlapping_bookings,
    unit_has_other_stay,
    unit_occupancy,
)
from common.models import Booking, BookingStatus, Hotel, Unit, UnitStatus, User

TODAY = date(2030, 4, 15)


@pytest.fixture()
def stored_unit(db_session) -> Unit:
    owner = User(email="owner@example.com", hashed_password="x")
    hotel = Hotel(name="Palm", owner=owner)
    unit = Unit(name="101", hotel=hotel)
    db_session.add_all([owner, hotel, unit])
    db_session.commit()
    return unit


def add_booking(db_session, unit: Unit, check_in: date, check_out: date, status=BookingStatus.CONFIRMED) -> Booking:
    booking = Booking(hotel_id=unit.hotel_id, unit_id=unit.id, check_in=check_in, check_out=check_out, status=status)
    db_session.add(booking)
    db_session.commit()
    return booking


class TestOverlap:
    def test_inclusive_bounds_overlap(self, db_session, stored_unit):
        existing = add_booking(db_session, stored_unit, date(2030, 4, 10), date(2030, 4, 14))

        touching = overlapping_bookings(db_session, stored_unit.id, date(2030, 4, 14), date(2030, 4, 16))
        assert [b.id for b in touching] == [existing.id]
        assert overlapping_bookings(db_session, stored_unit.id, date(2030, 4, 15), date(2030, 4, 16)) == []

    def test_cancelled_bookings_are_ignored(self, db_session, stored_unit):
        add_booking(db_session, stored_unit, date(2030, 4, 10), date(2030, 4, 14), BookingStatus.CANCELLED)

        assert overlapping_bookings(db_session, stored_unit.id, date(2030, 4, 11), date(2030, 4, 12)) == []

    def test_exclude_booking_id(self, db_session, stored_unit):
        existing = add_booking(db_session, stored_unit, date(2030, 4, 10), date(2030, 4, 14))

        ensure_unit_available(
            db_session, stored_unit.id, date(2030, 4, 11), date(2030, 4, 13), exclude_booking_id=existing.id
        )
        with pytest.raises(HTTPException) as exc_info:
            ensure_unit_available(db_session, stored_unit.id, date(2030, 4, 11), date(2030, 4, 13))
        assert exc_info.value.status_code == 400

    def test_other_stay_holds_unit(self, db_session, stored_unit):
        current = add_booking(db_session, stored_unit, date(2030, 4, 14), date(2030, 4, 16))
        add_booking(db_session, stored_unit, date(2030, 4, 1), date(2030, 4, 3))
        add_booking(db_session, stored_unit, date(2030, 4, 20), date(2030, 4, 22), BookingStatus.PENDING)

        assert unit_has_other_stay(db_session, stored_unit.id, today=TODAY)
        assert not unit_has_other_stay(db_session, stored_unit.id, exclude_booking_id=current.id, today=TODAY)

    def test_stay_must_end_after_it_starts(self):
        ensure_valid_stay(date(2030, 1, 1), date(2030, 1, 2))
        with pytest.raises(HTTPException):
            ensure_valid_stay(date(2030, 1, 2), date(2030, 1, 2))


class TestOccupancyLabel:
    def _booking(self, check_in, check_out, status=BookingStatus.CONFIRMED) -> Booking:
        return Booking(check_in=check_in, check_out=check_out, status=status)

    def test_out_of_service_wins(self):
        unit = Unit(name="1", status=UnitStatus.MAINTENANCE)

        assert occupancy_label(unit, [self._booking(date(2030, 4, 14), date(2030, 4, 16))], TODAY) == "out-of-service"

    @pytest.mark.parametrize(
        "check_in, check_out, expected",
        [
            (date(2030, 4, 14), date(2030, 4, 16), "occupied"),
            (date(2030, 4, 15), date(2030, 4, 17), "arrival-today"),
            (date(2030, 4, 13), date(2030, 4, 15), "departure-today"),
        ],
    )
    def test_labels(self, check_in, check_out, expected):
        unit = Unit(name="1", status=UnitStatus.AVAILABLE)

        assert occupancy_label(unit, [self._booking(check_in, check_out)], TODAY) == expected

    def test_arrival_beats_departure(self):
        unit = Unit(name="1", status=UnitStatus.AVAILABLE)
        bookings = [
            self._booking(date(2030, 4, 13), date(2030, 4, 15)),
            self._booking(date(2030, 4, 15), date(2030, 4, 18)),
        ]

        assert occupancy_label(unit, bookings, TODAY) == "arrival-today"

    def test_pending_bookings_leave_unit_vacant(self):
        unit = Unit(name="1", status=UnitStatus.AVAILABLE)
        pending = self._booking(date(2030, 4, 14), date(2030, 4, 16), BookingStatus.PENDING)

        assert occupancy_label(unit, [pending], TODAY) == "vacant"

    def test_unit_occupancy_payload(self, db_session, stored_unit):
        add_booking(db_session, stored_unit, date(2030, 4, 14), date(2030, 4, 20), BookingStatus.CHECKED_IN)

        payload = unit_occupancy(db_session, stored_unit, now=datetime(2030, 4, 15, 9, 30))
        assert payload == {"unit_id": stored_unit.id, "status": "occupied", "checked_at": "2030-04-15T09:30:00"}

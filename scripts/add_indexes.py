#!/usr/bin/env python3
"""Script to add database indexes for the hotel tables."""
from sqlalchemy import create_engine, text

from common.config import get_settings

INDEXES = [
    # Overlap check and dashboard queries
    "CREATE INDEX IF NOT EXISTS ix_bookings_unit_dates ON bookings (unit_id, check_in, check_out);",
    "CREATE INDEX IF NOT EXISTS idx_bookings_hotel_status ON bookings (hotel_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_bookings_created_at ON bookings (created_at);",
    "CREATE INDEX IF NOT EXISTS idx_payments_booking_status ON payments (booking_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_payments_hotel_created ON payments (hotel_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_guests_hotel_email ON guests (hotel_id, email);",
    "CREATE INDEX IF NOT EXISTS idx_units_hotel ON units (hotel_id);",
    "CREATE INDEX IF NOT EXISTS idx_webhook_logs_external_id ON webhook_logs (external_id);",
]


def add_indexes(database_url: str | None = None) -> None:
    engine = create_engine(database_url or get_settings().database_url)
    with engine.begin() as conn:
        for statement in INDEXES:
            conn.execute(text(statement))
    print(f"{len(INDEXES)} indexes ensured.")


if __name__ == "__main__":
    add_indexes()

#!/usr/bin/env python3
"""Add the PostgreSQL overlap guard and listing indexes for bookings.

The scheduler already serializes creators per court with a row lock; the
exclusion constraint makes the store itself refuse overlapping active
bookings. Its name must match ``scheduler.service.NO_OVERLAP_CONSTRAINT``.
"""
from sqlalchemy import create_engine, text

from common.config import get_settings
from scheduler.service import NO_OVERLAP_CONSTRAINT

STATEMENTS = [
    "CREATE EXTENSION IF NOT EXISTS btree_gist;",
    f"""
    DO $$
    BEGIN
        IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = '{NO_OVERLAP_CONSTRAINT}') THEN
            ALTER TABLE bookings ADD CONSTRAINT {NO_OVERLAP_CONSTRAINT}
                EXCLUDE USING gist (court_id WITH =, tsrange(start_time, end_time) WITH &&)
                WHERE (status IN ('PENDING', 'CONFIRMED'));
        END IF;
    END
    $$;
    """,
    "CREATE INDEX IF NOT EXISTS idx_bookings_user_start ON bookings (user_id, start_time DESC);",
    "CREATE INDEX IF NOT EXISTS idx_bookings_court_status ON bookings (court_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_maintenance_court_start ON maintenance_blocks (court_id, start_time);",
]


def add_booking_constraints() -> None:
    database_url = get_settings().database_url
    if not database_url.startswith("postgresql"):
        print(f"Skipping: exclusion constraints need PostgreSQL, got {database_url.split(':', 1)[0]}")
        return
    engine = create_engine(database_url)
    with engine.begin() as conn:
        for statement in STATEMENTS:
            conn.execute(text(statement))
        result = conn.execute(
            text(
                """
                SELECT indexname, indexdef
                FROM pg_indexes
                WHERE schemaname = 'public' AND tablename IN ('bookings', 'maintenance_blocks')
                ORDER BY tablename, indexname;
                """
            )
        )
        print("Booking indexes:")
        for row in result:
            print(f"  {row[0]}: {row[1]}")
    print("Booking constraints added successfully.")


if __name__ == "__main__":
    add_booking_constraints()

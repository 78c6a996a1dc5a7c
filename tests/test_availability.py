from datetime import datetime, timedelta, timezone

import pytest
from conftest import at
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from common.database import engine
from common.models import Court
from scheduler.availability import intervals_overlap
from scheduler.errors import BookingInternalError
from scheduler.service import BookingScheduler


class TestIntervalOverlap:
    """Half-open interval semantics."""

    def test_touching_intervals_do_not_overlap(self):
        assert intervals_overlap(at(9), at(10), at(10), at(11)) is False
        assert intervals_overlap(at(10), at(11), at(9), at(10)) is False

    def test_partial_overlap(self):
        assert intervals_overlap(at(9), at(10), at(9, 30), at(10, 30)) is True

    def test_containment_overlaps(self):
        assert intervals_overlap(at(8), at(12), at(9), at(10)) is True
        assert intervals_overlap(at(9), at(10), at(8), at(12)) is True

    def test_identical_intervals_overlap(self):
        assert intervals_overlap(at(9), at(10), at(9), at(10)) is True


class TestCheckAvailability:
    """Read-only availability checks."""

    def test_free_court_is_available(self, scheduler, court):
        result = scheduler.check_availability(court.id, at(9), at(10))

        assert result.available is True
        assert result.conflicts == []
        assert result.maintenance_blocks == []

    def test_nonexistent_court_reports_no_conflicts(self, scheduler):
        result = scheduler.check_availability(9999, at(9), at(10))

        assert result.available is True

    def test_pending_booking_conflicts(self, scheduler, court, player):
        booking = scheduler.create_booking(player.id, court.id, at(9), at(10))

        result = scheduler.check_availability(court.id, at(9, 30), at(10, 30))

        assert result.available is False
        assert [conflict.id for conflict in result.conflicts] == [booking.id]

    def test_adjacent_booking_does_not_conflict(self, scheduler, court, player):
        scheduler.create_booking(player.id, court.id, at(9), at(10))

        assert scheduler.check_availability(court.id, at(10), at(11)).available is True
        assert scheduler.check_availability(court.id, at(8), at(9)).available is True

    def test_cancelled_booking_frees_the_slot(self, scheduler, court, player, owner):
        booking = scheduler.create_booking(player.id, court.id, at(9), at(10))
        scheduler.cancel_booking(booking.id, owner.id, "OWNER")

        assert scheduler.check_availability(court.id, at(9), at(10)).available is True

    def test_maintenance_block_reported(self, scheduler, court, add_maintenance):
        block = add_maintenance(court.id, at(12), at(14))

        result = scheduler.check_availability(court.id, at(13), at(15))

        assert result.available is False
        assert result.conflicts == []
        assert [b.id for b in result.maintenance_blocks] == [block.id]
        assert result.maintenance_blocks[0].reason == "Resurfacing"

    def test_other_court_does_not_interfere(self, scheduler, court, player, db_session):
        second = Court(facility_id=court.facility_id, name="Court D", open_minute=360, close_minute=1320, price_per_hour=court.price_per_hour)
        db_session.add(second)
        db_session.commit()
        scheduler.create_booking(player.id, court.id, at(9), at(10))

        assert scheduler.check_availability(second.id, at(9), at(10)).available is True

    def test_aware_timestamps_are_normalised(self, scheduler, court, player):
        scheduler.create_booking(player.id, court.id, at(9), at(10))
        start = datetime(2030, 6, 3, 9, 15, tzinfo=timezone.utc)

        result = scheduler.check_availability(court.id, start, start + timedelta(minutes=30))

        assert result.available is False


class TestReadPaths:
    """Reads never queue behind a writer and surface store failures uniformly."""

    def test_reads_return_while_a_write_is_open(self, scheduler, court, player):
        booking = scheduler.create_booking(player.id, court.id, at(9), at(10))

        with engine.connect() as writer, writer.begin():
            writer.execute(update(Court).where(Court.id == court.id).values(name="Court C (relined)"))

            result = scheduler.check_availability(court.id, at(9), at(10))
            page = scheduler.list_bookings_for_user(player.id)

        assert [conflict.id for conflict in result.conflicts] == [booking.id]
        assert page.total == 1

    def test_unreachable_store_reports_internal_failure(self, tmp_path, publisher, notifier, clock):
        broken = create_engine(f"sqlite:///{tmp_path / 'missing' / 'courts.db'}")
        scheduler = BookingScheduler(sessionmaker(bind=broken), publisher=publisher, notifier=notifier, clock=clock)

        with pytest.raises(BookingInternalError) as excinfo:
            scheduler.check_availability(1, at(9), at(10))
        assert excinfo.value.code == "INTERNAL_FAILURE"

        with pytest.raises(BookingInternalError):
            scheduler.list_bookings_for_user(1)
        broken.dispose()

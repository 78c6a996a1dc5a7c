"""Overlap queries shared by the availability check and the create path."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.models import BLOCKING_STATUSES, Booking, MaintenanceBlock


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap: [a_start, a_end) and [b_start, b_end)."""

    return a_start < b_end and b_start < a_end


def overlapping_bookings(session: Session, court_id: int, start: datetime, end: datetime) -> List[Booking]:
    stmt = (
        select(Booking)
        .where(
            Booking.court_id == court_id,
            Booking.status.in_(BLOCKING_STATUSES),
            Booking.start_time < end,
            Booking.end_time > start,
        )
        .order_by(Booking.start_time)
    )
    return list(session.scalars(stmt))


def overlapping_maintenance(session: Session, court_id: int, start: datetime, end: datetime) -> List[MaintenanceBlock]:
    stmt = (
        select(MaintenanceBlock)
        .where(
            MaintenanceBlock.court_id == court_id,
            MaintenanceBlock.start_time < end,
            MaintenanceBlock.end_time > start,
        )
        .order_by(MaintenanceBlock.start_time)
    )
    return list(session.scalars(stmt))


@dataclass
class Availability:
    conflicts: List[Booking] = field(default_factory=list)
    maintenance_blocks: List[MaintenanceBlock] = field(default_factory=list)

    @property
    def available(self) -> bool:
        return not self.conflicts and not self.maintenance_blocks


def check_availability(session: Session, court_id: int, start: datetime, end: datetime) -> Availability:
    """Report what stands in the way of booking ``court_id`` over ``[start, end)``.

    Read-only. A court that does not exist has no conflicts. The answer is
    advisory: a concurrent create can take the slot right after it returns.
    """
    return Availability(
        conflicts=overlapping_bookings(session, court_id, start, end),
        maintenance_blocks=overlapping_maintenance(session, court_id, start, end),
    )

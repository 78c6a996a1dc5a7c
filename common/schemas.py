"""Pydantic schemas shared by the scheduler and the booking service."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from .models import BookingStatus


class BookingFilters(BaseModel):
    court_id: Optional[int] = None
    facility_id: Optional[int] = None
    status: Optional[BookingStatus] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: int = Field(50, ge=1, le=100)
    offset: int = Field(0, ge=0)


class TimeWindow(BaseModel):
    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindow":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class AvailabilityQuery(TimeWindow):
    court_id: int


class BookingCreate(TimeWindow):
    court_id: int
    price: Optional[Decimal] = Field(None, gt=0)


class BookingRead(BaseModel):
    id: int
    court_id: int
    user_id: int
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    price: Decimal
    created_at: datetime
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConflictRead(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    status: BookingStatus

    model_config = {"from_attributes": True}


class MaintenanceBlockRead(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    reason: Optional[str] = None

    model_config = {"from_attributes": True}


class AvailabilityRead(BaseModel):
    court_id: int
    available: bool
    conflicts: List[ConflictRead]
    maintenance_blocks: List[MaintenanceBlockRead]


class Pagination(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class BookingPageRead(BaseModel):
    data: List[BookingRead]
    pagination: Pagination


class CancellationRead(BaseModel):
    booking: BookingRead
    refund_pending: bool


class ErrorRead(BaseModel):
    detail: str
    code: str

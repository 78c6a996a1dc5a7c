"""SQLAlchemy models shared by the scheduler and the booking service."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RoleEnum(str, Enum):
    USER = "USER"
    OWNER = "OWNER"
    ADMIN = "ADMIN"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


# Statuses that hold a court's time slot.
BLOCKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)
TERMINAL_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED)


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.USER)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="user")
    facilities: Mapped[List["Facility"]] = relationship(back_populates="owner")


class Facility(Base):
    __tablename__ = "facilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120))
    location: Mapped[str] = mapped_column(String(255), default="")
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)

    owner: Mapped[User] = relationship(back_populates="facilities")
    courts: Mapped[List["Court"]] = relationship(back_populates="facility")


class Court(Base):
    __tablename__ = "courts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(120))
    open_minute: Mapped[int] = mapped_column(Integer, default=360)
    close_minute: Mapped[int] = mapped_column(Integer, default=1320)
    price_per_hour: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    facility: Mapped[Facility] = relationship(back_populates="courts")
    bookings: Mapped[List["Booking"]] = relationship(back_populates="court")
    maintenance_blocks: Mapped[List["MaintenanceBlock"]] = relationship(back_populates="court")

    __table_args__ = (
        CheckConstraint("open_minute >= 0 AND open_minute <= 1439", name="ck_courts_open_minute"),
        CheckConstraint("close_minute >= 0 AND close_minute <= 1439", name="ck_courts_close_minute"),
        CheckConstraint("close_minute > open_minute", name="ck_courts_hours_order"),
    )


class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id", ondelete="CASCADE"), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    status: Mapped[BookingStatus] = mapped_column(SqlEnum(BookingStatus), default=BookingStatus.PENDING, index=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None, onupdate=_utcnow)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)

    user: Mapped[User] = relationship(back_populates="bookings")
    court: Mapped[Court] = relationship(back_populates="bookings")
    payment: Mapped[Optional["Payment"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan", uselist=False
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_bookings_interval"),
        Index("ix_bookings_court_window", "court_id", "start_time", "end_time"),
    )


class MaintenanceBlock(Base):
    __tablename__ = "maintenance_blocks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id", ondelete="CASCADE"), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    court: Mapped[Court] = relationship(back_populates="maintenance_blocks")

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_maintenance_interval"),
        Index("ix_maintenance_court_window", "court_id", "start_time", "end_time"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    currency: Mapped[str] = mapped_column(String(10), default="INR")
    provider: Mapped[str] = mapped_column(String(30), default="LEDGER")
    status: Mapped[PaymentStatus] = mapped_column(SqlEnum(PaymentStatus), default=PaymentStatus.PENDING)
    provider_ref: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None, onupdate=_utcnow)

    booking: Mapped[Booking] = relationship(back_populates="payment")

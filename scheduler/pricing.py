"""Server-side price calculation for court bookings."""
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .errors import PriceMismatch

CENTS = Decimal("0.01")
SECONDS_PER_HOUR = Decimal(3600)


def derive_price(start: datetime, end: datetime, price_per_hour: Decimal) -> Decimal:
    """Duration in hours times the hourly rate, rounded half-up to 2 decimals."""

    seconds = Decimal(int((end - start).total_seconds()))
    hours = seconds / SECONDS_PER_HOUR
    return (hours * Decimal(price_per_hour)).quantize(CENTS, rounding=ROUND_HALF_UP)


def resolve_price(
    start: datetime,
    end: datetime,
    price_per_hour: Decimal,
    submitted: Optional[Decimal] = None,
    trust_submitted: bool = False,
) -> Decimal:
    """Pick the price to store for a booking.

    The derived price is authoritative. A submitted price is accepted only
    when it matches the derived one, unless ``trust_submitted`` is set.
    """
    derived = derive_price(start, end, price_per_hour)
    if submitted is None:
        return derived
    submitted = Decimal(submitted).quantize(CENTS, rounding=ROUND_HALF_UP)
    if trust_submitted:
        return submitted
    if submitted != derived:
        raise PriceMismatch(f"Submitted price {submitted} does not match court rate price {derived}")
    return derived

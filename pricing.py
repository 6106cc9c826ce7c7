"""
Pure booking arithmetic: stay lengths, cancellation penalties, early-checkout
proration, modification repricing and loyalty points.

Nothing here touches the database; callers pass in the current time.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class Quote:
    """Outcome of a repricing: the amount to store and the amount to give back."""

    new_total: Decimal
    refund: Decimal
    penalty_applied: bool = False


def to_money(value) -> Decimal:
    """Round a number to cents, half up."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def nights_booked(check_in: datetime, check_out: datetime) -> int:
    """Whole nights in a stay, rounding partial days up; never less than one."""
    nights = math.ceil((check_out - check_in) / ONE_DAY)
    return max(1, nights)


def calendar_nights(start: datetime, end: datetime) -> int:
    """Nights between the calendar dates of two moments (midnight-normalized)."""
    return (end.date() - start.date()).days


def nightly_rate(total: Decimal, check_in: datetime, check_out: datetime) -> Decimal:
    """Unrounded per-night rate of a stay."""
    return Decimal(total) / nights_booked(check_in, check_out)


def cancellation_quote(
    total: Decimal,
    check_in: datetime,
    check_out: datetime,
    now: datetime,
    window_hours: int = 24,
) -> Quote:
    """
    Price a cancellation made at ``now``.

    At least ``window_hours`` before check-in the whole amount is refunded and
    the stored total is kept as a record. Inside the window the guest pays one
    night and gets the rest back.
    """
    total = to_money(total)
    if check_in - now >= timedelta(hours=window_hours):
        return Quote(new_total=total, refund=total)

    penalty = to_money(nightly_rate(total, check_in, check_out))
    return Quote(new_total=penalty, refund=to_money(total - penalty), penalty_applied=True)


def checkout_quote(total: Decimal, check_in: datetime, check_out: datetime, now: datetime) -> Quote:
    """
    Price a checkout made at ``now``.

    Leaving before the booked check-out date prorates the total to the nights
    actually stayed; leaving on or after it changes nothing.
    """
    total = to_money(total)
    original_nights = max(1, calendar_nights(check_in, check_out))
    actual_nights = max(1, calendar_nights(check_in, now))

    if actual_nights >= original_nights:
        return Quote(new_total=total, refund=Decimal("0.00"))

    new_total = to_money(total / original_nights * actual_nights)
    return Quote(new_total=new_total, refund=to_money(total - new_total))


def modification_total(
    total: Decimal,
    check_in: datetime,
    check_out: datetime,
    new_check_in: datetime,
    new_check_out: datetime,
) -> Decimal:
    """Reprice a stay at its current nightly rate for the new dates."""
    rate = nightly_rate(total, check_in, check_out)
    return to_money(rate * nights_booked(new_check_in, new_check_out))


def points_for(amount: Decimal, divisor: int = 10) -> int:
    """Loyalty points earned for spending ``amount``: one point per ``divisor``."""
    if amount <= 0:
        return 0
    return int((Decimal(amount) / divisor).to_integral_value(rounding=ROUND_FLOOR))

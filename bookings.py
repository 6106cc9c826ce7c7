"""
Booking lifecycle: creation, modification and the status transitions
confirmed -> checked-in -> checked-out and confirmed -> cancelled.

Every mutating function runs inside ``database.transaction`` so the status,
amount, loyalty balance and notifications are committed together.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

import loyalty
import notifications
import pricing
from config import settings
from database import transaction
from errors import InvalidTransitionError, NotFoundError, ValidationError
from orm import Booking, BookingStatus, Hotel, Room, User, utcnow

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    BookingStatus.CONFIRMED: {BookingStatus.CHECKED_IN, BookingStatus.CANCELLED},
    BookingStatus.CHECKED_IN: {BookingStatus.CHECKED_OUT},
    BookingStatus.CHECKED_OUT: set(),
    BookingStatus.CANCELLED: set(),
}

TRANSITION_EVENTS = {
    BookingStatus.CANCELLED: "booking_cancelled",
    BookingStatus.CHECKED_IN: "booking_checked_in",
    BookingStatus.CHECKED_OUT: "booking_checked_out",
}


@dataclass
class BookingResult:
    booking: Booking
    refund_amount: Optional[Decimal] = None
    points_awarded: int = 0
    warnings: list[str] = field(default_factory=list)

    def warn(self, warning: Optional[str]):
        if warning:
            self.warnings.append(warning)


def parse_when(value, field_name: str) -> datetime:
    """Parse an ISO date or datetime into naive UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif not value:
        raise ValidationError(f"{field_name} is required")
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field_name} must be an ISO date or datetime")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validate_transition(current: str, target: str):
    if target not in BookingStatus.ALL:
        raise ValidationError(
            f"Invalid status. Must be one of: {', '.join(sorted(TRANSITION_EVENTS))}"
        )
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError.between("booking", current, target)


def _validate_stay(check_in: datetime, check_out: datetime, guests: int, room: Room):
    if check_out <= check_in:
        raise ValidationError("Check-out must be after check-in")
    if guests is None or guests < 1:
        raise ValidationError("At least one guest is required")
    if guests > room.capacity:
        raise ValidationError(f"Room capacity is {room.capacity} guests")


def get_booking(session: Session, caller: User, booking_id: str) -> Booking:
    """Fetch one of the caller's bookings."""
    booking = session.get(Booking, booking_id)
    if booking is None or booking.user_id != caller.id:
        raise NotFoundError("Booking", booking_id)
    return booking


def create_booking(
    session: Session,
    caller: User,
    hotel_id: str,
    room_id: str,
    check_in,
    check_out,
    guests: int,
    total_amount: Decimal,
) -> BookingResult:
    """Reserve a room for the caller. New bookings start as confirmed."""
    start = parse_when(check_in, "check_in")
    end = parse_when(check_out, "check_out")
    try:
        amount = Decimal(str(total_amount))
    except (InvalidOperation, TypeError):
        raise ValidationError("Total amount must be a number")
    if not amount.is_finite() or amount < 0:
        raise ValidationError("Total amount must be zero or more")

    with transaction(session, "create booking"):
        hotel = session.get(Hotel, hotel_id)
        if hotel is None:
            raise NotFoundError("Hotel", hotel_id)
        room = session.get(Room, room_id)
        if room is None:
            raise NotFoundError("Room", room_id)
        if room.hotel_id != hotel.id:
            raise ValidationError("Room does not belong to the selected hotel")
        _validate_stay(start, end, guests, room)

        booking = Booking(
            user_id=caller.id,
            hotel_id=hotel.id,
            room_id=room.id,
            check_in=start,
            check_out=end,
            guests=guests,
            total_amount=pricing.to_money(amount),
            status=BookingStatus.CONFIRMED,
        )
        session.add(booking)
        session.flush()
        result = BookingResult(booking=booking)
        result.warn(notifications.emit(session, caller.id, "booking_created", hotel=hotel.name))

    logger.info(
        f"Booking created: {booking.id}, hotel={hotel.id}, room={room.id}, "
        f"total={booking.total_amount}"
    )
    return result


def update_booking_status(
    session: Session,
    caller: User,
    booking_id: str,
    new_status: str,
    now: Optional[datetime] = None,
) -> BookingResult:
    """
    Move a booking to ``new_status``, applying the pricing rule of the
    transition and its side effects.
    """
    now = now or utcnow()

    with transaction(session, f"booking status update to {new_status}"):
        booking = get_booking(session, caller, booking_id)
        validate_transition(booking.status, new_status)

        result = BookingResult(booking=booking)
        if new_status == BookingStatus.CANCELLED:
            quote = pricing.cancellation_quote(
                booking.total_amount,
                booking.check_in,
                booking.check_out,
                now,
                settings.cancellation_window_hours,
            )
            booking.total_amount = quote.new_total
            booking.refund_amount = quote.refund
            result.refund_amount = quote.refund
        elif new_status == BookingStatus.CHECKED_OUT:
            quote = pricing.checkout_quote(booking.total_amount, booking.check_in, booking.check_out, now)
            booking.total_amount = quote.new_total
            booking.refund_amount = quote.refund
            result.refund_amount = quote.refund

        booking.status = new_status
        session.flush()

        hotel_name = booking.hotel.name
        result.warn(notifications.emit(session, booking.user_id, TRANSITION_EVENTS[new_status], hotel=hotel_name))

        if new_status == BookingStatus.CHECKED_OUT:
            points, warning = loyalty.award_points(session, booking.user_id, booking.total_amount, hotel_name)
            result.points_awarded = points
            result.warn(warning)

    logger.info(
        f"Booking {booking.id} moved to {new_status}: total={booking.total_amount}, "
        f"refund={result.refund_amount}, points={result.points_awarded}"
    )
    return result


def modify_booking(
    session: Session,
    caller: User,
    booking_id: str,
    check_in=None,
    check_out=None,
    guests: Optional[int] = None,
) -> BookingResult:
    """Change the dates or guest count of a confirmed booking and reprice it."""
    if check_in is None and check_out is None and guests is None:
        raise ValidationError("Nothing to update")

    with transaction(session, "booking modification"):
        booking = get_booking(session, caller, booking_id)
        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidTransitionError(
                f"Only confirmed bookings can be modified (booking is '{booking.status}')",
                current=booking.status,
            )

        start = parse_when(check_in, "check_in") if check_in is not None else booking.check_in
        end = parse_when(check_out, "check_out") if check_out is not None else booking.check_out
        new_guests = guests if guests is not None else booking.guests
        _validate_stay(start, end, new_guests, booking.room)

        booking.total_amount = pricing.modification_total(
            booking.total_amount, booking.check_in, booking.check_out, start, end
        )
        booking.check_in = start
        booking.check_out = end
        booking.guests = new_guests
        session.flush()

        result = BookingResult(booking=booking)
        result.warn(notifications.emit(session, booking.user_id, "booking_updated", hotel=booking.hotel.name))

    logger.info(
        f"Booking {booking.id} modified: {booking.check_in.date()} -> {booking.check_out.date()}, "
        f"guests={booking.guests}, total={booking.total_amount}"
    )
    return result


def list_bookings(session: Session, caller: User, page: int = 1, limit: int = 5) -> tuple[list[Booking], int, int]:
    """Page through the caller's bookings, newest first. Returns (items, total, total_pages)."""
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")

    total = session.scalar(select(func.count()).select_from(Booking).where(Booking.user_id == caller.id))
    stmt = (
        select(Booking)
        .where(Booking.user_id == caller.id)
        .order_by(Booking.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    items = list(session.scalars(stmt).unique())
    return items, total, math.ceil(total / limit)

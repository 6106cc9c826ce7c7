from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

import bookings
import loyalty
import notifications
from data import seed_database
from database import create_db_engine, init_db
from errors import InvalidTransitionError, NotFoundError, PersistenceError, ValidationError
from orm import Booking, BookingStatus, Notification, NotificationCategory, Room, User

CHECK_IN = datetime(2026, 11, 1, 15, 0)


def notifications_for(session, user):
    return list(session.scalars(select(Notification).where(Notification.user_id == user.id)))


def test_create_booking_starts_confirmed_and_notifies(session, guest, room):
    result = bookings.create_booking(
        session, guest, room.hotel_id, room.id, "2026-11-01", "2026-11-04", 2, Decimal("840")
    )

    booking = session.get(Booking, result.booking.id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.total_amount == Decimal("840.00")
    assert booking.check_in == datetime(2026, 11, 1)
    assert result.warnings == []

    [notification] = notifications_for(session, guest)
    assert notification.type == NotificationCategory.BOOKING
    assert notification.title == "Booking Confirmed"
    assert "The Royale Majestic" in notification.message


def test_create_booking_rejects_reversed_dates(session, guest, room):
    with pytest.raises(ValidationError):
        bookings.create_booking(session, guest, room.hotel_id, room.id, "2026-11-04", "2026-11-04", 2, Decimal("100"))

    assert session.scalars(select(Booking)).all() == []


def test_create_booking_rejects_party_above_capacity(session, guest, room):
    with pytest.raises(ValidationError):
        bookings.create_booking(session, guest, room.hotel_id, room.id, "2026-11-01", "2026-11-03", 5, Decimal("100"))


def test_create_booking_rejects_unknown_room(session, guest, room):
    with pytest.raises(NotFoundError):
        bookings.create_booking(session, guest, room.hotel_id, "missing", "2026-11-01", "2026-11-03", 1, Decimal("100"))


def test_create_booking_rejects_malformed_date(session, guest, room):
    with pytest.raises(ValidationError):
        bookings.create_booking(session, guest, room.hotel_id, room.id, "next tuesday", "2026-11-03", 1, Decimal("100"))


def test_cancel_well_ahead_keeps_total_and_refunds_it(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="750")

    result = bookings.update_booking_status(
        session, guest, booking.id, BookingStatus.CANCELLED, now=CHECK_IN - timedelta(days=2)
    )

    assert result.booking.status == BookingStatus.CANCELLED
    assert result.booking.total_amount == Decimal("750.00")
    assert result.refund_amount == Decimal("750.00")


def test_late_cancellation_charges_one_night(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="750")

    result = bookings.update_booking_status(
        session, guest, booking.id, BookingStatus.CANCELLED, now=CHECK_IN - timedelta(hours=10)
    )

    assert result.booking.total_amount == Decimal("150.00")
    assert result.refund_amount == Decimal("600.00")
    assert session.get(Booking, booking.id).refund_amount == Decimal("600.00")


def test_cancelling_twice_is_an_invalid_transition(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="750")
    bookings.update_booking_status(session, guest, booking.id, BookingStatus.CANCELLED, now=CHECK_IN - timedelta(days=2))

    with pytest.raises(InvalidTransitionError):
        bookings.update_booking_status(session, guest, booking.id, BookingStatus.CANCELLED, now=CHECK_IN)


def test_unknown_status_is_rejected_without_mutation(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="750")

    with pytest.raises(ValidationError):
        bookings.update_booking_status(session, guest, booking.id, "archived")

    assert session.get(Booking, booking.id).status == BookingStatus.CONFIRMED
    assert notifications_for(session, guest) == []


def test_check_in_does_not_change_price(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="750")

    result = bookings.update_booking_status(session, guest, booking.id, BookingStatus.CHECKED_IN, now=CHECK_IN)

    assert result.booking.status == BookingStatus.CHECKED_IN
    assert result.booking.total_amount == Decimal("750.00")
    assert result.refund_amount is None


def test_checkout_requires_check_in_first(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="750")

    with pytest.raises(InvalidTransitionError):
        bookings.update_booking_status(session, guest, booking.id, BookingStatus.CHECKED_OUT)


def test_early_checkout_prorates_and_awards_points(session, guest, make_booking):
    starting_points = guest.loyalty_points
    booking = make_booking(CHECK_IN, nights=5, total="1000", status=BookingStatus.CHECKED_IN)

    result = bookings.update_booking_status(
        session, guest, booking.id, BookingStatus.CHECKED_OUT, now=CHECK_IN + timedelta(days=3)
    )

    assert result.booking.total_amount == Decimal("600.00")
    assert result.refund_amount == Decimal("400.00")
    assert result.points_awarded == 60
    session.refresh(guest)
    assert guest.loyalty_points == starting_points + 60

    categories = sorted(n.type for n in notifications_for(session, guest))
    assert categories == [NotificationCategory.BOOKING, NotificationCategory.LOYALTY]


def test_checkout_on_time_keeps_total(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="1000", status=BookingStatus.CHECKED_IN)

    result = bookings.update_booking_status(
        session, guest, booking.id, BookingStatus.CHECKED_OUT, now=CHECK_IN + timedelta(days=5)
    )

    assert result.booking.total_amount == Decimal("1000.00")
    assert result.refund_amount == Decimal("0.00")
    assert result.points_awarded == 100


def test_points_are_awarded_once(session, guest, make_booking):
    starting_points = guest.loyalty_points
    booking = make_booking(CHECK_IN, nights=5, total="1000", status=BookingStatus.CHECKED_IN)
    checkout_at = CHECK_IN + timedelta(days=5)
    bookings.update_booking_status(session, guest, booking.id, BookingStatus.CHECKED_OUT, now=checkout_at)

    with pytest.raises(InvalidTransitionError):
        bookings.update_booking_status(session, guest, booking.id, BookingStatus.CHECKED_OUT, now=checkout_at)

    session.refresh(guest)
    assert guest.loyalty_points == starting_points + 100


def test_other_guests_cannot_see_booking(session, make_booking):
    booking = make_booking(CHECK_IN, nights=5, total="750")
    stranger = User(email="stranger@example.com", name="Stranger")
    session.add(stranger)
    session.commit()

    with pytest.raises(NotFoundError):
        bookings.update_booking_status(session, stranger, booking.id, BookingStatus.CANCELLED)


def test_modify_reprices_at_current_rate(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=3, total="600")

    result = bookings.modify_booking(session, guest, booking.id, check_out="2026-11-06T15:00:00")

    assert result.booking.check_out == datetime(2026, 11, 6, 15, 0)
    assert result.booking.total_amount == Decimal("1000.00")
    [notification] = notifications_for(session, guest)
    assert notification.title == "Booking Updated"


def test_modify_rejects_check_out_before_check_in(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=3, total="600")

    with pytest.raises(ValidationError):
        bookings.modify_booking(session, guest, booking.id, check_in="2026-11-05", check_out="2026-11-04")

    session.expire_all()
    stored = session.get(Booking, booking.id)
    assert stored.check_out > stored.check_in
    assert stored.total_amount == Decimal("600.00")


def test_modify_only_while_confirmed(session, guest, make_booking):
    booking = make_booking(CHECK_IN, nights=3, total="600", status=BookingStatus.CHECKED_IN)

    with pytest.raises(InvalidTransitionError):
        bookings.modify_booking(session, guest, booking.id, guests=1)


def test_list_bookings_pages_newest_first(session, guest, make_booking):
    for days in range(7):
        make_booking(CHECK_IN + timedelta(days=days * 10), nights=2, total="400")

    items, total, total_pages = bookings.list_bookings(session, guest, page=2, limit=5)

    assert total == 7
    assert total_pages == 2
    assert len(items) == 2


def test_notification_failure_does_not_block_transition(session, guest, make_booking, monkeypatch):
    booking = make_booking(CHECK_IN, nights=5, total="750")
    # title is NOT NULL, so the insert fails inside its savepoint
    monkeypatch.setattr(notifications, "Notification", lambda **kw: Notification(**{**kw, "title": None}))

    result = bookings.update_booking_status(
        session, guest, booking.id, BookingStatus.CANCELLED, now=CHECK_IN - timedelta(days=2)
    )

    assert result.warnings == ["Notification 'booking_cancelled' could not be delivered"]
    session.expire_all()
    assert session.get(Booking, booking.id).status == BookingStatus.CANCELLED
    assert notifications_for(session, guest) == []


def test_concurrent_update_is_rejected(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
    init_db(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    with factory() as setup:
        seed_database(setup)
        guest = setup.scalar(select(User))
        room = setup.scalar(select(Room))
        booking = Booking(
            user_id=guest.id,
            hotel_id=room.hotel_id,
            room_id=room.id,
            check_in=CHECK_IN,
            check_out=CHECK_IN + timedelta(days=5),
            guests=1,
            total_amount=Decimal("750"),
        )
        setup.add(booking)
        setup.commit()
        booking_id = booking.id

    first = factory()
    second = factory()
    try:
        caller = first.get(User, guest.id)
        # first holds the booking at version 1 in its identity map
        bookings.get_booking(first, caller, booking_id)

        second.execute(
            update(Booking)
            .where(Booking.id == booking_id)
            .values(status=BookingStatus.CANCELLED, version=Booking.version + 1)
        )
        second.commit()

        with pytest.raises(InvalidTransitionError):
            bookings.update_booking_status(first, caller, booking_id, BookingStatus.CHECKED_IN)
    finally:
        first.close()
        second.close()
        engine.dispose()


def test_failure_during_checkout_leaves_booking_untouched(session, guest, make_booking, monkeypatch):
    starting_points = guest.loyalty_points
    booking = make_booking(CHECK_IN, nights=5, total="1000", status=BookingStatus.CHECKED_IN)

    def failing_award(*args, **kwargs):
        raise OperationalError("UPDATE users", {}, Exception("disk I/O error"))

    monkeypatch.setattr(loyalty, "award_points", failing_award)

    with pytest.raises(PersistenceError):
        bookings.update_booking_status(
            session, guest, booking.id, BookingStatus.CHECKED_OUT, now=CHECK_IN + timedelta(days=3)
        )

    session.expire_all()
    stored = session.get(Booking, booking.id)
    assert stored.status == BookingStatus.CHECKED_IN
    assert stored.total_amount == Decimal("1000.00")
    assert stored.refund_amount is None
    assert session.get(User, guest.id).loyalty_points == starting_points
    assert notifications_for(session, guest) == []


def test_failed_booking_insert_is_not_reported_as_notification_warning(session, guest, room, monkeypatch):
    # guests must be positive, so the insert itself is rejected by the database
    monkeypatch.setattr(bookings, "Booking", lambda **kw: Booking(**{**kw, "guests": 0}))

    with pytest.raises(PersistenceError):
        bookings.create_booking(session, guest, room.hotel_id, room.id, "2026-11-01", "2026-11-03", 1, Decimal("560"))

    assert session.scalars(select(Booking)).all() == []
    assert notifications_for(session, guest) == []


@pytest.mark.parametrize("total", ["lots", None, "NaN", "-1"])
def test_create_booking_rejects_bad_total(session, guest, room, total):
    with pytest.raises(ValidationError):
        bookings.create_booking(session, guest, room.hotel_id, room.id, "2026-11-01", "2026-11-03", 1, total)

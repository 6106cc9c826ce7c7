import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import NotFoundError
from orm import Notification, NotificationCategory

logger = logging.getLogger(__name__)


# Event kind -> (category, title, message template)
TEMPLATES = {
    "booking_created": (
        NotificationCategory.BOOKING,
        "Booking Confirmed",
        "Your reservation at {hotel} is confirmed. We look forward to welcoming you.",
    ),
    "booking_updated": (
        NotificationCategory.BOOKING,
        "Booking Updated",
        "Your reservation at {hotel} has been successfully updated.",
    ),
    "booking_cancelled": (
        NotificationCategory.BOOKING,
        "Booking Cancelled",
        "Your reservation at {hotel} has been cancelled as requested.",
    ),
    "booking_checked_in": (
        NotificationCategory.BOOKING,
        "Check-in Successful",
        "Welcome to {hotel}! Your check-in is complete. Enjoy your stay.",
    ),
    "booking_checked_out": (
        NotificationCategory.BOOKING,
        "Check-out Complete",
        "Thank you for staying at {hotel}. We hope you had a wonderful time! "
        "Your final invoice is ready for download.",
    ),
    "service_created": (
        NotificationCategory.SERVICE,
        "Service Request Received",
        "We've received your request for {service_type}. Our staff will handle it {urgency}.",
    ),
    "service_cancelled": (
        NotificationCategory.SERVICE,
        "Request Cancelled",
        "Your request for {service_type} has been successfully cancelled.",
    ),
    "loyalty_awarded": (
        NotificationCategory.LOYALTY,
        "Loyalty Points Earned",
        "You earned {points} loyalty points from your stay at {hotel}.",
    ),
}


def render(event: str, **context) -> tuple[str, str, str]:
    """Return (category, title, message) for an event kind."""
    try:
        category, title, template = TEMPLATES[event]
    except KeyError:
        raise ValueError(f"Unknown notification event: {event}")
    return category, title, template.format(**context)


def emit(session: Session, user_id: str, event: str, **context) -> Optional[str]:
    """
    Add one notification for ``user_id`` inside the caller's transaction.

    The insert runs in a SAVEPOINT so a failure rolls back only the
    notification. Returns None on success, or a warning for the response.
    """
    try:
        category, title, message = render(event, **context)
        with session.begin_nested():
            session.add(Notification(user_id=user_id, type=category, title=title, message=message))
    except (SQLAlchemyError, ValueError, KeyError) as e:
        logger.warning(f"Failed to emit '{event}' notification for user {user_id}: {e}")
        return f"Notification '{event}' could not be delivered"

    logger.debug(f"Notification '{event}' queued for user {user_id}")
    return None


def list_notifications(session: Session, user_id: str, limit: int = 10) -> list[Notification]:
    """Newest notifications for a user."""
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    return list(session.scalars(stmt))


def mark_read(session: Session, user_id: str, notification_id: str, read: bool = True) -> Notification:
    """Flip the read flag of one of the caller's notifications."""
    notification = session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("Notification", notification_id)
    notification.read = read
    return notification

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

import notifications
from config import settings
from orm import User
from pricing import points_for

logger = logging.getLogger(__name__)


def award_points(session: Session, user_id: str, amount: Decimal, hotel_name: str) -> tuple[int, Optional[str]]:
    """
    Credit the points earned for ``amount`` to a guest's balance.

    The increment is applied in SQL so concurrent awards never overwrite each
    other. Returns (points awarded, notification warning or None).
    """
    points = points_for(amount, settings.loyalty_points_divisor)
    if points <= 0:
        return 0, None

    session.execute(
        update(User)
        .where(User.id == user_id)
        .values(loyalty_points=User.loyalty_points + points)
        .execution_options(synchronize_session="fetch")
    )
    logger.info(f"Awarded {points} loyalty points to user {user_id}")

    warning = notifications.emit(session, user_id, "loyalty_awarded", points=points, hotel=hotel_name)
    return points, warning

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from accounts import hash_password
from orm import Hotel, Room, User

logger = logging.getLogger(__name__)


# Sample catalogue and guest account
DEMO_HOTEL = {
    "name": "The Royale Majestic",
    "location": "Dubai, UAE",
    "rating": 5.0,
}

DEMO_ROOMS = [
    {
        "type": "Luxury Ocean Suite",
        "capacity": 2,
        "price_per_night": Decimal("450.00"),
        "floor": 12,
        "amenities": "Sea View, King Bed, Mini Bar, Jacuzzi, Free Wi-Fi",
        "status": "available",
        "image": "https://images.unsplash.com/photo-1590490360182-c33d57733427?w=800",
    },
    {
        "type": "Deluxe Garden Room",
        "capacity": 2,
        "price_per_night": Decimal("280.00"),
        "floor": 4,
        "amenities": "Garden View, Queen Bed, Work Desk, Coffee Maker",
        "status": "available",
        "image": "https://images.unsplash.com/photo-1618773928121-c32242e63f39?w=800",
    },
]

DEMO_GUEST = {
    "email": "guest@example.com",
    "name": "John Doe",
    "loyalty_points": 1250,
    "language": "English",
    "currency": "USD",
    "phone": "+971 50 123 4567",
    "address": "Sky Tower 1, Dubai Marina",
}
DEMO_PASSWORD = "password123"


def seed_database(session: Session) -> bool:
    """Insert the demo hotel, rooms and guest into an empty database."""
    if session.scalar(select(func.count()).select_from(Hotel)):
        return False

    hotel = Hotel(**DEMO_HOTEL)
    hotel.rooms = [Room(**room) for room in DEMO_ROOMS]
    session.add(hotel)

    if session.scalar(select(User).where(User.email == DEMO_GUEST["email"])) is None:
        session.add(User(password_hash=hash_password(DEMO_PASSWORD), **DEMO_GUEST))

    session.commit()
    logger.info(f"Seeded demo data: 1 hotel, {len(DEMO_ROOMS)} rooms")
    return True


def get_all_hotels(session: Session) -> list[Hotel]:
    """Get all hotels with their rooms."""
    return list(session.scalars(select(Hotel).order_by(Hotel.name)))


def search_rooms(
    session: Session,
    location: Optional[str] = None,
    guests: int = 1,
    room_type: Optional[str] = None,
) -> list[Room]:
    """Available rooms that fit the party, optionally narrowed by location and type."""
    stmt = (
        select(Room)
        .join(Room.hotel)
        .where(Room.status == "available", Room.capacity >= guests)
        .order_by(Room.price_per_night)
    )
    if location and location != "all":
        # Simple case-insensitive search
        stmt = stmt.where(func.lower(Hotel.location).contains(location.lower()))
    if room_type and room_type != "all":
        stmt = stmt.where(func.lower(Room.type).contains(room_type.lower()))
    return list(session.scalars(stmt))


def calculate_price_with_strategy(base_price: float, nights: int, strategy: str):
    """Calculate price based on display strategy."""
    total = round(base_price * nights, 2)

    if strategy == "per-night":
        return {
            "display_price": base_price,
            "label": "Per Night",
            "breakdown": {
                "per_night": base_price,
                "nights": nights,
                "total": total
            }
        }
    elif strategy == "with-fees":
        taxes = total * 0.12
        fees = 25.00
        grand_total = total + taxes + fees
        return {
            "display_price": round(grand_total, 2),
            "label": "Total with Fees",
            "breakdown": {
                "base": total,
                "taxes": round(taxes, 2),
                "fees": fees,
                "total": round(grand_total, 2)
            }
        }

    return {
        "display_price": total,
        "label": "Total Price",
        "breakdown": None
    }

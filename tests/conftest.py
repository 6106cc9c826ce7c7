import os

# Settings are read at import time, so these must be set before the app loads
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("FLIPT_ENABLED", "false")
os.environ.setdefault("TELEMETRY_ENABLED", "false")
os.environ.setdefault("SEED_DEMO_DATA", "false")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from data import DEMO_GUEST, seed_database
from database import create_db_engine, get_session, init_db
from main import app
from orm import Booking, BookingStatus, Room, User


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    with factory() as session:
        seed_database(session)
    return factory


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def guest(session):
    return session.scalar(select(User).where(User.email == DEMO_GUEST["email"]))


@pytest.fixture
def room(session):
    return session.scalar(select(Room).where(Room.type == "Deluxe Garden Room"))


@pytest.fixture
def make_booking(session, guest, room):
    """Insert a booking directly, bypassing the lifecycle engine."""

    def _make(check_in: datetime, nights: int, total: str, status: str = BookingStatus.CONFIRMED):
        booking = Booking(
            user_id=guest.id,
            hotel_id=room.hotel_id,
            room_id=room.id,
            check_in=check_in,
            check_out=check_in + timedelta(days=nights),
            guests=2,
            total_amount=Decimal(total),
            status=status,
        )
        session.add(booking)
        session.commit()
        return booking

    return _make


@pytest.fixture
def client(session_factory):
    def override_get_session():
        with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(guest):
    return {"X-User-Id": guest.id}
